"""KDBX 3.x payload encryption and decryption.

Decrypted body layout:

    [stream-start bytes:32][hashed block stream]

Hashed block stream (HashedBlockStream in KeePass):
    - 4 bytes: block index (little-endian, starting at 0)
    - 32 bytes: SHA-256 of block data
    - 4 bytes: block length (little-endian)
    - N bytes: block data
The last block has length 0 and an all-zero hash. The concatenated block
data is the (optionally gzip-compressed) XML document.
"""

from __future__ import annotations

import gzip
import hashlib
import logging
import struct
import zlib

from kdbxstream.exceptions import AuthenticationError, DecryptionError
from kdbxstream.security import CipherContext, constant_time_compare

from .header import CompressionType, KdbxHeader

logger = logging.getLogger(__name__)

# Default block size for the hashed block stream (1 MiB)
BLOCK_SIZE = 1024 * 1024

_BLOCK_PREFIX = struct.Struct("<I32sI")
_ZERO_HASH = b"\x00" * 32


def read_hashed_blocks(data: bytes) -> bytes:
    """Verify and unwrap a hashed block stream.

    Raises:
        DecryptionError: On index, hash or length mismatch
    """
    blocks = []
    offset = 0
    expected_index = 0

    while True:
        if offset + _BLOCK_PREFIX.size > len(data):
            raise DecryptionError("Truncated block stream")
        index, block_hash, length = _BLOCK_PREFIX.unpack_from(data, offset)
        offset += _BLOCK_PREFIX.size

        if index != expected_index:
            raise DecryptionError(f"Unexpected block index {index}")

        if length == 0:
            if not constant_time_compare(block_hash, _ZERO_HASH):
                raise DecryptionError("Invalid final block hash")
            break

        if offset + length > len(data):
            raise DecryptionError(f"Truncated block {index}")
        block = data[offset : offset + length]
        offset += length

        if not constant_time_compare(hashlib.sha256(block).digest(), block_hash):
            raise DecryptionError(f"Hash verification failed for block {index}")

        blocks.append(block)
        expected_index += 1

    logger.debug("Read %d payload blocks", len(blocks))
    return b"".join(blocks)


def build_hashed_blocks(data: bytes, block_size: int = BLOCK_SIZE) -> bytes:
    """Wrap data in a hashed block stream."""
    parts = []
    index = 0
    for offset in range(0, len(data), block_size):
        block = data[offset : offset + block_size]
        parts.append(_BLOCK_PREFIX.pack(index, hashlib.sha256(block).digest(), len(block)))
        parts.append(block)
        index += 1

    parts.append(_BLOCK_PREFIX.pack(index, _ZERO_HASH, 0))
    return b"".join(parts)


def decrypt_payload(header: KdbxHeader, key: bytes, ciphertext: bytes) -> bytes:
    """Decrypt the encrypted body to the XML document.

    Args:
        header: Parsed outer header
        key: Final derived key
        ciphertext: Everything after the header

    Returns:
        Decompressed XML bytes

    Raises:
        DecryptionError: If the cipher, block stream or decompression fails
        AuthenticationError: If the stream-start bytes don't match
    """
    ctx = CipherContext(header.cipher, key, header.encryption_iv)
    # Stream-start bytes are checked before the padding
    plaintext = ctx.decrypt(ciphertext, strip_padding=False)
    if len(plaintext) < len(header.stream_start_bytes):
        raise DecryptionError("Encrypted body is too short")

    start = plaintext[: len(header.stream_start_bytes)]
    if not constant_time_compare(start, header.stream_start_bytes):
        raise AuthenticationError()

    plaintext = ctx.strip_padding(plaintext)
    payload = read_hashed_blocks(plaintext[len(header.stream_start_bytes) :])

    if header.compression == CompressionType.GZIP:
        try:
            payload = gzip.decompress(payload)
        except (OSError, EOFError, zlib.error) as e:
            raise DecryptionError("Payload decompression failed") from e

    return payload


def encrypt_payload(
    header: KdbxHeader,
    key: bytes,
    plaintext: bytes,
    block_size: int = BLOCK_SIZE,
) -> bytes:
    """Encrypt an XML document into the body format.

    The header's stream-start bytes and IV are used as-is; callers refresh
    them with KdbxHeader.rekeyed() before each save.
    """
    if header.compression == CompressionType.GZIP:
        plaintext = gzip.compress(plaintext, compresslevel=6)

    body = header.stream_start_bytes + build_hashed_blocks(plaintext, block_size)

    ctx = CipherContext(header.cipher, key, header.encryption_iv)
    return ctx.encrypt(body)
