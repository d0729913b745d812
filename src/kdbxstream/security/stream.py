"""Protected-field stream cipher.

Values marked Protected="True" in the XML payload are XOR'd with a key
stream generated from the header's protected stream key. The key stream
is consumed in the order protected values appear in the document, so a
cursor is only valid for one document and must see every protected value
in that order, including empty ones.
"""

from __future__ import annotations

import hashlib
import logging
from enum import IntEnum
from typing import Protocol

from Cryptodome.Cipher import ChaCha20, Salsa20

from kdbxstream.exceptions import UnknownStreamCipherError

logger = logging.getLogger(__name__)

SALSA20_NONCE = b"\xE8\x30\x09\x4B\x97\x20\x5D\x2A"


class ProtectedStreamId(IntEnum):
    """Inner random stream algorithms (header field InnerRandomStreamID)."""

    NONE = 0
    ARC4_VARIANT = 1
    SALSA20 = 2
    CHACHA20 = 3


class _StreamCipher(Protocol):
    """Protocol for the underlying pycryptodome stream ciphers."""

    def encrypt(self, plaintext: bytes) -> bytes: ...
    def decrypt(self, ciphertext: bytes) -> bytes: ...


class _NullCipher:
    """Identity cipher for databases without field protection."""

    def encrypt(self, plaintext: bytes) -> bytes:
        return plaintext

    def decrypt(self, ciphertext: bytes) -> bytes:
        return ciphertext


class ProtectedStreamCipher:
    """Document-order cursor over the protected-field key stream.

    Create one instance per document. Every protected value must pass
    through decrypt_next() (or encrypt_next() when writing) exactly once,
    in document order. The position only moves forward.

    Example:
        >>> cursor = ProtectedStreamCipher(ProtectedStreamId.SALSA20, key)
        >>> password = cursor.decrypt_next(ciphertext)
    """

    def __init__(self, stream_id: int, stream_key: bytes) -> None:
        """Initialize the cursor.

        Args:
            stream_id: Cipher type (0=None, 2=Salsa20, 3=ChaCha20)
            stream_key: ProtectedStreamKey from the header

        Raises:
            UnknownStreamCipherError: For ArcFour or unknown ids
        """
        self._stream_id = stream_id
        self._position = 0
        self._cipher = self._create_cipher(stream_id, stream_key)

    @staticmethod
    def _create_cipher(stream_id: int, stream_key: bytes) -> _StreamCipher:
        if stream_id == ProtectedStreamId.CHACHA20:
            # SHA-512 of key: first 32 bytes = key, bytes 32-44 = nonce
            key_hash = hashlib.sha512(stream_key).digest()
            return ChaCha20.new(key=key_hash[:32], nonce=key_hash[32:44])
        if stream_id == ProtectedStreamId.SALSA20:
            key = hashlib.sha256(stream_key).digest()
            return Salsa20.new(key=key, nonce=SALSA20_NONCE)
        if stream_id == ProtectedStreamId.NONE:
            return _NullCipher()
        raise UnknownStreamCipherError(stream_id)

    @property
    def stream_id(self) -> int:
        """Algorithm id this cursor was created with."""
        return self._stream_id

    @property
    def position(self) -> int:
        """Number of key stream bytes consumed so far."""
        return self._position

    def decrypt_next(self, ciphertext: bytes) -> bytes:
        """Decrypt the next protected value in document order.

        A zero-length value is still a call: it returns b"" and leaves the
        position unchanged.
        """
        self._position += len(ciphertext)
        if not ciphertext:
            return b""
        return self._cipher.decrypt(ciphertext)

    def encrypt_next(self, plaintext: bytes) -> bytes:
        """Encrypt the next protected value in document order."""
        self._position += len(plaintext)
        if not plaintext:
            return b""
        return self._cipher.encrypt(plaintext)

    def __repr__(self) -> str:
        return f"ProtectedStreamCipher(id={self._stream_id}, position={self._position})"
