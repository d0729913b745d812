"""Tests for payload encryption and the hashed block stream."""

import hashlib
import struct

import pytest
from Cryptodome.Cipher import AES

from kdbxstream.credentials import Credentials
from kdbxstream.exceptions import AuthenticationError, DecryptionError
from kdbxstream.parsing import CompressionType, KdbxHeader, read_kdbx3, write_kdbx3
from kdbxstream.parsing.payload import (
    build_hashed_blocks,
    decrypt_payload,
    encrypt_payload,
    read_hashed_blocks,
)
from kdbxstream.security import AesKdfConfig, Cipher, CipherContext

KEY = b"K" * 32
XML = b"<?xml version='1.0' encoding='utf-8'?>\n<KeePassFile />"


def make_header(
    cipher: Cipher = Cipher.AES256_CBC,
    compression: CompressionType = CompressionType.GZIP,
) -> KdbxHeader:
    return KdbxHeader.create(
        cipher=cipher, compression=compression, kdf_config=AesKdfConfig.fast()
    )


class TestHashedBlocks:
    """Tests for the hashed block stream."""

    def test_layout(self) -> None:
        """Test block prefix layout and the terminating block."""
        blocks = build_hashed_blocks(b"abcdef", block_size=4)

        index, digest, length = struct.unpack_from("<I32sI", blocks, 0)
        assert (index, length) == (0, 4)
        assert digest == hashlib.sha256(b"abcd").digest()

        index, digest, length = struct.unpack_from("<I32sI", blocks, 40 + 4)
        assert (index, length) == (1, 2)
        assert digest == hashlib.sha256(b"ef").digest()

        assert blocks[-40:] == struct.pack("<I32sI", 2, b"\x00" * 32, 0)

    @pytest.mark.parametrize("size", [0, 1, 4, 5, 1000])
    def test_read_back(self, size: int) -> None:
        """Test that block boundaries don't affect the content."""
        data = bytes(range(256)) * 4
        data = data[:size]
        assert read_hashed_blocks(build_hashed_blocks(data, block_size=4)) == data

    def test_hash_mismatch(self) -> None:
        """Test that modified block data is detected."""
        blocks = bytearray(build_hashed_blocks(b"abcdef"))
        blocks[40] ^= 0x01
        with pytest.raises(DecryptionError, match="Hash verification"):
            read_hashed_blocks(bytes(blocks))

    def test_index_mismatch(self) -> None:
        """Test that reordered blocks are detected."""
        blocks = bytearray(build_hashed_blocks(b"abcdef"))
        blocks[0] = 5
        with pytest.raises(DecryptionError, match="block index"):
            read_hashed_blocks(bytes(blocks))

    def test_truncated(self) -> None:
        """Test that a missing terminator is detected."""
        blocks = build_hashed_blocks(b"abcdef")
        with pytest.raises(DecryptionError, match="Truncated"):
            read_hashed_blocks(blocks[:-40])

    def test_nonzero_final_hash(self) -> None:
        """Test that the terminating block must carry a zero hash."""
        blocks = bytearray(build_hashed_blocks(b"abc"))
        blocks[-10] = 0xFF
        with pytest.raises(DecryptionError):
            read_hashed_blocks(bytes(blocks))


class TestPayloadCipher:
    """Tests for decrypt_payload / encrypt_payload."""

    @pytest.mark.parametrize("cipher", [Cipher.AES256_CBC, Cipher.CHACHA20])
    @pytest.mark.parametrize("compression", [CompressionType.NONE, CompressionType.GZIP])
    def test_round_trip(self, cipher: Cipher, compression: CompressionType) -> None:
        """Test payload round trip for each cipher and compression."""
        header = make_header(cipher, compression)
        ciphertext = encrypt_payload(header, KEY, XML)
        assert decrypt_payload(header, KEY, ciphertext) == XML

    def test_body_starts_with_stream_start_bytes(self) -> None:
        """Test the decrypted body layout."""
        header = make_header(compression=CompressionType.NONE)
        ciphertext = encrypt_payload(header, KEY, XML)

        body = CipherContext(header.cipher, KEY, header.encryption_iv).decrypt(ciphertext)

        assert body[:32] == header.stream_start_bytes
        assert read_hashed_blocks(body[32:]) == XML

    @pytest.mark.parametrize("cipher", [Cipher.AES256_CBC, Cipher.CHACHA20])
    def test_wrong_key(self, cipher: Cipher) -> None:
        """Test that a wrong key fails as authentication, not garbage."""
        header = make_header(cipher)
        ciphertext = encrypt_payload(header, KEY, XML)
        with pytest.raises(AuthenticationError):
            decrypt_payload(header, b"X" * 32, ciphertext)

    @pytest.mark.parametrize("cipher", [Cipher.AES256_CBC, Cipher.CHACHA20])
    @pytest.mark.parametrize("position", [0, 7, 16, 31])
    def test_tamper_stream_start_region(self, cipher: Cipher, position: int) -> None:
        """Test that flipping a byte in the stream-start region is an auth failure."""
        header = make_header(cipher)
        ciphertext = bytearray(encrypt_payload(header, KEY, XML))
        ciphertext[position] ^= 0x80
        with pytest.raises(AuthenticationError):
            decrypt_payload(header, KEY, bytes(ciphertext))

    @pytest.mark.parametrize("cipher", [Cipher.AES256_CBC, Cipher.CHACHA20])
    def test_tamper_body(self, cipher: Cipher) -> None:
        """Test that flipping bytes after the stream-start region is detected."""
        header = make_header(cipher, CompressionType.NONE)
        ciphertext = encrypt_payload(header, KEY, XML * 20)
        # Stop before the final two CBC blocks, where a flip can yield valid padding
        for position in range(48, len(ciphertext) - 32, 13):
            tampered = bytearray(ciphertext)
            tampered[position] ^= 0x01
            with pytest.raises(DecryptionError):
                decrypt_payload(header, KEY, bytes(tampered))

    def test_truncated_ciphertext(self) -> None:
        """Test that a truncated CBC payload is a decryption error."""
        header = make_header()
        ciphertext = encrypt_payload(header, KEY, XML)
        with pytest.raises(DecryptionError):
            decrypt_payload(header, KEY, ciphertext[:-5])

    @pytest.mark.parametrize("length", [0, 1, 16, 31])
    def test_body_shorter_than_marker(self, length: int) -> None:
        """Test that a body cut inside the marker is corruption, not a wrong key."""
        header = make_header(Cipher.CHACHA20)
        ciphertext = encrypt_payload(header, KEY, XML)
        with pytest.raises(DecryptionError, match="too short"):
            decrypt_payload(header, KEY, ciphertext[:length])

    def test_bad_padding(self) -> None:
        """Test that invalid padding behind a correct marker is a decryption error."""
        header = make_header(compression=CompressionType.NONE)
        body = header.stream_start_bytes + build_hashed_blocks(XML)
        body += b"\x00" * (16 - len(body) % 16)
        ciphertext = AES.new(KEY, AES.MODE_CBC, iv=header.encryption_iv).encrypt(body)
        with pytest.raises(DecryptionError, match="invalid payload"):
            decrypt_payload(header, KEY, ciphertext)

    def test_bad_gzip(self) -> None:
        """Test that a corrupt gzip stream is a decryption error."""
        header = make_header(compression=CompressionType.GZIP)
        body = header.stream_start_bytes + build_hashed_blocks(b"not gzip data")
        ciphertext = CipherContext(header.cipher, KEY, header.encryption_iv).encrypt(body)
        with pytest.raises(DecryptionError, match="decompression"):
            decrypt_payload(header, KEY, ciphertext)


class TestKdbx3File:
    """Tests for whole-file reading and writing."""

    def test_write_then_read(self) -> None:
        """Test header + key derivation + payload together."""
        header = make_header()
        creds = Credentials(password="123")

        data = write_kdbx3(header, XML, creds)
        payload = read_kdbx3(data, creds)

        assert payload.xml_data == XML
        assert payload.header.master_seed == header.master_seed
        assert payload.header.raw_header == header.to_bytes()

    def test_wrong_password(self) -> None:
        """Test that the wrong password is an authentication error."""
        data = write_kdbx3(make_header(), XML, Credentials(password="123"))
        with pytest.raises(AuthenticationError):
            read_kdbx3(data, Credentials(password="wrong"))
