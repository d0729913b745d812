"""Tests for the protected-field stream cipher cursor."""

import hashlib

import pytest
from Cryptodome.Cipher import ChaCha20, Salsa20

from kdbxstream.exceptions import UnknownStreamCipherError
from kdbxstream.security import ProtectedStreamCipher, ProtectedStreamId
from kdbxstream.security.stream import SALSA20_NONCE

STREAM_KEY = b"\x5a" * 32
VALUES = [b"secret", b"", b"hunter2", b"x" * 100, b"", b"last"]


def salsa20_keystream(length: int) -> bytes:
    cipher = Salsa20.new(key=hashlib.sha256(STREAM_KEY).digest(), nonce=SALSA20_NONCE)
    return cipher.encrypt(b"\x00" * length)


def chacha20_keystream(length: int) -> bytes:
    key_hash = hashlib.sha512(STREAM_KEY).digest()
    cipher = ChaCha20.new(key=key_hash[:32], nonce=key_hash[32:44])
    return cipher.encrypt(b"\x00" * length)


def xor(data: bytes, stream: bytes) -> bytes:
    return bytes(a ^ b for a, b in zip(data, stream))


class TestKeyStream:
    """Tests that each algorithm produces the KeePass key stream."""

    def test_salsa20_key_stream(self) -> None:
        """Test Salsa20 keyed with SHA-256 of the stream key and the fixed nonce."""
        cursor = ProtectedStreamCipher(ProtectedStreamId.SALSA20, STREAM_KEY)
        assert cursor.encrypt_next(b"\x00" * 40) == salsa20_keystream(40)

    def test_chacha20_key_stream(self) -> None:
        """Test ChaCha20 keyed from SHA-512 of the stream key."""
        cursor = ProtectedStreamCipher(ProtectedStreamId.CHACHA20, STREAM_KEY)
        assert cursor.encrypt_next(b"\x00" * 40) == chacha20_keystream(40)

    def test_none_is_identity(self) -> None:
        """Test that stream id 0 leaves values untouched."""
        cursor = ProtectedStreamCipher(ProtectedStreamId.NONE, STREAM_KEY)
        assert cursor.decrypt_next(b"plain") == b"plain"
        assert cursor.position == 5

    @pytest.mark.parametrize("stream_id", [ProtectedStreamId.ARC4_VARIANT, 99])
    def test_unsupported_ids(self, stream_id: int) -> None:
        """Test that ArcFour and unknown ids are rejected."""
        with pytest.raises(UnknownStreamCipherError) as exc_info:
            ProtectedStreamCipher(stream_id, STREAM_KEY)
        assert exc_info.value.stream_id == stream_id


class TestCursorOrdering:
    """Tests for document-order consumption."""

    @pytest.mark.parametrize(
        "stream_id", [ProtectedStreamId.SALSA20, ProtectedStreamId.CHACHA20]
    )
    def test_round_trip_in_order(self, stream_id: ProtectedStreamId) -> None:
        """Test that a fresh cursor decrypts what another encrypted."""
        writer = ProtectedStreamCipher(stream_id, STREAM_KEY)
        encrypted = [writer.encrypt_next(v) for v in VALUES]

        reader = ProtectedStreamCipher(stream_id, STREAM_KEY)
        assert [reader.decrypt_next(c) for c in encrypted] == VALUES
        assert reader.position == writer.position == sum(len(v) for v in VALUES)

    def test_values_use_consecutive_key_stream(self) -> None:
        """Test that value N starts where value N-1 ended."""
        cursor = ProtectedStreamCipher(ProtectedStreamId.SALSA20, STREAM_KEY)
        encrypted = b"".join(cursor.encrypt_next(v) for v in VALUES)

        plaintext = b"".join(VALUES)
        assert encrypted == xor(plaintext, salsa20_keystream(len(plaintext)))

    def test_position_advances(self) -> None:
        """Test position tracking."""
        cursor = ProtectedStreamCipher(ProtectedStreamId.SALSA20, STREAM_KEY)
        assert cursor.position == 0
        cursor.decrypt_next(b"abc")
        assert cursor.position == 3
        cursor.decrypt_next(b"defgh")
        assert cursor.position == 8

    def test_empty_value_is_noop(self) -> None:
        """Test that a zero-length value returns b"" without consuming stream."""
        cursor = ProtectedStreamCipher(ProtectedStreamId.SALSA20, STREAM_KEY)
        cursor.decrypt_next(b"abc")

        assert cursor.decrypt_next(b"") == b""
        assert cursor.position == 3

        other = ProtectedStreamCipher(ProtectedStreamId.SALSA20, STREAM_KEY)
        other.decrypt_next(b"abc")
        assert cursor.decrypt_next(b"xyz") == other.decrypt_next(b"xyz")

    def test_out_of_order_gives_wrong_plaintext(self) -> None:
        """Test that skipping a value misaligns every later value."""
        writer = ProtectedStreamCipher(ProtectedStreamId.SALSA20, STREAM_KEY)
        writer.encrypt_next(b"first")
        second = writer.encrypt_next(b"second")

        reader = ProtectedStreamCipher(ProtectedStreamId.SALSA20, STREAM_KEY)
        assert reader.decrypt_next(second) != b"second"

    def test_repr(self) -> None:
        """Test that repr shows id and position only."""
        cursor = ProtectedStreamCipher(ProtectedStreamId.CHACHA20, STREAM_KEY)
        cursor.decrypt_next(b"ab")
        assert repr(cursor) == "ProtectedStreamCipher(id=3, position=2)"
