"""Tests for choosing the payload cipher and compression on save."""

import pytest

from kdbxstream import AesKdfConfig, Cipher, CompressionType, Credentials, Database
from kdbxstream.parsing import KdbxHeader
from kdbxstream.security import ProtectedStreamId


@pytest.fixture
def db() -> Database:
    database = Database(kdf_config=AesKdfConfig.fast())
    database.root_group.create_entry(title="Test", password="secret")
    return database


class TestCipherSelection:
    """Tests for the cipher option."""

    def test_default_is_aes(self) -> None:
        """Test that new databases use AES-256-CBC and gzip."""
        db = Database()
        assert db.header.cipher == Cipher.AES256_CBC
        assert db.header.compression == CompressionType.GZIP
        assert db.header.inner_random_stream_id == ProtectedStreamId.SALSA20

    @pytest.mark.parametrize("cipher", [Cipher.AES256_CBC, Cipher.CHACHA20])
    def test_save_with_cipher(self, db: Database, cipher: Cipher) -> None:
        """Test saving and reloading with each cipher."""
        creds = Credentials(password="pw")
        data = db.to_bytes(creds, cipher=cipher)

        loaded = Database.load(creds, data)

        assert loaded.header.cipher == cipher
        assert KdbxHeader.parse(data)[0].cipher == cipher
        assert loaded.find_entries(title="Test")[0].password == "secret"

    def test_cipher_is_kept_for_later_saves(self, db: Database) -> None:
        """Test that the chosen cipher sticks."""
        creds = Credentials(password="pw")
        db.to_bytes(creds, cipher=Cipher.CHACHA20)

        data = db.to_bytes(creds)

        assert KdbxHeader.parse(data)[0].cipher == Cipher.CHACHA20

    def test_constructor_cipher(self) -> None:
        """Test choosing the cipher when creating the database."""
        db = Database(cipher=Cipher.CHACHA20, kdf_config=AesKdfConfig.fast())
        creds = Credentials(password="pw")

        loaded = Database.load(creds, db.to_bytes(creds))

        assert loaded.header.cipher == Cipher.CHACHA20

    def test_cipher_and_kdf_together(self, db: Database) -> None:
        """Test passing both options to save()."""
        creds = Credentials(password="pw")
        data = db.to_bytes(
            creds,
            cipher=Cipher.CHACHA20,
            kdf_config=AesKdfConfig(rounds=50, salt=b"z" * 32),
        )

        header, _ = KdbxHeader.parse(data)
        assert header.cipher == Cipher.CHACHA20
        assert header.transform_rounds == 50
        assert header.transform_seed == b"z" * 32
        assert Database.load(creds, data).find_entries(title="Test")


class TestCompression:
    """Tests for the compression option."""

    def test_uncompressed(self, db: Database) -> None:
        """Test saving without gzip."""
        creds = Credentials(password="pw")
        data = db.to_bytes(creds, compression=CompressionType.NONE)

        loaded = Database.load(creds, data)

        assert loaded.header.compression == CompressionType.NONE
        assert loaded.find_entries(title="Test")[0].password == "secret"

    def test_compression_shrinks_payload(self) -> None:
        """Test that gzip pays off on a repetitive tree."""
        db = Database(kdf_config=AesKdfConfig.fast())
        for i in range(50):
            db.root_group.create_entry(title=f"Entry {i}", username="same user")
        creds = Credentials(password="pw")

        plain = db.to_bytes(creds, compression=CompressionType.NONE)
        packed = db.to_bytes(creds, compression=CompressionType.GZIP)

        assert len(packed) < len(plain)
