"""Tests for AES-KDF configuration and key derivation."""

import hashlib

import pytest
from Cryptodome.Cipher import AES

from kdbxstream import Credentials, Database
from kdbxstream.exceptions import UnknownKdfError
from kdbxstream.parsing import KdbxHeader
from kdbxstream.security import (
    DEFAULT_AES_KDF_ROUNDS,
    AesKdfConfig,
    KdfType,
    SecureBytes,
    derive_key_aes_kdf,
    derive_master_key,
)


class TestAesKdfConfigPresets:
    """Tests for AesKdfConfig preset factory methods."""

    def test_default_preset(self) -> None:
        """Test default() uses the KeePass round count."""
        config = AesKdfConfig.default()

        assert config.rounds == DEFAULT_AES_KDF_ROUNDS == 60_000
        assert len(config.salt) == 32

    def test_high_security_preset(self) -> None:
        """Test high_security() has more rounds than default()."""
        assert AesKdfConfig.high_security().rounds > AesKdfConfig.default().rounds

    def test_fast_preset(self) -> None:
        """Test fast() has minimal rounds."""
        assert AesKdfConfig.fast().rounds == 1_000

    def test_custom_salt(self) -> None:
        """Test that custom salt can be provided."""
        config = AesKdfConfig.default(salt=b"x" * 32)
        assert config.salt == b"x" * 32

    def test_presets_generate_unique_salts(self) -> None:
        """Test that each preset call generates a unique salt."""
        assert AesKdfConfig.default().salt != AesKdfConfig.default().salt

    def test_invalid_salt_length(self) -> None:
        """Test that the salt must be 32 bytes."""
        with pytest.raises(ValueError, match="32 bytes"):
            AesKdfConfig(rounds=10, salt=b"short")

    def test_invalid_rounds(self) -> None:
        """Test that rounds must be positive."""
        with pytest.raises(ValueError, match="at least 1"):
            AesKdfConfig(rounds=0, salt=b"x" * 32)

    def test_config_is_frozen(self) -> None:
        """Test that configs are immutable."""
        config = AesKdfConfig.fast()
        with pytest.raises(AttributeError):
            config.rounds = 5  # type: ignore[misc]


class TestKdfType:
    """Tests for KDF identification."""

    def test_from_uuid(self) -> None:
        """Test lookup by UUID."""
        assert KdfType.from_uuid(KdfType.AES_KDF.value) is KdfType.AES_KDF

    def test_argon2_names(self) -> None:
        """Test that the Argon2 UUIDs of newer files are recognized."""
        kdf = KdfType.from_uuid(bytes.fromhex("9e298b1956db4773b23dfc3ec6f0a1e6"))
        assert kdf is KdfType.ARGON2ID
        assert kdf.display_name == "Argon2id"

    def test_unknown_uuid(self) -> None:
        """Test that an unknown UUID raises UnknownKdfError."""
        with pytest.raises(UnknownKdfError):
            KdfType.from_uuid(b"\x00" * 16)


class TestAesKdf:
    """Tests for the AES-KDF transform."""

    def test_matches_reference_transform(self) -> None:
        """Test against a direct AES-ECB computation."""
        key = bytes(range(32))
        config = AesKdfConfig(rounds=3, salt=b"\x07" * 32)

        block = key
        aes = AES.new(config.salt, AES.MODE_ECB)
        for _ in range(3):
            block = aes.encrypt(block)
        expected = hashlib.sha256(block).digest()

        with derive_key_aes_kdf(key, config) as derived:
            assert derived.data == expected

    def test_rounds_change_result(self) -> None:
        """Test that the round count is part of the derivation."""
        key = b"k" * 32
        salt = b"s" * 32
        one = derive_key_aes_kdf(key, AesKdfConfig(rounds=1, salt=salt))
        two = derive_key_aes_kdf(key, AesKdfConfig(rounds=2, salt=salt))
        assert one.data != two.data

    def test_requires_32_byte_input(self) -> None:
        """Test that the composite key must be 32 bytes."""
        with pytest.raises(ValueError):
            derive_key_aes_kdf(b"short", AesKdfConfig.fast())

    def test_master_key_mixes_master_seed(self) -> None:
        """Test final key = SHA-256(master_seed || transformed key)."""
        header = KdbxHeader.create(kdf_config=AesKdfConfig(rounds=2, salt=b"t" * 32))
        composite = SecureBytes(b"c" * 32)

        transformed = derive_key_aes_kdf(
            b"c" * 32, AesKdfConfig(rounds=2, salt=b"t" * 32)
        ).data
        expected = hashlib.sha256(header.master_seed + transformed).digest()

        with derive_master_key(composite, header) as master:
            assert master.data == expected

    def test_master_key_from_credentials(self) -> None:
        """Test that different passwords derive different keys."""
        header = KdbxHeader.create(kdf_config=AesKdfConfig.fast())
        key_a = derive_master_key(Credentials(password="a").composite_key(), header)
        key_b = derive_master_key(Credentials(password="b").composite_key(), header)
        assert key_a.data != key_b.data


class TestKdfConfigOnSave:
    """Tests for using kdf_config when saving databases."""

    def test_to_bytes_with_config(self) -> None:
        """Test to_bytes() with kdf_config."""
        creds = Credentials(password="test")
        db = Database()
        db.root_group.create_entry(title="Test")

        data = db.to_bytes(creds, kdf_config=AesKdfConfig(rounds=10, salt=b"q" * 32))

        db2 = Database.load(creds, data)
        assert db2.header.transform_rounds == 10
        assert db2.find_entries(title="Test")

    def test_save_keeps_round_count(self) -> None:
        """Test that later saves keep the rounds but change the seed."""
        creds = Credentials(password="test")
        db = Database(kdf_config=AesKdfConfig.fast())
        first = db.header.transform_seed

        db2 = Database.load(creds, db.to_bytes(creds))

        assert db2.header.transform_rounds == 1_000
        assert db2.header.transform_seed != first
