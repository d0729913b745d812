"""Key derivation for KDBX 3.x databases.

The final payload key is derived in three steps:
1. Composite key: SHA-256 over the independently hashed credential parts
   (see kdbxstream.credentials)
2. Transform: AES-256-ECB encryption of the composite key with the header's
   transform seed as key, repeated transform_rounds times, then SHA-256.
   The round count is the brute-force deterrent and dominates runtime.
3. Final key: SHA-256(master_seed || transformed_key)

Security considerations:
- All derived keys are returned as SecureBytes for zeroization
- Derivation is not cancellable; run it where the caller can abandon it
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from Cryptodome.Cipher import AES

from kdbxstream.exceptions import UnknownKdfError

from .crypto import secure_random_bytes
from .memory import SecureBytes

if TYPE_CHECKING:
    from kdbxstream.parsing.header import KdbxHeader

logger = logging.getLogger(__name__)


class KdfType(Enum):
    """Key Derivation Functions known to the KDBX family.

    The UUID values are defined in the KDBX specification. A KDBX 3.x header has
    no KDF field and always implies AES-KDF; the Argon2 variants are listed
    so they can be named when identifying newer files.
    """

    AES_KDF = bytes.fromhex("c9d9f39a628a4460bf740d08c18a4fea")
    ARGON2D = bytes.fromhex("ef636ddf8c29444b91f7a9a403e30a0c")
    ARGON2ID = bytes.fromhex("9e298b1956db4773b23dfc3ec6f0a1e6")

    @property
    def display_name(self) -> str:
        """Human-readable KDF name."""
        names = {
            KdfType.AES_KDF: "AES-KDF",
            KdfType.ARGON2D: "Argon2d",
            KdfType.ARGON2ID: "Argon2id",
        }
        return names[self]

    @classmethod
    def from_uuid(cls, uuid_bytes: bytes) -> KdfType:
        """Look up KDF by its KDBX UUID.

        Raises:
            UnknownKdfError: If the UUID doesn't match any known KDF
        """
        for kdf in cls:
            if kdf.value == uuid_bytes:
                return kdf
        raise UnknownKdfError(f"Unknown KDF UUID: {uuid_bytes.hex()}")


DEFAULT_AES_KDF_ROUNDS = 60_000


@dataclass(frozen=True, slots=True)
class AesKdfConfig:
    """Configuration for AES-KDF.

    Attributes:
        rounds: Number of AES encryption rounds
        salt: 32-byte transform seed
    """

    rounds: int
    salt: bytes

    def __post_init__(self) -> None:
        """Validate configuration."""
        if len(self.salt) != 32:
            raise ValueError("AES-KDF salt must be exactly 32 bytes")
        if self.rounds < 1:
            raise ValueError("AES-KDF rounds must be at least 1")

    @classmethod
    def default(cls, salt: bytes | None = None) -> AesKdfConfig:
        """KeePass 2.x default round count."""
        return cls(rounds=DEFAULT_AES_KDF_ROUNDS, salt=salt or secure_random_bytes(32))

    @classmethod
    def high_security(cls, salt: bytes | None = None) -> AesKdfConfig:
        """Roughly one second of derivation on a current desktop CPU."""
        return cls(rounds=1_000_000, salt=salt or secure_random_bytes(32))

    @classmethod
    def fast(cls, salt: bytes | None = None) -> AesKdfConfig:
        """Cheap parameters for tests. Not for real databases."""
        return cls(rounds=1_000, salt=salt or secure_random_bytes(32))


def derive_key_aes_kdf(password: bytes, config: AesKdfConfig) -> SecureBytes:
    """Transform a 32-byte composite key with AES-KDF.

    Args:
        password: 32-byte composite key
        config: AES-KDF configuration

    Returns:
        32-byte transformed key wrapped in SecureBytes

    Raises:
        ValueError: If password is not 32 bytes
    """
    if len(password) != 32:
        raise ValueError("AES-KDF requires 32-byte input")

    cipher = AES.new(config.salt, AES.MODE_ECB)

    # ECB encrypts both 16-byte halves independently in one call
    block = bytearray(password)
    for _ in range(config.rounds):
        block[:] = cipher.encrypt(bytes(block))

    derived = hashlib.sha256(block).digest()

    for i in range(len(block)):
        block[i] = 0

    return SecureBytes(derived)


def derive_master_key(composite_key: SecureBytes, header: KdbxHeader) -> SecureBytes:
    """Derive the payload key from a composite key and header parameters.

    Args:
        composite_key: Output of Credentials.composite_key()
        header: Parsed or freshly created header

    Returns:
        32-byte key for the payload cipher
    """
    logger.debug("Deriving key with AES-KDF (%d rounds)", header.transform_rounds)
    config = AesKdfConfig(rounds=header.transform_rounds, salt=header.transform_seed)
    with derive_key_aes_kdf(composite_key.data, config) as transformed:
        master = hashlib.sha256(header.master_seed + transformed.data).digest()
    return SecureBytes(master)
