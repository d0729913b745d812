"""Security-critical components for kdbxstream.

This module contains all security-sensitive code including:
- Secure memory handling (SecureBytes)
- Payload ciphers
- Key derivation functions
- The protected-field stream cipher

All code in this module should be audited carefully.
"""

from .crypto import (
    Cipher,
    CipherContext,
    constant_time_compare,
    secure_random_bytes,
)
from .kdf import (
    DEFAULT_AES_KDF_ROUNDS,
    AesKdfConfig,
    KdfType,
    derive_key_aes_kdf,
    derive_master_key,
)
from .memory import SecureBytes
from .stream import ProtectedStreamCipher, ProtectedStreamId

__all__ = [
    # Memory
    "SecureBytes",
    # Crypto
    "Cipher",
    "CipherContext",
    "constant_time_compare",
    "secure_random_bytes",
    # KDF
    "DEFAULT_AES_KDF_ROUNDS",
    "AesKdfConfig",
    "KdfType",
    "derive_key_aes_kdf",
    "derive_master_key",
    # Protected fields
    "ProtectedStreamCipher",
    "ProtectedStreamId",
]
