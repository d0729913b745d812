"""Payload ciphers and small cryptographic helpers.

KDBX 3.x files name their payload cipher by UUID in the outer header.
Supported:
- AES-256-CBC with PKCS#7 padding (KeePass default)
- ChaCha20 (RFC 7539, 96-bit nonce)

Twofish is recognized by KeePass plugins but is not implemented here;
its UUID is rejected like any other unknown cipher.
"""

from __future__ import annotations

import hmac
import os
from enum import Enum

from Cryptodome.Cipher import AES, ChaCha20
from Cryptodome.Util.Padding import pad, unpad

from kdbxstream.exceptions import DecryptionError, UnknownCipherError


class Cipher(Enum):
    """Payload encryption ciphers, keyed by their KDBX UUID."""

    AES256_CBC = bytes.fromhex("31c1f2e6bf714350be5805216afc5aff")
    CHACHA20 = bytes.fromhex("d6038a2b8b6f4cb5a524339a31dbb59a")

    @property
    def key_size(self) -> int:
        """Key size in bytes."""
        return 32

    @property
    def iv_size(self) -> int:
        """IV / nonce size in bytes."""
        return 16 if self is Cipher.AES256_CBC else 12

    @property
    def display_name(self) -> str:
        """Human-readable cipher name."""
        names = {
            Cipher.AES256_CBC: "AES-256-CBC",
            Cipher.CHACHA20: "ChaCha20",
        }
        return names[self]

    @classmethod
    def from_uuid(cls, uuid_bytes: bytes) -> Cipher:
        """Look up a cipher by its KDBX UUID.

        Raises:
            UnknownCipherError: If the UUID is not a supported cipher
        """
        for cipher in cls:
            if cipher.value == uuid_bytes:
                return cipher
        raise UnknownCipherError(uuid_bytes)


class CipherContext:
    """One-shot encryption/decryption of a whole payload."""

    def __init__(self, cipher: Cipher, key: bytes, iv: bytes) -> None:
        """Initialize the context.

        Args:
            cipher: Cipher to use
            key: 32-byte derived key
            iv: IV/nonce of cipher.iv_size bytes

        Raises:
            ValueError: If the key or IV has the wrong size
        """
        if len(key) != cipher.key_size:
            raise ValueError(f"{cipher.display_name} key must be {cipher.key_size} bytes")
        if len(iv) != cipher.iv_size:
            raise ValueError(f"{cipher.display_name} IV must be {cipher.iv_size} bytes")
        self._cipher = cipher
        self._key = key
        self._iv = iv

    def encrypt(self, plaintext: bytes) -> bytes:
        """Encrypt plaintext, padding it for block ciphers."""
        if self._cipher is Cipher.AES256_CBC:
            aes = AES.new(self._key, AES.MODE_CBC, iv=self._iv)
            return aes.encrypt(pad(plaintext, AES.block_size))
        return ChaCha20.new(key=self._key, nonce=self._iv).encrypt(plaintext)

    def decrypt(self, ciphertext: bytes, strip_padding: bool = True) -> bytes:
        """Decrypt ciphertext and strip padding.

        Args:
            ciphertext: Encrypted payload
            strip_padding: Set to False to inspect the plaintext before the
                padding is checked, then call strip_padding() on it

        Raises:
            DecryptionError: If the ciphertext length or padding is invalid
        """
        if self._cipher is Cipher.AES256_CBC:
            if not ciphertext or len(ciphertext) % AES.block_size:
                raise DecryptionError("Decryption failed - invalid payload length")
            aes = AES.new(self._key, AES.MODE_CBC, iv=self._iv)
            plaintext = aes.decrypt(ciphertext)
            return self.strip_padding(plaintext) if strip_padding else plaintext
        return ChaCha20.new(key=self._key, nonce=self._iv).decrypt(ciphertext)

    def strip_padding(self, plaintext: bytes) -> bytes:
        """Remove block cipher padding from decrypted data.

        Raises:
            DecryptionError: If the padding is invalid
        """
        if self._cipher is not Cipher.AES256_CBC:
            return plaintext
        try:
            return unpad(plaintext, AES.block_size)
        except ValueError as e:
            raise DecryptionError("Decryption failed - invalid payload") from e


def constant_time_compare(a: bytes, b: bytes) -> bool:
    """Compare two byte strings without leaking timing information."""
    return hmac.compare_digest(a, b)


def secure_random_bytes(n: int) -> bytes:
    """Return n bytes from the operating system CSPRNG."""
    return os.urandom(n)
