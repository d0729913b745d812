"""Custom exception hierarchy for kdbxstream.

All exceptions raised by the load/save pipeline inherit from KdbxError.

Exception Hierarchy:
    KdbxError (base)
    ├── FormatError
    │   ├── InvalidSignatureError
    │   ├── UnsupportedVersionError
    │   └── CorruptedDataError
    ├── UnsupportedFormatError
    │   ├── UnknownCipherError
    │   ├── UnknownKdfError
    │   ├── UnknownCompressionError
    │   └── UnknownStreamCipherError
    ├── CryptoError
    │   ├── DecryptionError
    │   └── AuthenticationError
    ├── CredentialError
    │   ├── InvalidKeyFileError
    │   └── MissingCredentialsError
    └── ParseError

Security Note:
    Exception messages never include key material or protected values.
"""

from __future__ import annotations


class KdbxError(Exception):
    """Base exception for all kdbxstream errors."""


# --- Format Errors ---


class FormatError(KdbxError):
    """Malformed or truncated container structure.

    Fatal to the load; never retried.
    """


class InvalidSignatureError(FormatError):
    """Invalid KDBX file signature (magic bytes)."""


class UnsupportedVersionError(FormatError):
    """The file uses a KDBX version this library cannot read."""

    def __init__(self, version_major: int, version_minor: int) -> None:
        self.version_major = version_major
        self.version_minor = version_minor
        super().__init__(
            f"Unsupported KDBX version: {version_major}.{version_minor}"
        )


class CorruptedDataError(FormatError):
    """Database file is corrupted or truncated."""


# --- Unsupported algorithm identifiers ---


class UnsupportedFormatError(KdbxError):
    """The file names an algorithm or format this library does not implement."""


class UnknownCipherError(UnsupportedFormatError):
    """Unknown or unsupported payload cipher."""

    def __init__(self, cipher_uuid: bytes) -> None:
        self.cipher_uuid = cipher_uuid
        super().__init__(f"Unknown cipher: {cipher_uuid.hex()}")


class UnknownKdfError(UnsupportedFormatError):
    """Unknown or unsupported key derivation function."""


class UnknownCompressionError(UnsupportedFormatError):
    """Unknown compression algorithm identifier."""

    def __init__(self, flag: int) -> None:
        self.flag = flag
        super().__init__(f"Unknown compression algorithm: {flag}")


class UnknownStreamCipherError(UnsupportedFormatError):
    """Unknown or unsupported protected-field stream cipher."""

    def __init__(self, stream_id: int) -> None:
        self.stream_id = stream_id
        super().__init__(f"Unsupported protected stream cipher: {stream_id}")


# --- Crypto Errors ---


class CryptoError(KdbxError):
    """Error in cryptographic operations."""


class DecryptionError(CryptoError):
    """Failed to decrypt database content.

    Raised for low-level failures such as invalid padding or a block
    hash mismatch further into the payload.
    """

    def __init__(self, message: str = "Decryption failed") -> None:
        super().__init__(message)


class AuthenticationError(CryptoError):
    """Stream-start bytes did not match after decryption.

    Reported separately from DecryptionError so that callers can say
    "wrong credentials" rather than "corrupt file".
    """

    def __init__(
        self, message: str = "Authentication failed - wrong credentials or corrupted data"
    ) -> None:
        super().__init__(message)


# --- Credential Errors ---


class CredentialError(KdbxError):
    """Error with database credentials."""


class InvalidKeyFileError(CredentialError):
    """The keyfile is malformed or failed hash verification."""

    def __init__(self, message: str = "Invalid keyfile") -> None:
        super().__init__(message)


class MissingCredentialsError(CredentialError):
    """No credentials provided."""

    def __init__(self) -> None:
        super().__init__("At least one credential (password or keyfile) is required")


# --- Payload Errors ---


class ParseError(KdbxError):
    """Malformed XML or structure inside the decrypted payload."""

    def __init__(self, message: str = "Invalid KDBX XML structure") -> None:
        super().__init__(message)
