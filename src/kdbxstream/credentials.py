"""Credentials for opening and saving databases.

A database is locked by a password, a keyfile, or both. Each component is
hashed on its own and the composite key is SHA-256 over the concatenated
component hashes (password first, then keyfile). Plaintext components are
not kept once the Credentials object has been built.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
from pathlib import Path
from types import TracebackType

import defusedxml.ElementTree as DefusedET
from defusedxml import DefusedXmlException

from .exceptions import CredentialError, InvalidKeyFileError, MissingCredentialsError
from .security import SecureBytes, constant_time_compare


def _process_keyfile(keyfile_data: bytes) -> bytes:
    """Process keyfile data according to KeePass keyfile format.

    KeePass supports several keyfile formats:
    1. XML keyfile (v1.0 or v2.0) - key is base64/hex encoded in XML
    2. 32-byte raw binary - used directly
    3. 64-byte hex string - decoded from hex
    4. Any other size - SHA-256 hashed

    Raises:
        InvalidKeyFileError: If a v2.0 XML keyfile fails hash verification
    """
    try:
        tree = DefusedET.fromstring(keyfile_data)
    except (DefusedET.ParseError, DefusedXmlException, ValueError):
        tree = None  # Not an XML keyfile

    if tree is not None:
        version_elem = tree.find("Meta/Version")
        data_elem = tree.find("Key/Data")
        if version_elem is not None and data_elem is not None:
            version = version_elem.text or ""
            if version.startswith("1.0"):
                try:
                    return base64.b64decode(data_elem.text or "", validate=True)
                except binascii.Error as e:
                    raise InvalidKeyFileError("Keyfile data is not valid base64") from e
            if version.startswith("2.0"):
                key_hex = "".join((data_elem.text or "").split())
                try:
                    key_bytes = bytes.fromhex(key_hex)
                    expected = bytes.fromhex(data_elem.attrib.get("Hash", ""))
                except ValueError as e:
                    raise InvalidKeyFileError("Keyfile data is not valid hex") from e
                if expected:
                    computed = hashlib.sha256(key_bytes).digest()[:4]
                    if not constant_time_compare(expected, computed):
                        raise InvalidKeyFileError("Keyfile hash verification failed")
                return key_bytes

    if len(keyfile_data) == 32:
        return keyfile_data

    if len(keyfile_data) == 64:
        try:
            return bytes.fromhex(keyfile_data.decode("ascii"))
        except (ValueError, UnicodeDecodeError):
            pass  # Not hex, fall through to hashing

    return hashlib.sha256(keyfile_data).digest()


class Credentials:
    """Password and/or keyfile used to lock a database.

    Example:
        >>> creds = Credentials(password="123")
        >>> db = Database.load(creds, "vault.kdbx")

        >>> creds = Credentials.from_keyfile("vault.key", password="123")
    """

    __slots__ = ("_password_hash", "_keyfile_key")

    def __init__(
        self,
        password: str | bytes | None = None,
        keyfile_data: bytes | None = None,
    ) -> None:
        """Hash the supplied credential components.

        Args:
            password: Password as text (UTF-8 encoded) or raw bytes
            keyfile_data: Keyfile contents

        Raises:
            MissingCredentialsError: If neither component is given
            InvalidKeyFileError: If the keyfile is malformed
        """
        if password is None and keyfile_data is None:
            raise MissingCredentialsError()

        self._password_hash: SecureBytes | None = None
        self._keyfile_key: SecureBytes | None = None

        if password is not None:
            if isinstance(password, str):
                password = password.encode("utf-8")
            self._password_hash = SecureBytes(hashlib.sha256(password).digest())
        if keyfile_data is not None:
            self._keyfile_key = SecureBytes(_process_keyfile(keyfile_data))

    @classmethod
    def from_keyfile(
        cls,
        keyfile: str | Path,
        password: str | bytes | None = None,
    ) -> Credentials:
        """Build credentials from a keyfile on disk.

        Raises:
            FileNotFoundError: If the keyfile does not exist
        """
        keyfile_path = Path(keyfile)
        if not keyfile_path.exists():
            raise FileNotFoundError(f"Keyfile not found: {keyfile}")
        return cls(password=password, keyfile_data=keyfile_path.read_bytes())

    @property
    def has_password(self) -> bool:
        return self._password_hash is not None

    @property
    def has_keyfile(self) -> bool:
        return self._keyfile_key is not None

    def composite_key(self) -> SecureBytes:
        """Return SHA-256 over the component hashes.

        The caller owns the result and should zeroize it after use.

        Raises:
            CredentialError: If the credentials were zeroized
        """
        parts: list[bytes] = []
        try:
            if self._password_hash is not None:
                parts.append(self._password_hash.data)
            if self._keyfile_key is not None:
                parts.append(self._keyfile_key.data)
        except ValueError as e:
            raise CredentialError("Credentials have been cleared") from e
        return SecureBytes(hashlib.sha256(b"".join(parts)).digest())

    def zeroize(self) -> None:
        """Clear the component hashes from memory."""
        if self._password_hash is not None:
            self._password_hash.zeroize()
        if self._keyfile_key is not None:
            self._keyfile_key.zeroize()

    def __enter__(self) -> Credentials:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.zeroize()

    def __repr__(self) -> str:
        parts = []
        if self.has_password:
            parts.append("password")
        if self.has_keyfile:
            parts.append("keyfile")
        return f"Credentials({'+'.join(parts)})"
