"""KDBX 3.x file reading and writing.

KDBX 3.x structure:
1. Outer header (plaintext, see header.py)
2. Encrypted body (see payload.py)
   - Stream-start bytes
   - Hashed block stream of the (gzip-compressed) XML document

This module ties the header codec, key derivation and payload cipher
together. The XML document is returned as bytes; protected values inside
it are still encrypted with the protected-field stream cipher.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from kdbxstream.credentials import Credentials
from kdbxstream.security import derive_master_key

from .header import KdbxHeader
from .payload import decrypt_payload, encrypt_payload

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class DecryptedPayload:
    """Result of decrypting a KDBX 3.x file.

    Attributes:
        header: Parsed outer header
        xml_data: Decompressed XML document
    """

    header: KdbxHeader
    xml_data: bytes


class Kdbx3Reader:
    """Reader for KDBX 3.x database files."""

    def __init__(self, data: bytes) -> None:
        """Initialize reader with file data.

        Args:
            data: Complete KDBX file contents
        """
        self._data = data

    def decrypt(self, credentials: Credentials) -> DecryptedPayload:
        """Decrypt the file.

        Args:
            credentials: Password and/or keyfile

        Returns:
            DecryptedPayload with header and XML

        Raises:
            FormatError: If the header is malformed
            UnsupportedFormatError: If the header names an unknown algorithm
            AuthenticationError: If the credentials are wrong
            DecryptionError: If the body is corrupted
        """
        header, body_offset = KdbxHeader.parse(self._data)

        with credentials.composite_key() as composite_key:
            with derive_master_key(composite_key, header) as master_key:
                xml_data = decrypt_payload(
                    header, master_key.data, self._data[body_offset:]
                )

        logger.debug("Decrypted payload (%d bytes of XML)", len(xml_data))
        return DecryptedPayload(header=header, xml_data=xml_data)


class Kdbx3Writer:
    """Writer for KDBX 3.x database files."""

    def encrypt(
        self,
        header: KdbxHeader,
        xml_data: bytes,
        credentials: Credentials,
    ) -> bytes:
        """Encrypt an XML document to KDBX 3.x format.

        The header is written as given: fresh seeds must already be in
        place (see KdbxHeader.rekeyed()).

        Args:
            header: Outer header configuration
            xml_data: XML document with protected values already encrypted
            credentials: Password and/or keyfile

        Returns:
            Complete KDBX file as bytes
        """
        header_bytes = header.to_bytes()

        with credentials.composite_key() as composite_key:
            with derive_master_key(composite_key, header) as master_key:
                body = encrypt_payload(header, master_key.data, xml_data)

        return header_bytes + body


def read_kdbx3(data: bytes, credentials: Credentials) -> DecryptedPayload:
    """Convenience function to read a KDBX 3.x file."""
    return Kdbx3Reader(data).decrypt(credentials)


def write_kdbx3(header: KdbxHeader, xml_data: bytes, credentials: Credentials) -> bytes:
    """Convenience function to write a KDBX 3.x file."""
    return Kdbx3Writer().encrypt(header, xml_data, credentials)
