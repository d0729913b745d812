"""High-level Database API for KDBX files.

This module provides the main interface for working with KeePass databases:
- Loading and decrypting KDBX 3.x files (streaming or DOM parsing)
- Creating new databases and populating them
- Visiting and searching groups and entries
- Saving databases with fresh key material
"""

from __future__ import annotations

import dataclasses
import hashlib
import logging
import os
from collections.abc import Callable, Iterator
from enum import Enum
from pathlib import Path
from typing import Any, BinaryIO

from .credentials import Credentials
from .models import DatabaseSettings, Entry, Group, walk
from .parsing import CompressionType, KdbxHeader, build_xml, parse_xml, read_kdbx3, write_kdbx3
from .security import AesKdfConfig, Cipher, ProtectedStreamCipher

logger = logging.getLogger(__name__)

__all__ = ["Database", "DatabaseSettings", "DatabaseState", "LoadStrategy"]


class DatabaseState(Enum):
    """Lifecycle of a Database instance.

    UNLOADED -> LOADING -> LOADED -> MODIFIED* -> SAVING -> LOADED
    """

    UNLOADED = "unloaded"
    LOADING = "loading"
    LOADED = "loaded"
    MODIFIED = "modified"
    SAVING = "saving"


class LoadStrategy(Enum):
    """How the decrypted XML payload is parsed.

    STREAMING pulls events from the bytes and decrypts protected values as
    they come by. DOM parses the whole document with ElementTree first and
    then walks it. Both build identical trees.
    """

    STREAMING = "streaming"
    DOM = "dom"


def _read_source(source: bytes | str | os.PathLike[str] | BinaryIO) -> bytes:
    if isinstance(source, (bytes, bytearray, memoryview)):
        return bytes(source)
    if isinstance(source, (str, os.PathLike)):
        path = Path(source)
        if not path.exists():
            raise FileNotFoundError(f"Database file not found: {path}")
        return path.read_bytes()
    return source.read()


class Database:
    """High-level interface for KDBX databases.

    A Database owns one root group. Groups and entries are created with
    new_group() / new_entry() and attached with Group.add_subgroup() /
    Group.add_entry().

    Example usage:
        # Load an existing database
        db = Database.load(Credentials(password="123"), "vault.kdbx")

        # List everything
        db.visit(PrintVisitor())

        # Add a group with an entry
        group = db.root_group.add_subgroup(db.new_group("Email"))
        group.add_entry(db.new_entry(title="Gmail", username="me"))

        # Save with fresh seeds
        db.save(Credentials(password="123"), "vault.kdbx")
    """

    def __init__(
        self,
        name: str = "Database",
        *,
        cipher: Cipher = Cipher.AES256_CBC,
        compression: CompressionType = CompressionType.GZIP,
        kdf_config: AesKdfConfig | None = None,
    ) -> None:
        """Create an empty database.

        Args:
            name: Database name, also used for the root group
            cipher: Payload cipher for saving
            compression: Payload compression for saving
            kdf_config: AES-KDF parameters (KeePass defaults if not given)
        """
        self._header = KdbxHeader.create(cipher, compression, kdf_config)
        self._settings = DatabaseSettings(database_name=name)
        self._root_group = Group.create_root(name)
        self._root_group._bind(self)
        self._state = DatabaseState.LOADED

    # --- Properties ---

    @property
    def root_group(self) -> Group:
        """Get the root group of the database."""
        return self._root_group

    @property
    def settings(self) -> DatabaseSettings:
        """Get database settings."""
        return self._settings

    @property
    def header(self) -> KdbxHeader:
        """Header of the last load or save."""
        return self._header

    @property
    def state(self) -> DatabaseState:
        return self._state

    @property
    def is_modified(self) -> bool:
        """Whether the tree changed since the last load or save."""
        return self._state is DatabaseState.MODIFIED

    @property
    def name(self) -> str:
        """Get or set the database name."""
        return self._settings.database_name

    @name.setter
    def name(self, value: str) -> None:
        self._settings.database_name = value
        self._mark_modified()

    @property
    def description(self) -> str:
        """Get or set the database description."""
        return self._settings.database_description

    @description.setter
    def description(self, value: str) -> None:
        self._settings.database_description = value
        self._mark_modified()

    def _mark_modified(self) -> None:
        if self._state is DatabaseState.LOADED:
            self._state = DatabaseState.MODIFIED

    def _check_idle(self, action: str) -> None:
        if self._state in (DatabaseState.LOADING, DatabaseState.SAVING):
            raise RuntimeError(f"Cannot {action} while database is {self._state.value}")

    # --- Loading ---

    @classmethod
    def load(
        cls,
        credentials: Credentials,
        source: bytes | str | os.PathLike[str] | BinaryIO,
        *,
        strategy: LoadStrategy = LoadStrategy.STREAMING,
    ) -> Database:
        """Load and decrypt a KDBX 3.x database.

        Args:
            credentials: Password and/or keyfile
            source: File contents, a path, or a binary stream
            strategy: How to parse the XML payload

        Returns:
            Database instance

        Raises:
            FileNotFoundError: If source is a path that doesn't exist
            FormatError: If the file is not a valid KDBX 3.x file
            UnsupportedFormatError: If the file uses an unknown algorithm
            AuthenticationError: If the credentials are wrong
            DecryptionError: If the encrypted body is corrupted
            ParseError: If the XML payload is malformed
        """
        data = _read_source(source)
        db = cls()
        db._state = DatabaseState.UNLOADED
        db._load(credentials, data, strategy)
        return db

    def _load(self, credentials: Credentials, data: bytes, strategy: LoadStrategy) -> None:
        self._state = DatabaseState.LOADING
        try:
            payload = read_kdbx3(data, credentials)
            document = parse_xml(
                payload.xml_data,
                payload.header,
                streaming=strategy is LoadStrategy.STREAMING,
            )
        except BaseException:
            self._state = DatabaseState.UNLOADED
            raise

        self._header = payload.header
        self._settings = document.settings
        self._root_group = document.root_group
        self._root_group._bind(self)
        self._state = DatabaseState.LOADED
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                "Loaded database (%d groups, %d entries, %s parsing)",
                sum(1 for _ in self.iter_groups()),
                sum(1 for _ in self.iter_entries()),
                strategy.value,
            )

    # --- Saving ---

    def save(
        self,
        credentials: Credentials,
        sink: str | os.PathLike[str] | BinaryIO,
        *,
        cipher: Cipher | None = None,
        kdf_config: AesKdfConfig | None = None,
        compression: CompressionType | None = None,
    ) -> None:
        """Encrypt the database and write it out.

        Every save uses a fresh master seed, transform seed, IV,
        stream-start bytes and protected stream key. If anything fails the
        database keeps its previous header and state.

        Args:
            credentials: Password and/or keyfile to lock the file with
            sink: Path or writable binary stream
            cipher: Payload cipher (keeps the current one if not given)
            kdf_config: AES-KDF parameters (keeps the round count if not given)
            compression: Payload compression (keeps the current one if not given)
        """
        if isinstance(sink, (str, os.PathLike)):
            path = Path(sink)

            def write(data: bytes) -> None:
                path.write_bytes(data)

        else:
            write = sink.write

        self._save(credentials, write, cipher, kdf_config, compression)

    def to_bytes(
        self,
        credentials: Credentials,
        *,
        cipher: Cipher | None = None,
        kdf_config: AesKdfConfig | None = None,
        compression: CompressionType | None = None,
    ) -> bytes:
        """Serialize the database to KDBX 3.x format.

        Takes the same options as save().

        Returns:
            KDBX file contents as bytes
        """
        return self._save(credentials, None, cipher, kdf_config, compression)

    def _save(
        self,
        credentials: Credentials,
        write: Callable[[bytes], Any] | None,
        cipher: Cipher | None,
        kdf_config: AesKdfConfig | None,
        compression: CompressionType | None,
    ) -> bytes:
        self._check_idle("save")
        previous_state = self._state
        self._state = DatabaseState.SAVING
        try:
            header = self._header.rekeyed(
                cipher=cipher, compression=compression, kdf_config=kdf_config
            )
            header_bytes = header.to_bytes()
            cursor = ProtectedStreamCipher(
                header.inner_random_stream_id, header.protected_stream_key
            )
            xml_data = build_xml(
                self._root_group,
                self._settings,
                cursor,
                hashlib.sha256(header_bytes).digest(),
            )
            data = write_kdbx3(header, xml_data, credentials)
            if write is not None:
                write(data)
        except BaseException:
            self._state = previous_state
            raise

        self._header = dataclasses.replace(header, raw_header=header_bytes)
        self._state = DatabaseState.LOADED
        logger.debug("Saved database (%d bytes, cipher %s)", len(data), header.cipher.display_name)
        return data

    # --- Tree factories and traversal ---

    def new_group(self, source: str | Group | None = None) -> Group:
        """Create an unattached group bound to this database.

        Args:
            source: Group name, or a group (from any database) whose own
                properties are copied; its children are not

        Returns:
            New group, to be attached with Group.add_subgroup()
        """
        if isinstance(source, Group):
            group = source.duplicate()
        else:
            group = Group(name=source)
        group._bind(self)
        return group

    def new_entry(
        self,
        title: str | None = None,
        username: str | None = None,
        password: str | None = None,
        url: str | None = None,
        notes: str | None = None,
        tags: list[str] | None = None,
    ) -> Entry:
        """Create an unattached entry bound to this database.

        Returns:
            New entry, to be attached with Group.add_entry()
        """
        entry = Entry.create(
            title=title,
            username=username,
            password=password,
            url=url,
            notes=notes,
            tags=tags,
        )
        entry._bind(self)
        return entry

    def visit(self, visitor: Any) -> None:
        """Walk the tree from the root group, depth first.

        The visitor may define any of on_group_start(group),
        on_entry(entry) and on_group_end(group); see models.visitor.
        """
        walk(self._root_group, visitor)

    # --- Search operations ---

    def find_entries(
        self,
        title: str | None = None,
        username: str | None = None,
        url: str | None = None,
        tags: list[str] | None = None,
        recursive: bool = True,
    ) -> list[Entry]:
        """Find entries matching criteria.

        Args:
            title: Match entries with this title
            username: Match entries with this username
            url: Match entries with this URL
            tags: Match entries with all these tags
            recursive: Search in subgroups

        Returns:
            List of matching entries
        """
        return self._root_group.find_entries(
            title=title,
            username=username,
            url=url,
            tags=tags,
            recursive=recursive,
        )

    def find_groups(self, name: str | None = None, recursive: bool = True) -> list[Group]:
        """Find groups matching criteria.

        Args:
            name: Match groups with this name
            recursive: Search in nested subgroups

        Returns:
            List of matching groups
        """
        return self._root_group.find_groups(name=name, recursive=recursive)

    def iter_entries(self, recursive: bool = True) -> Iterator[Entry]:
        """Iterate over all entries in the database."""
        yield from self._root_group.iter_entries(recursive=recursive)

    def iter_groups(self, recursive: bool = True) -> Iterator[Group]:
        """Iterate over all groups in the database (root excluded)."""
        yield from self._root_group.iter_groups(recursive=recursive)

    def __str__(self) -> str:
        entry_count = sum(1 for _ in self.iter_entries())
        group_count = sum(1 for _ in self.iter_groups())
        name = self._settings.database_name
        return f'Database: "{name}" ({entry_count} entries, {group_count} groups)'
