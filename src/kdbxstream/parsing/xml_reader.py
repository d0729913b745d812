"""Build the group tree from bridge events.

The builder is fed one XmlEvent at a time and never looks ahead, so the
same code serves the pull reader and the DOM walk. Attachment data lives
in Meta/Binaries and entries refer to it by ID; references are resolved
once the whole document has been seen.
"""

from __future__ import annotations

import base64
import gzip
import hashlib
import logging
import uuid as uuid_module
import zlib
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from kdbxstream.exceptions import CorruptedDataError, ParseError
from kdbxstream.models import DatabaseSettings, Entry, Group, HistoryEntry, StringField
from kdbxstream.models.times import Times, decode_time
from kdbxstream.security import ProtectedStreamCipher, constant_time_compare

from .bridge import EventKind, ProtectedXmlReader, XmlEvent, is_protected, iter_document_events
from .header import KdbxHeader

logger = logging.getLogger(__name__)

_TIME_FIELDS = {
    "CreationTime": "creation_time",
    "LastModificationTime": "last_modification_time",
    "LastAccessTime": "last_access_time",
    "ExpiryTime": "expiry_time",
    "LocationChanged": "location_changed",
}


@dataclass(slots=True)
class KdbxDocument:
    """Contents of a parsed XML payload.

    Attributes:
        root_group: Root of the group tree
        settings: Values from the Meta element
        header_hash: SHA-256 of the outer header recorded in Meta, if any
    """

    root_group: Group
    settings: DatabaseSettings
    header_hash: bytes | None = None


def _parse_bool(text: str) -> bool:
    return text.strip().lower() == "true"


def _parse_uuid(text: str) -> uuid_module.UUID:
    return uuid_module.UUID(bytes=base64.b64decode(text.strip(), validate=True))


class KdbxTreeBuilder:
    """Turns a stream of XmlEvents into groups, entries and settings.

    Example:
        >>> builder = KdbxTreeBuilder()
        >>> for event in ProtectedXmlReader(xml_data, cursor):
        ...     builder.feed(event)
        >>> document = builder.close()
    """

    def __init__(self) -> None:
        self.settings = DatabaseSettings()
        self.header_hash: bytes | None = None
        self._root_group: Group | None = None

        self._path: list[str] = []
        self._attributes: list[Mapping[str, str]] = []
        self._text: list[str] = []
        self._plaintext: bytes | None = None

        self._groups: list[Group] = []
        self._entries: list[Entry] = []
        self._string_key: str | None = None
        self._string_value: str | None = None
        self._string_protected = False
        self._binary_key: str | None = None
        self._binary_ref: str | None = None

        self._binaries: dict[str, bytes] = {}
        self._pending_refs: list[tuple[Entry, str, str]] = []

    def feed(self, event: XmlEvent) -> None:
        """Consume one event.

        Raises:
            ParseError: If the event doesn't fit the KeePass schema or a
                value can't be decoded
        """
        if event.kind is EventKind.START:
            self._start(event.name, event.attributes)
        elif event.kind is EventKind.TEXT:
            if event.plaintext is not None:
                self._plaintext = event.plaintext
            else:
                self._text.append(event.text)
        else:
            try:
                self._end(event.name)
            except ValueError as e:
                raise ParseError(f"Invalid value in <{event.name}>") from e
            self._path.pop()
            self._attributes.pop()

    def close(self) -> KdbxDocument:
        """Finish the document and resolve attachment references.

        Raises:
            ParseError: If the document is incomplete or references a
                missing attachment
        """
        if self._path:
            raise ParseError("Unexpected end of XML document")
        if self._root_group is None:
            raise ParseError("Invalid KDBX XML: missing root Group element")

        for entry, key, ref in self._pending_refs:
            if ref not in self._binaries:
                raise ParseError(f"Attachment {key!r} references unknown binary {ref}")
            entry.attachments[key] = self._binaries[ref]

        logger.debug(
            "Built tree with %d binaries and %d attachment references",
            len(self._binaries),
            len(self._pending_refs),
        )
        return KdbxDocument(self._root_group, self.settings, self.header_hash)

    # --- Event handlers ---

    def _parent_name(self, depth: int = 2) -> str | None:
        return self._path[-depth] if len(self._path) >= depth else None

    def _start(self, name: str, attributes: Mapping[str, str]) -> None:
        if not self._path and name != "KeePassFile":
            raise ParseError(f"Unexpected document element <{name}>")

        parent = self._path[-1] if self._path else None
        self._path.append(name)
        self._attributes.append(attributes)
        self._text.clear()
        self._plaintext = None

        if name == "Group" and parent in ("Root", "Group"):
            group = Group()
            if self._groups:
                self._groups[-1]._append_subgroup(group)
            elif self._root_group is None:
                group._is_root = True
                self._root_group = group
            else:
                raise ParseError("Invalid KDBX XML: more than one root Group")
            self._groups.append(group)

        elif name == "Entry" and parent == "Group":
            if not self._groups:
                raise ParseError("Entry outside of the group tree")
            entry = Entry()
            self._groups[-1]._append_entry(entry)
            self._entries.append(entry)

        elif name == "Entry" and parent == "History":
            if not self._entries:
                raise ParseError("History outside of an entry")
            snapshot = HistoryEntry()
            self._entries[-1].history.append(snapshot)
            self._entries.append(snapshot)

        elif name == "String" and parent == "Entry":
            self._string_key = None
            self._string_value = None
            self._string_protected = False

        elif name == "Binary" and parent == "Entry":
            self._binary_key = None
            self._binary_ref = None

    def _end(self, name: str) -> None:
        text = "".join(self._text)
        self._text.clear()
        parent = self._parent_name()

        if parent == "Meta":
            self._end_meta(name, text)
        elif parent == "MemoryProtection" and name.startswith("Protect"):
            self.settings.memory_protection[name[len("Protect") :]] = _parse_bool(text)
        elif parent == "Binaries" and name == "Binary":
            self._end_pool_binary(text)
        elif parent == "Times":
            self._end_times(name, text)
        elif name == "Group" and self._groups and parent in ("Root", "Group"):
            self._groups.pop()
        elif name == "Entry" and self._entries and parent in ("Group", "History"):
            self._entries.pop()
        elif parent == "Group" and self._groups:
            self._end_group_field(self._groups[-1], name, text)
        elif parent == "Entry" and self._entries:
            self._end_entry_field(self._entries[-1], name, text)
        elif parent == "String":
            self._end_string_field(name, text)
        elif parent == "Binary" and self._parent_name(3) == "Entry":
            if name == "Key":
                self._binary_key = text
            elif name == "Value":
                self._binary_ref = self._attributes[-1].get("Ref")

    def _end_meta(self, name: str, text: str) -> None:
        s = self.settings
        if name == "Generator":
            s.generator = text
        elif name == "HeaderHash" and text.strip():
            self.header_hash = base64.b64decode(text.strip(), validate=True)
        elif name == "DatabaseName":
            s.database_name = text
        elif name == "DatabaseDescription":
            s.database_description = text
        elif name == "DefaultUserName":
            s.default_username = text
        elif name == "MaintenanceHistoryDays":
            s.maintenance_history_days = int(text)
        elif name == "Color":
            s.color = text or None
        elif name == "MasterKeyChangeRec":
            s.master_key_change_rec = int(text)
        elif name == "MasterKeyChangeForce":
            s.master_key_change_force = int(text)
        elif name == "RecycleBinEnabled":
            s.recycle_bin_enabled = _parse_bool(text)
        elif name == "RecycleBinUUID" and text.strip():
            recycle_bin_uuid = _parse_uuid(text)
            s.recycle_bin_uuid = recycle_bin_uuid if recycle_bin_uuid.int else None
        elif name == "HistoryMaxItems":
            s.history_max_items = int(text)
        elif name == "HistoryMaxSize":
            s.history_max_size = int(text)

    def _end_pool_binary(self, text: str) -> None:
        attributes = self._attributes[-1]
        binary_id = attributes.get("ID")
        if binary_id is None:
            raise ParseError("Binary without ID in Meta/Binaries")
        if self._plaintext is not None:
            data = self._plaintext
        else:
            data = base64.b64decode("".join(text.split()), validate=True)
        if _parse_bool(attributes.get("Compressed", "")):
            try:
                data = gzip.decompress(data)
            except (OSError, EOFError, zlib.error) as e:
                raise ParseError(f"Binary {binary_id} failed to decompress") from e
        self._binaries[binary_id] = data

    def _end_times(self, name: str, text: str) -> None:
        owner_name = self._parent_name(3)
        times: Times
        if owner_name == "Entry" and self._entries:
            times = self._entries[-1].times
        elif owner_name == "Group" and self._groups:
            times = self._groups[-1].times
        else:
            return

        if name in _TIME_FIELDS and text.strip():
            setattr(times, _TIME_FIELDS[name], decode_time(text))
        elif name == "Expires":
            times.expires = _parse_bool(text)
        elif name == "UsageCount" and text.strip():
            times.usage_count = int(text)

    def _end_group_field(self, group: Group, name: str, text: str) -> None:
        if name == "UUID":
            group.uuid = _parse_uuid(text)
        elif name == "Name":
            group.name = text or None
        elif name == "Notes":
            group.notes = text or None
        elif name == "IconID" and text.strip():
            group.icon_id = text.strip()
        elif name == "IsExpanded":
            group.is_expanded = _parse_bool(text)

    def _end_entry_field(self, entry: Entry, name: str, text: str) -> None:
        if name == "UUID":
            entry.uuid = _parse_uuid(text)
        elif name == "IconID" and text.strip():
            entry.icon_id = text.strip()
        elif name == "Tags":
            tag_text = text.replace(",", ";")
            entry.tags = [t.strip() for t in tag_text.split(";") if t.strip()]
        elif name == "ForegroundColor":
            entry.foreground_color = text or None
        elif name == "BackgroundColor":
            entry.background_color = text or None
        elif name == "OverrideURL":
            entry.override_url = text or None
        elif name == "String" and self._string_key is not None:
            key = self._string_key
            entry.strings[key] = StringField(
                key=key,
                value=self._string_value or None,
                protected=self._string_protected,
            )
        elif name == "Binary" and self._binary_key is not None:
            if self._binary_ref is None:
                raise ParseError(f"Attachment {self._binary_key!r} has no Ref")
            self._pending_refs.append((entry, self._binary_key, self._binary_ref))

    def _end_string_field(self, name: str, text: str) -> None:
        if name == "Key":
            self._string_key = text
        elif name == "Value":
            attributes = self._attributes[-1]
            if self._plaintext is not None:
                self._string_value = self._plaintext.decode("utf-8")
                self._string_protected = True
            else:
                self._string_value = text
                self._string_protected = is_protected(attributes) or _parse_bool(
                    attributes.get("ProtectInMemory", "")
                )


def build_tree(events: Iterable[XmlEvent]) -> KdbxDocument:
    """Feed a complete event stream through a KdbxTreeBuilder."""
    builder = KdbxTreeBuilder()
    for event in events:
        builder.feed(event)
    return builder.close()


def parse_xml(xml_data: bytes, header: KdbxHeader, streaming: bool = True) -> KdbxDocument:
    """Parse a decrypted XML payload into a document.

    Args:
        xml_data: Decompressed XML payload
        header: Outer header the payload was read with
        streaming: Pull-parse the bytes (True) or parse the whole
            document into an ElementTree first (False)

    Returns:
        KdbxDocument with the group tree and settings

    Raises:
        ParseError: If the XML is malformed or doesn't match the schema
        CorruptedDataError: If Meta/HeaderHash doesn't match the header
    """
    cursor = ProtectedStreamCipher(header.inner_random_stream_id, header.protected_stream_key)
    if streaming:
        events: Iterable[XmlEvent] = ProtectedXmlReader(xml_data, cursor)
    else:
        events = iter_document_events(xml_data, cursor)

    document = build_tree(events)

    if document.header_hash is not None and header.raw_header:
        actual = hashlib.sha256(header.raw_header).digest()
        if not constant_time_compare(actual, document.header_hash):
            raise CorruptedDataError("Header hash mismatch - header has been modified")

    logger.debug("Parsed XML payload (%d protected bytes)", cursor.position)
    return document
