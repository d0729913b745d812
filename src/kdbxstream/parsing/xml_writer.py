"""Serialize the group tree to the KeePass 2.x XML schema.

Protected values are written as plaintext first and encrypted in a
second pass over the finished tree, so the cursor sees them in exactly
the order a reader will.
"""

from __future__ import annotations

import base64
import gzip
import logging
import re
import uuid as uuid_module
from typing import cast
from xml.etree.ElementTree import Element, SubElement, tostring

from kdbxstream.models import DatabaseSettings, Entry, Group, Times
from kdbxstream.models.times import encode_time
from kdbxstream.security import ProtectedStreamCipher

from .bridge import PROTECTED_ATTRIBUTE, is_protected

logger = logging.getLogger(__name__)

# Characters XML 1.0 cannot carry, not even as character references
_INVALID_XML_CHARS = re.compile("[\x00-\x08\x0b\x0c\x0e-\x1f\ud800-\udfff\ufffe\uffff]")


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


class KdbxXmlWriter:
    """Builds the XML payload for one save."""

    def __init__(self, settings: DatabaseSettings) -> None:
        self._settings = settings
        # Attachment data -> pool ID, deduplicated by content
        self._pool: dict[bytes, int] = {}

    def build(
        self,
        root_group: Group,
        cursor: ProtectedStreamCipher,
        header_hash: bytes | None = None,
    ) -> bytes:
        """Build the complete XML document.

        Args:
            root_group: Root of the tree to write
            cursor: Fresh protected-field cipher for this document
            header_hash: SHA-256 of the outer header, recorded in Meta

        Returns:
            UTF-8 encoded XML with protected values encrypted
        """
        root = Element("KeePassFile")
        meta = SubElement(root, "Meta")
        root_elem = SubElement(root, "Root")

        # Groups first: that fills the attachment pool Meta needs
        self._build_group(root_elem, root_group)
        SubElement(root_elem, "DeletedObjects")
        self._build_meta(meta, header_hash)

        count = self._encrypt_protected_values(root, cursor)
        _check_storable(root)
        logger.debug(
            "Built XML payload (%d protected values, %d binaries)", count, len(self._pool)
        )
        xml = cast(bytes, tostring(root, encoding="utf-8", xml_declaration=True))
        # Parsers turn a literal CR into LF; a character reference survives
        return xml.replace(b"\r", b"&#13;")

    def _encrypt_protected_values(self, root: Element, cursor: ProtectedStreamCipher) -> int:
        count = 0
        for elem in root.iter():
            if is_protected(elem.attrib):
                plaintext = (elem.text or "").encode("utf-8")
                elem.text = _b64(cursor.encrypt_next(plaintext))
                count += 1
        return count

    def _build_meta(self, meta: Element, header_hash: bytes | None) -> None:
        s = self._settings

        SubElement(meta, "Generator").text = s.generator
        if header_hash is not None:
            SubElement(meta, "HeaderHash").text = _b64(header_hash)
        SubElement(meta, "DatabaseName").text = s.database_name
        if s.database_description:
            SubElement(meta, "DatabaseDescription").text = s.database_description
        if s.default_username:
            SubElement(meta, "DefaultUserName").text = s.default_username

        SubElement(meta, "MaintenanceHistoryDays").text = str(s.maintenance_history_days)
        if s.color:
            SubElement(meta, "Color").text = s.color
        SubElement(meta, "MasterKeyChangeRec").text = str(s.master_key_change_rec)
        SubElement(meta, "MasterKeyChangeForce").text = str(s.master_key_change_force)

        mp = SubElement(meta, "MemoryProtection")
        for field_name, protect in s.memory_protection.items():
            SubElement(mp, f"Protect{field_name}").text = str(protect)

        SubElement(meta, "RecycleBinEnabled").text = str(s.recycle_bin_enabled)
        SubElement(meta, "RecycleBinUUID").text = _b64(
            (s.recycle_bin_uuid or uuid_module.UUID(int=0)).bytes
        )
        SubElement(meta, "HistoryMaxItems").text = str(s.history_max_items)
        SubElement(meta, "HistoryMaxSize").text = str(s.history_max_size)

        binaries = SubElement(meta, "Binaries")
        for data, binary_id in self._pool.items():
            elem = SubElement(binaries, "Binary", ID=str(binary_id), Compressed="True")
            elem.text = _b64(gzip.compress(data))

    def _build_group(self, parent: Element, group: Group) -> None:
        elem = SubElement(parent, "Group")

        SubElement(elem, "UUID").text = _b64(group.uuid.bytes)
        SubElement(elem, "Name").text = group.name or ""
        if group.notes:
            SubElement(elem, "Notes").text = group.notes
        SubElement(elem, "IconID").text = group.icon_id
        self._build_times(elem, group.times)
        SubElement(elem, "IsExpanded").text = str(group.is_expanded)

        for entry in group.entries:
            self._build_entry(elem, entry)
        for subgroup in group.subgroups:
            self._build_group(elem, subgroup)

    def _build_entry(self, parent: Element, entry: Entry, in_history: bool = False) -> None:
        elem = SubElement(parent, "Entry")

        SubElement(elem, "UUID").text = _b64(entry.uuid.bytes)
        SubElement(elem, "IconID").text = entry.icon_id
        if entry.foreground_color:
            SubElement(elem, "ForegroundColor").text = entry.foreground_color
        if entry.background_color:
            SubElement(elem, "BackgroundColor").text = entry.background_color
        if entry.override_url:
            SubElement(elem, "OverrideURL").text = entry.override_url
        if entry.tags:
            SubElement(elem, "Tags").text = ";".join(entry.tags)
        self._build_times(elem, entry.times)

        for key, string_field in entry.strings.items():
            string_elem = SubElement(elem, "String")
            SubElement(string_elem, "Key").text = key
            value_elem = SubElement(string_elem, "Value")
            value_elem.text = string_field.value or ""
            if self._settings.should_protect(key, string_field.protected):
                value_elem.set(PROTECTED_ATTRIBUTE, "True")

        for name, data in entry.attachments.items():
            binary_id = self._pool.setdefault(data, len(self._pool))
            binary_elem = SubElement(elem, "Binary")
            SubElement(binary_elem, "Key").text = name
            SubElement(binary_elem, "Value", Ref=str(binary_id))

        if entry.history and not in_history:
            history_elem = SubElement(elem, "History")
            for snapshot in entry.history:
                self._build_entry(history_elem, snapshot, in_history=True)

    def _build_times(self, parent: Element, times: Times) -> None:
        elem = SubElement(parent, "Times")

        SubElement(elem, "CreationTime").text = encode_time(times.creation_time)
        SubElement(elem, "LastModificationTime").text = encode_time(
            times.last_modification_time
        )
        SubElement(elem, "LastAccessTime").text = encode_time(times.last_access_time)
        if times.expiry_time is not None:
            SubElement(elem, "ExpiryTime").text = encode_time(times.expiry_time)
        SubElement(elem, "Expires").text = str(times.expires)
        SubElement(elem, "UsageCount").text = str(times.usage_count)
        if times.location_changed is not None:
            SubElement(elem, "LocationChanged").text = encode_time(times.location_changed)


def _check_storable(root: Element) -> None:
    """Reject plain text that a parser would refuse to read back.

    Protected values are base64 by now, so only unprotected fields can
    trip this.

    Raises:
        ValueError: If an element or attribute holds an XML-illegal character
    """
    for elem in root.iter():
        for value in (elem.text, *elem.attrib.values()):
            if not value:
                continue
            match = _INVALID_XML_CHARS.search(value)
            if match is not None:
                raise ValueError(
                    f"<{elem.tag}> holds U+{ord(match.group()):04X}, which XML cannot "
                    "store; remove it or mark the field protected"
                )


def build_xml(
    root_group: Group,
    settings: DatabaseSettings,
    cursor: ProtectedStreamCipher,
    header_hash: bytes | None = None,
) -> bytes:
    """Convenience function to build the XML payload."""
    return KdbxXmlWriter(settings).build(root_group, cursor, header_hash)
