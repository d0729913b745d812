"""KDBX binary format and XML payload handling.

This module handles the load/save pipeline below the database facade:
- Header parsing and building
- KDBX 3.x payload encryption/decryption (hashed block stream)
- Event bridge that decrypts protected values in document order
- Tree building from, and serialization to, the XML payload

All binary parsing uses Python's struct module.
"""

from .bridge import (
    EventKind,
    ProtectedXmlReader,
    XmlEvent,
    iter_document_events,
    iter_element_events,
)
from .header import (
    KDBX_MAGIC,
    CompressionType,
    HeaderFieldType,
    KdbxHeader,
    KdbxVersion,
)
from .kdbx3 import (
    DecryptedPayload,
    Kdbx3Reader,
    Kdbx3Writer,
    read_kdbx3,
    write_kdbx3,
)
from .xml_reader import KdbxDocument, KdbxTreeBuilder, build_tree, parse_xml
from .xml_writer import KdbxXmlWriter, build_xml

__all__ = [
    # Header
    "KDBX_MAGIC",
    "CompressionType",
    "HeaderFieldType",
    "KdbxHeader",
    "KdbxVersion",
    # KDBX 3.x
    "DecryptedPayload",
    "Kdbx3Reader",
    "Kdbx3Writer",
    "read_kdbx3",
    "write_kdbx3",
    # XML
    "EventKind",
    "ProtectedXmlReader",
    "XmlEvent",
    "iter_document_events",
    "iter_element_events",
    "KdbxDocument",
    "KdbxTreeBuilder",
    "build_tree",
    "parse_xml",
    "KdbxXmlWriter",
    "build_xml",
]
