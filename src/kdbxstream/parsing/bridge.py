"""Event bridge between the decrypted XML document and the tree builder.

The XML payload is consumed as a flat sequence of start/text/end events.
Elements carrying Protected="True" hold base64 ciphertext from the
protected-field stream cipher; the bridge decodes it, runs it through the
document's cursor and hands the plaintext on in a single TEXT event.
Because the cursor is a stream cipher, every protected element has to be
seen exactly once and in document order, empty ones included.

Two event sources produce identical events:
- ProtectedXmlReader: pull parser over the byte stream (defusedxml.pulldom)
- iter_document_events: walk over an ElementTree parsed up front
"""

from __future__ import annotations

import base64
import binascii
import io
import logging
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import BinaryIO
from xml.dom.pulldom import CHARACTERS, END_ELEMENT, START_ELEMENT, DOMEventStream
from xml.etree.ElementTree import Element
from xml.sax import SAXException

import defusedxml.ElementTree as DefusedET
from defusedxml import DefusedXmlException
from defusedxml.pulldom import parse as parse_pulldom

from kdbxstream.exceptions import ParseError
from kdbxstream.security import ProtectedStreamCipher

logger = logging.getLogger(__name__)

PROTECTED_ATTRIBUTE = "Protected"


class EventKind(Enum):
    """Kinds of bridge events."""

    START = "start"
    TEXT = "text"
    END = "end"


@dataclass(frozen=True, slots=True)
class XmlEvent:
    """One parse event.

    Attributes:
        kind: START, TEXT or END
        name: Element name the event belongs to
        attributes: Element attributes (START events only)
        text: Character data (unprotected TEXT events)
        plaintext: Decrypted bytes (protected TEXT events)
    """

    kind: EventKind
    name: str
    attributes: Mapping[str, str] = field(default_factory=dict)
    text: str = ""
    plaintext: bytes | None = None

    @property
    def protected(self) -> bool:
        """Whether this TEXT event carries a decrypted protected value."""
        return self.plaintext is not None


def is_protected(attributes: Mapping[str, str]) -> bool:
    """Check for the Protected="True" marker."""
    return attributes.get(PROTECTED_ATTRIBUTE, "").lower() == "true"


def decrypt_protected(
    name: str, text: str, cursor: ProtectedStreamCipher
) -> XmlEvent:
    """Decode and decrypt the content of one protected element.

    Raises:
        ParseError: If the content is not valid base64
    """
    try:
        ciphertext = base64.b64decode("".join(text.split()), validate=True)
    except binascii.Error as e:
        raise ParseError(f"Protected value in <{name}> is not valid base64") from e
    return XmlEvent(EventKind.TEXT, name, plaintext=cursor.decrypt_next(ciphertext))


class ProtectedXmlReader:
    """Pull-based event reader that decrypts protected values on the fly.

    Example:
        >>> cursor = ProtectedStreamCipher(header.inner_random_stream_id,
        ...                                header.protected_stream_key)
        >>> for event in ProtectedXmlReader(xml_data, cursor):
        ...     builder.feed(event)
    """

    def __init__(
        self,
        source: bytes | BinaryIO,
        cursor: ProtectedStreamCipher,
    ) -> None:
        """Initialize the reader.

        Args:
            source: Decompressed XML document or a binary stream over it
            cursor: Protected-field cipher for this document only
        """
        self._source = io.BytesIO(source) if isinstance(source, bytes) else source
        self._cursor = cursor
        self.protected_count = 0

    def __iter__(self) -> Iterator[XmlEvent]:
        try:
            yield from self._events(parse_pulldom(self._source))
        except (SAXException, DefusedXmlException) as e:
            raise ParseError(f"Malformed XML payload: {e}") from e
        logger.debug("Decrypted %d protected values", self.protected_count)

    def _events(self, stream: DOMEventStream) -> Iterator[XmlEvent]:
        stack: list[str] = []
        has_children: list[bool] = []
        text: list[str] = []
        protected_name: str | None = None

        for event, node in stream:
            if event == START_ELEMENT:
                if protected_name is not None:
                    raise ParseError(
                        f"Unexpected element <{node.tagName}> inside protected <{protected_name}>"
                    )
                # Character data ahead of a child element is only kept if it
                # is more than indentation
                pending = "".join(text)
                text.clear()
                if stack and pending.strip():
                    yield XmlEvent(EventKind.TEXT, stack[-1], text=pending)
                if has_children:
                    has_children[-1] = True

                attributes = dict(node.attributes.items())
                stack.append(node.tagName)
                has_children.append(False)
                yield XmlEvent(EventKind.START, node.tagName, attributes)
                if is_protected(attributes):
                    protected_name = node.tagName

            elif event == CHARACTERS:
                text.append(node.data)

            elif event == END_ELEMENT:
                content = "".join(text)
                text.clear()
                if protected_name is not None:
                    yield decrypt_protected(protected_name, content, self._cursor)
                    self.protected_count += 1
                    protected_name = None
                elif content and (not has_children[-1] or content.strip()):
                    yield XmlEvent(EventKind.TEXT, node.tagName, text=content)
                stack.pop()
                has_children.pop()
                yield XmlEvent(EventKind.END, node.tagName)


def parse_document(xml_data: bytes) -> Element:
    """Parse a whole XML document with defusedxml.

    Raises:
        ParseError: On malformed or unsafe XML
    """
    try:
        return DefusedET.fromstring(xml_data)
    except (DefusedET.ParseError, DefusedXmlException) as e:
        raise ParseError(f"Malformed XML payload: {e}") from e


def iter_element_events(
    element: Element, cursor: ProtectedStreamCipher
) -> Iterator[XmlEvent]:
    """Produce bridge events from a parsed element, in document order."""
    attributes = dict(element.attrib)
    yield XmlEvent(EventKind.START, element.tag, attributes)

    if is_protected(attributes):
        if len(element):
            raise ParseError(f"Unexpected element inside protected <{element.tag}>")
        yield decrypt_protected(element.tag, element.text or "", cursor)
    else:
        if element.text and (len(element) == 0 or element.text.strip()):
            yield XmlEvent(EventKind.TEXT, element.tag, text=element.text)
        for child in element:
            yield from iter_element_events(child, cursor)
            if child.tail and child.tail.strip():
                yield XmlEvent(EventKind.TEXT, element.tag, text=child.tail)

    yield XmlEvent(EventKind.END, element.tag)


def iter_document_events(
    xml_data: bytes, cursor: ProtectedStreamCipher
) -> Iterator[XmlEvent]:
    """Parse the whole document first, then replay it as bridge events."""
    return iter_element_events(parse_document(xml_data), cursor)
