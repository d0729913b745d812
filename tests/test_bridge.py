"""Tests for the XML event bridge and protected value decryption."""

import base64
import io

import pytest

from kdbxstream.exceptions import ParseError
from kdbxstream.parsing.bridge import (
    EventKind,
    ProtectedXmlReader,
    XmlEvent,
    is_protected,
    iter_document_events,
)
from kdbxstream.security import ProtectedStreamCipher, ProtectedStreamId

STREAM_KEY = b"\x11" * 32


def cursor() -> ProtectedStreamCipher:
    return ProtectedStreamCipher(ProtectedStreamId.SALSA20, STREAM_KEY)


def protect(*values: bytes) -> list[str]:
    """Encrypt values in order, the way the writer does."""
    writer = cursor()
    return [base64.b64encode(writer.encrypt_next(v)).decode() for v in values]


def streaming(xml: bytes) -> list[XmlEvent]:
    return list(ProtectedXmlReader(xml, cursor()))


def dom(xml: bytes) -> list[XmlEvent]:
    return list(iter_document_events(xml, cursor()))


def document(first: str, empty: str, second: str) -> bytes:
    return f"""<?xml version="1.0" encoding="utf-8"?>
<KeePassFile>
    <Root>
        <Entry>
            <String><Key>Password</Key><Value Protected="True">{first}</Value></String>
            <String><Key>Empty</Key><Value Protected="True">{empty}</Value></String>
            <String><Key>Title</Key><Value>Plain &amp; simple</Value></String>
            <String><Key>Other</Key><Value Protected="True">{second}</Value></String>
        </Entry>
    </Root>
</KeePassFile>""".encode()


class TestIsProtected:
    """Tests for the Protected attribute check."""

    @pytest.mark.parametrize("value", ["True", "true", "TRUE"])
    def test_true_any_case(self, value: str) -> None:
        """Test that the marker is case-insensitive."""
        assert is_protected({"Protected": value})

    @pytest.mark.parametrize("attributes", [{}, {"Protected": "False"}, {"Other": "True"}])
    def test_not_protected(self, attributes: dict[str, str]) -> None:
        """Test values that don't mark protection."""
        assert not is_protected(attributes)


class TestEventSequence:
    """Tests for the event stream shape."""

    def test_simple_sequence(self) -> None:
        """Test start/text/end ordering with indentation dropped."""
        xml = b"<A>\n  <B x='1'>hi</B>\n  <C/>\n</A>"
        assert streaming(xml) == [
            XmlEvent(EventKind.START, "A", {}),
            XmlEvent(EventKind.START, "B", {"x": "1"}),
            XmlEvent(EventKind.TEXT, "B", text="hi"),
            XmlEvent(EventKind.END, "B"),
            XmlEvent(EventKind.START, "C", {}),
            XmlEvent(EventKind.END, "C"),
            XmlEvent(EventKind.END, "A"),
        ]

    def test_whitespace_only_leaf_text_is_kept(self) -> None:
        """Test that a leaf's whitespace value is data, not indentation."""
        events = streaming(b"<A><B>  </B></A>")
        assert XmlEvent(EventKind.TEXT, "B", text="  ") in events

    def test_entities_are_resolved(self) -> None:
        """Test that predefined entities are decoded in text."""
        events = streaming(b"<A>a &amp; b &lt;c&gt;</A>")
        assert events[1] == XmlEvent(EventKind.TEXT, "A", text="a & b <c>")

    def test_strategies_agree(self) -> None:
        """Test that the pull reader and the tree walk emit the same events."""
        xml = document(*protect(b"s3cret", b"", b"other"))
        assert streaming(xml) == dom(xml)

    def test_reader_accepts_stream(self) -> None:
        """Test reading from a binary file object."""
        xml = document(*protect(b"a", b"", b"b"))
        assert list(ProtectedXmlReader(io.BytesIO(xml), cursor())) == streaming(xml)


class TestProtectedValues:
    """Tests for decryption of protected elements."""

    @pytest.mark.parametrize("reader", [streaming, dom])
    def test_protected_values_in_order(self, reader) -> None:
        """Test that each protected value decrypts to its plaintext."""
        xml = document(*protect(b"s3cret", b"", b"other"))

        protected = [e for e in reader(xml) if e.protected]

        assert [e.plaintext for e in protected] == [b"s3cret", b"", b"other"]
        assert all(e.name == "Value" for e in protected)

    @pytest.mark.parametrize("reader", [streaming, dom])
    def test_empty_protected_value_keeps_alignment(self, reader) -> None:
        """Test that an empty protected element doesn't shift later values."""
        first, empty, second = protect(b"abc", b"", b"def")
        assert empty == ""

        protected = [e.plaintext for e in reader(document(first, empty, second)) if e.protected]

        assert protected == [b"abc", b"", b"def"]

    def test_unprotected_text_in_between(self) -> None:
        """Test that plain values pass through untouched."""
        events = streaming(document(*protect(b"a", b"", b"b")))
        plain = [e.text for e in events if e.kind is EventKind.TEXT and not e.protected]
        assert "Password" in plain
        assert "Plain & simple" in plain

    def test_protected_count(self) -> None:
        """Test that the reader counts protected elements."""
        reader = ProtectedXmlReader(document(*protect(b"a", b"", b"b")), cursor())
        list(reader)
        assert reader.protected_count == 3

    def test_lowercase_marker(self) -> None:
        """Test that Protected="true" is honored."""
        (value,) = protect(b"pw")
        xml = f'<A><V Protected="true">{value}</V></A>'.encode()
        assert [e.plaintext for e in streaming(xml) if e.protected] == [b"pw"]

    def test_base64_with_line_breaks(self) -> None:
        """Test that whitespace inside base64 content is ignored."""
        (value,) = protect(b"a longer protected value")
        wrapped = value[:8] + "\n  " + value[8:]
        xml = f'<A><V Protected="True">{wrapped}</V></A>'.encode()
        assert [e.plaintext for e in dom(xml) if e.protected] == [b"a longer protected value"]


class TestBridgeErrors:
    """Tests for malformed input."""

    @pytest.mark.parametrize("reader", [streaming, dom])
    def test_invalid_base64(self, reader) -> None:
        """Test that protected content must be base64."""
        xml = b'<A><V Protected="True">not base64!</V></A>'
        with pytest.raises(ParseError, match="base64"):
            reader(xml)

    @pytest.mark.parametrize("reader", [streaming, dom])
    def test_element_inside_protected_value(self, reader) -> None:
        """Test that protected elements must be leaves."""
        xml = b'<A><V Protected="True"><X/></V></A>'
        with pytest.raises(ParseError):
            reader(xml)

    @pytest.mark.parametrize("reader", [streaming, dom])
    def test_malformed_xml(self, reader) -> None:
        """Test that broken markup is a ParseError."""
        with pytest.raises(ParseError, match="Malformed"):
            reader(b"<A><B></A>")

    @pytest.mark.parametrize("reader", [streaming, dom])
    def test_entity_declarations_rejected(self, reader) -> None:
        """Test that entity expansion attacks are refused."""
        xml = b"""<?xml version="1.0"?>
<!DOCTYPE A [<!ENTITY boom "boom">]>
<A>&boom;</A>"""
        with pytest.raises(ParseError):
            reader(xml)
