"""KDBX 3.x outer header parsing and building.

Layout (all integers little-endian):

    [sig1:4][sig2:4][minor:2][major:2]
    [field-id:1][length:2][value:length] ... repeated until field-id 0
    [encrypted body]

Unknown field ids, the comment field and the payload of the End field are
preserved together with the original field order, so that serializing an
unmodified header reproduces the parsed bytes exactly.
"""

from __future__ import annotations

import dataclasses
import logging
import struct
from collections import deque
from dataclasses import dataclass, field
from enum import IntEnum

from kdbxstream.exceptions import (
    CorruptedDataError,
    InvalidSignatureError,
    UnknownCompressionError,
    UnknownStreamCipherError,
    UnsupportedFormatError,
    UnsupportedVersionError,
)
from kdbxstream.security import (
    AesKdfConfig,
    Cipher,
    ProtectedStreamId,
    secure_random_bytes,
)

logger = logging.getLogger(__name__)

KDBX_SIGNATURE_1 = 0x9AA2D903
KDBX_SIGNATURE_2 = 0xB54BFB67
# KeePass 1.x (.kdb) shares the first signature word
KDB_SIGNATURE_2 = 0xB54BFB65

KDBX_MAGIC = struct.pack("<II", KDBX_SIGNATURE_1, KDBX_SIGNATURE_2)

SUPPORTED_MAJOR_VERSION = 3

_PREAMBLE = struct.Struct("<IIHH")
_FIELD_PREFIX = struct.Struct("<BH")

DEFAULT_END_DATA = b"\r\n\r\n"


class HeaderFieldType(IntEnum):
    """Outer header field identifiers."""

    END = 0
    COMMENT = 1
    CIPHER_ID = 2
    COMPRESSION_FLAGS = 3
    MASTER_SEED = 4
    TRANSFORM_SEED = 5
    TRANSFORM_ROUNDS = 6
    ENCRYPTION_IV = 7
    PROTECTED_STREAM_KEY = 8
    STREAM_START_BYTES = 9
    INNER_RANDOM_STREAM_ID = 10


class CompressionType(IntEnum):
    """Payload compression algorithms."""

    NONE = 0
    GZIP = 1


class KdbxVersion(IntEnum):
    """File format versions written by KeePass 2.x (minor version)."""

    KDBX30 = 0
    KDBX31 = 1


# Order KeePass writes fields in; used for headers we create ourselves
_CANONICAL_ORDER = (
    HeaderFieldType.CIPHER_ID,
    HeaderFieldType.COMPRESSION_FLAGS,
    HeaderFieldType.MASTER_SEED,
    HeaderFieldType.TRANSFORM_SEED,
    HeaderFieldType.TRANSFORM_ROUNDS,
    HeaderFieldType.ENCRYPTION_IV,
    HeaderFieldType.PROTECTED_STREAM_KEY,
    HeaderFieldType.STREAM_START_BYTES,
    HeaderFieldType.INNER_RANDOM_STREAM_ID,
)

_REQUIRED_FIELDS = frozenset(_CANONICAL_ORDER)
_KNOWN_FIELDS = frozenset(HeaderFieldType)


@dataclass(slots=True)
class KdbxHeader:
    """Parsed KDBX 3.x outer header.

    Attributes:
        cipher: Payload cipher
        compression: Payload compression
        master_seed: 32-byte seed mixed into the final key
        transform_seed: 32-byte AES-KDF key
        transform_rounds: AES-KDF round count
        encryption_iv: IV/nonce for the payload cipher
        protected_stream_key: Key for the protected-field stream cipher
        stream_start_bytes: 32 known bytes that open the decrypted body
        inner_random_stream_id: Protected-field stream cipher algorithm
        version_major: Format major version (3)
        version_minor: Format minor version
        comment: Optional comment field payload
        unknown_fields: (id, value) pairs this library does not interpret,
            in file order
        superseded_fields: Earlier values of known fields that appeared
            more than once; the last occurrence is the one interpreted
        end_data: Payload of the End field
        field_order: Field ids in the order they appeared when parsed,
            repeats included
        raw_header: Header bytes exactly as parsed (empty for new headers)
    """

    cipher: Cipher
    compression: CompressionType
    master_seed: bytes
    transform_seed: bytes
    transform_rounds: int
    encryption_iv: bytes
    protected_stream_key: bytes
    stream_start_bytes: bytes
    inner_random_stream_id: int = ProtectedStreamId.SALSA20
    version_major: int = SUPPORTED_MAJOR_VERSION
    version_minor: int = KdbxVersion.KDBX31
    comment: bytes | None = None
    unknown_fields: list[tuple[int, bytes]] = field(default_factory=list)
    superseded_fields: list[tuple[int, bytes]] = field(default_factory=list)
    end_data: bytes = DEFAULT_END_DATA
    field_order: list[int] = field(default_factory=list)
    raw_header: bytes = field(default=b"", repr=False)

    @property
    def version(self) -> tuple[int, int]:
        """(major, minor) format version."""
        return (self.version_major, self.version_minor)

    # --- Construction ---

    @classmethod
    def create(
        cls,
        cipher: Cipher = Cipher.AES256_CBC,
        compression: CompressionType = CompressionType.GZIP,
        kdf_config: AesKdfConfig | None = None,
        stream_id: int = ProtectedStreamId.SALSA20,
    ) -> KdbxHeader:
        """Create a header with fresh random seeds.

        Args:
            cipher: Payload cipher
            compression: Payload compression
            kdf_config: AES-KDF parameters (KeePass defaults if not given)
            stream_id: Protected-field stream cipher

        Returns:
            New KdbxHeader
        """
        kdf_config = kdf_config or AesKdfConfig.default()
        return cls(
            cipher=cipher,
            compression=compression,
            master_seed=secure_random_bytes(32),
            transform_seed=kdf_config.salt,
            transform_rounds=kdf_config.rounds,
            encryption_iv=secure_random_bytes(cipher.iv_size),
            protected_stream_key=secure_random_bytes(32),
            stream_start_bytes=secure_random_bytes(32),
            inner_random_stream_id=stream_id,
        )

    def rekeyed(
        self,
        cipher: Cipher | None = None,
        compression: CompressionType | None = None,
        kdf_config: AesKdfConfig | None = None,
    ) -> KdbxHeader:
        """Return a copy with fresh random material for the next save.

        The master seed, transform seed, IV, stream-start bytes and
        protected-stream key are regenerated. Cipher, compression and KDF
        rounds are kept unless overridden. This header is not modified.
        """
        cipher = cipher or self.cipher
        if kdf_config is None:
            kdf_config = AesKdfConfig(
                rounds=self.transform_rounds, salt=secure_random_bytes(32)
            )
        return dataclasses.replace(
            self,
            cipher=cipher,
            compression=self.compression if compression is None else compression,
            master_seed=secure_random_bytes(32),
            transform_seed=kdf_config.salt,
            transform_rounds=kdf_config.rounds,
            encryption_iv=secure_random_bytes(cipher.iv_size),
            protected_stream_key=secure_random_bytes(32),
            stream_start_bytes=secure_random_bytes(32),
            unknown_fields=list(self.unknown_fields),
            superseded_fields=[],
            field_order=_without_repeated_known(self.field_order),
            raw_header=b"",
        )

    # --- Parsing ---

    @classmethod
    def parse(cls, data: bytes) -> tuple[KdbxHeader, int]:
        """Parse the outer header.

        Args:
            data: File contents (at least the complete header)

        Returns:
            Tuple of (header, offset where the encrypted body starts)

        Raises:
            InvalidSignatureError: If the magic bytes are wrong
            UnsupportedFormatError: For KeePass 1.x files or unknown algorithms
            UnsupportedVersionError: If the major version is not 3
            CorruptedDataError: If the header is truncated or incomplete
        """
        if len(data) < _PREAMBLE.size:
            raise CorruptedDataError("File too short for KDBX header")

        sig1, sig2, minor, major = _PREAMBLE.unpack_from(data, 0)
        if sig1 != KDBX_SIGNATURE_1:
            raise InvalidSignatureError("Not a KeePass database (bad signature)")
        if sig2 == KDB_SIGNATURE_2:
            raise UnsupportedFormatError("KeePass 1.x (KDB) databases are not supported")
        if sig2 != KDBX_SIGNATURE_2:
            raise InvalidSignatureError("Not a KDBX database (bad signature)")
        if major != SUPPORTED_MAJOR_VERSION:
            raise UnsupportedVersionError(major, minor)

        offset = _PREAMBLE.size
        fields: list[tuple[int, bytes]] = []

        while True:
            if offset + _FIELD_PREFIX.size > len(data):
                raise CorruptedDataError("Truncated header field")
            field_id, length = _FIELD_PREFIX.unpack_from(data, offset)
            offset += _FIELD_PREFIX.size
            if offset + length > len(data):
                raise CorruptedDataError(f"Truncated header field {field_id}")
            value = data[offset : offset + length]
            offset += length

            if field_id == HeaderFieldType.END:
                end_data = value
                break
            fields.append((field_id, value))

        # Later occurrences of a field override earlier ones
        values = dict(fields)
        last_index = {fid: i for i, (fid, _) in enumerate(fields)}

        missing = _REQUIRED_FIELDS - values.keys()
        if missing:
            names = ", ".join(sorted(HeaderFieldType(f).name for f in missing))
            raise CorruptedDataError(f"Missing header fields: {names}")

        cipher = Cipher.from_uuid(values[HeaderFieldType.CIPHER_ID])
        compression = _unpack_int(values, HeaderFieldType.COMPRESSION_FLAGS, "<I")
        if compression not in {c.value for c in CompressionType}:
            raise UnknownCompressionError(compression)
        stream_id = _unpack_int(values, HeaderFieldType.INNER_RANDOM_STREAM_ID, "<I")
        if stream_id not in (
            ProtectedStreamId.NONE,
            ProtectedStreamId.SALSA20,
            ProtectedStreamId.CHACHA20,
        ):
            raise UnknownStreamCipherError(stream_id)
        rounds = _unpack_int(values, HeaderFieldType.TRANSFORM_ROUNDS, "<Q")
        if rounds < 1:
            raise CorruptedDataError("Header field TRANSFORM_ROUNDS must be at least 1")

        header = cls(
            cipher=cipher,
            compression=CompressionType(compression),
            master_seed=_fixed(values, HeaderFieldType.MASTER_SEED, 32),
            transform_seed=_fixed(values, HeaderFieldType.TRANSFORM_SEED, 32),
            transform_rounds=rounds,
            encryption_iv=_fixed(values, HeaderFieldType.ENCRYPTION_IV, cipher.iv_size),
            protected_stream_key=values[HeaderFieldType.PROTECTED_STREAM_KEY],
            stream_start_bytes=_fixed(values, HeaderFieldType.STREAM_START_BYTES, 32),
            inner_random_stream_id=stream_id,
            version_major=major,
            version_minor=minor,
            comment=values.get(HeaderFieldType.COMMENT),
            unknown_fields=[(fid, v) for fid, v in fields if fid not in _KNOWN_FIELDS],
            superseded_fields=[
                (fid, v)
                for i, (fid, v) in enumerate(fields)
                if fid in _KNOWN_FIELDS and last_index[fid] != i
            ],
            end_data=end_data,
            field_order=[fid for fid, _ in fields],
            raw_header=data[:offset],
        )
        logger.debug(
            "Parsed KDBX %d.%d header (cipher %s, %d rounds, %d unknown fields)",
            major,
            minor,
            cipher.display_name,
            header.transform_rounds,
            len(header.unknown_fields),
        )
        return header, offset

    # --- Building ---

    def to_bytes(self) -> bytes:
        """Serialize the header, End field included.

        Fields are written in their parsed order; fields this header did
        not come with are appended in KeePass order.
        """
        order = list(self.field_order)
        order += [f for f in _CANONICAL_ORDER if f not in order]
        if self.comment is not None and HeaderFieldType.COMMENT not in order:
            order.insert(0, HeaderFieldType.COMMENT)

        # Repeated ids are replayed one stored value per occurrence
        unknown = _by_id(self.unknown_fields)
        superseded = _by_id(self.superseded_fields)

        parts = [
            _PREAMBLE.pack(
                KDBX_SIGNATURE_1, KDBX_SIGNATURE_2, self.version_minor, self.version_major
            )
        ]
        for field_id in order:
            if superseded.get(field_id):
                value: bytes | None = superseded[field_id].popleft()
            elif field_id in _KNOWN_FIELDS:
                value = self._field_value(field_id)
            elif unknown.get(field_id):
                value = unknown[field_id].popleft()
            else:
                value = None
            if value is not None:
                parts.append(_pack_field(field_id, value))
        for field_id, remaining in unknown.items():
            parts.extend(_pack_field(field_id, value) for value in remaining)
        parts.append(_pack_field(HeaderFieldType.END, self.end_data))
        return b"".join(parts)

    def _field_value(self, field_id: int) -> bytes | None:
        if field_id == HeaderFieldType.COMMENT:
            return self.comment
        if field_id == HeaderFieldType.CIPHER_ID:
            return self.cipher.value
        if field_id == HeaderFieldType.COMPRESSION_FLAGS:
            return struct.pack("<I", self.compression)
        if field_id == HeaderFieldType.MASTER_SEED:
            return self.master_seed
        if field_id == HeaderFieldType.TRANSFORM_SEED:
            return self.transform_seed
        if field_id == HeaderFieldType.TRANSFORM_ROUNDS:
            return struct.pack("<Q", self.transform_rounds)
        if field_id == HeaderFieldType.ENCRYPTION_IV:
            return self.encryption_iv
        if field_id == HeaderFieldType.PROTECTED_STREAM_KEY:
            return self.protected_stream_key
        if field_id == HeaderFieldType.STREAM_START_BYTES:
            return self.stream_start_bytes
        if field_id == HeaderFieldType.INNER_RANDOM_STREAM_ID:
            return struct.pack("<I", self.inner_random_stream_id)
        return None


def _by_id(fields: list[tuple[int, bytes]]) -> dict[int, deque[bytes]]:
    grouped: dict[int, deque[bytes]] = {}
    for field_id, value in fields:
        grouped.setdefault(field_id, deque()).append(value)
    return grouped


def _without_repeated_known(order: list[int]) -> list[int]:
    seen: set[int] = set()
    result: list[int] = []
    for field_id in order:
        if field_id in _KNOWN_FIELDS:
            if field_id in seen:
                continue
            seen.add(field_id)
        result.append(field_id)
    return result


def _pack_field(field_id: int, value: bytes) -> bytes:
    if len(value) > 0xFFFF:
        raise ValueError(f"Header field {field_id} too long ({len(value)} bytes)")
    return _FIELD_PREFIX.pack(field_id, len(value)) + value


def _fixed(values: dict[int, bytes], field_id: HeaderFieldType, size: int) -> bytes:
    value = values[field_id]
    if len(value) != size:
        raise CorruptedDataError(
            f"Header field {field_id.name} must be {size} bytes, got {len(value)}"
        )
    return value


def _unpack_int(values: dict[int, bytes], field_id: HeaderFieldType, fmt: str) -> int:
    value = values[field_id]
    if len(value) != struct.calcsize(fmt):
        raise CorruptedDataError(f"Header field {field_id.name} has invalid length")
    return int(struct.unpack(fmt, value)[0])
