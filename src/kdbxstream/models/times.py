"""Timestamps shared by entries and groups."""

from __future__ import annotations

import base64
import binascii
import struct
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

# ISO 8601 format written by KeePass 2.x in KDBX 3.x files
KDBX_TIME_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

_EPOCH = datetime(1, 1, 1, tzinfo=UTC)


def now() -> datetime:
    """Current UTC time truncated to the second, as stored in the file."""
    return datetime.now(UTC).replace(microsecond=0)


def as_utc(dt: datetime) -> datetime:
    """Return dt in UTC, treating a naive datetime as UTC already."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def encode_time(dt: datetime) -> str:
    """Encode a datetime as KDBX XML text."""
    return as_utc(dt).strftime(KDBX_TIME_FORMAT)


def decode_time(text: str) -> datetime:
    """Decode KDBX XML time text.

    Accepts the ISO form and the base64 int64 form (seconds since
    0001-01-01) that some writers emit.

    Raises:
        ValueError: If the text is neither
    """
    text = text.strip()
    # Base64 never contains - or :, ISO dates always do
    if "-" not in text and ":" not in text:
        try:
            raw = base64.b64decode(text, validate=True)
        except binascii.Error as e:
            raise ValueError(f"Invalid time value: {text!r}") from e
        if len(raw) != 8:
            raise ValueError(f"Invalid time value: {text!r}")
        (seconds,) = struct.unpack("<q", raw)
        return _EPOCH + timedelta(seconds=seconds)

    try:
        return datetime.strptime(text, KDBX_TIME_FORMAT).replace(tzinfo=UTC)
    except ValueError:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=UTC)
        return parsed.replace(microsecond=0)


@dataclass
class Times:
    """Timestamps for an entry or group.

    Attributes:
        creation_time: When the item was created
        last_modification_time: When the item was last changed
        last_access_time: When the item was last read
        expiry_time: When the item expires (only meaningful if expires is set)
        expires: Whether the item expires
        usage_count: Number of times the item was used
        location_changed: When the item was last moved to another group
    """

    creation_time: datetime = field(default_factory=now)
    last_modification_time: datetime = field(default_factory=now)
    last_access_time: datetime = field(default_factory=now)
    expiry_time: datetime | None = None
    expires: bool = False
    usage_count: int = 0
    location_changed: datetime | None = None

    @classmethod
    def create_new(
        cls,
        expires: bool = False,
        expiry_time: datetime | None = None,
    ) -> Times:
        """Create timestamps for a new item, all set to now."""
        timestamp = now()
        return cls(
            creation_time=timestamp,
            last_modification_time=timestamp,
            last_access_time=timestamp,
            expiry_time=as_utc(expiry_time) if expiry_time is not None else None,
            expires=expires,
            location_changed=timestamp,
        )

    @property
    def expired(self) -> bool:
        """Check if the item has expired."""
        if not self.expires or self.expiry_time is None:
            return False
        return now() >= as_utc(self.expiry_time)

    def touch(self, modify: bool = False) -> None:
        """Update access time, and modification time if modify is set."""
        timestamp = now()
        self.last_access_time = timestamp
        if modify:
            self.last_modification_time = timestamp

    def update_location(self) -> None:
        """Record a move to another group."""
        self.location_changed = now()
