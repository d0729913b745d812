"""Entry model for KDBX password entries."""

from __future__ import annotations

import copy
import uuid as uuid_module
import weakref
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from .times import Times

if TYPE_CHECKING:
    from datetime import datetime

    from kdbxstream.database import Database

    from .group import Group


# Standard string fields, in the order KeePass writes them
STANDARD_FIELDS = ("Title", "UserName", "Password", "URL", "Notes")

# Fields that have special handling and shouldn't be treated as custom properties
RESERVED_KEYS = frozenset(STANDARD_FIELDS)


@dataclass
class StringField:
    """A string field in an entry.

    Attributes:
        key: Field name (e.g., "Title", "UserName", "Password")
        value: Field value
        protected: Whether the value is written with the protected-field cipher
    """

    key: str
    value: str | None = None
    protected: bool = False


@dataclass
class Entry:
    """A password entry in a KDBX database.

    Entries store credentials and associated metadata. Each entry has
    standard fields (title, username, password, url, notes) plus support
    for custom string fields and binary attachments.

    An entry belongs to at most one group at a time. The parent group and
    the owning database are held as weak references; the group's entry
    list is the owning edge.

    Attributes:
        uuid: Unique identifier for the entry
        times: Timestamps (creation, modification, access, expiry)
        icon_id: Icon ID for display
        tags: List of tags for categorization
        strings: Dictionary of string fields (key -> StringField)
        attachments: Binary attachments (filename -> data)
        history: List of previous versions of this entry
        foreground_color: Custom foreground color (hex)
        background_color: Custom background color (hex)
        override_url: URL override
    """

    uuid: uuid_module.UUID = field(default_factory=uuid_module.uuid4)
    times: Times = field(default_factory=Times.create_new)
    icon_id: str = "0"
    tags: list[str] = field(default_factory=list)
    strings: dict[str, StringField] = field(default_factory=dict)
    attachments: dict[str, bytes] = field(default_factory=dict)
    history: list[HistoryEntry] = field(default_factory=list)
    foreground_color: str | None = None
    background_color: str | None = None
    override_url: str | None = None

    # Runtime back-references (not serialized)
    _parent: weakref.ref[Group] | None = field(default=None, repr=False, compare=False)
    _database: weakref.ref[Database] | None = field(
        default=None, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        """Initialize default string fields if not present."""
        for key in STANDARD_FIELDS:
            if key not in self.strings:
                self.strings[key] = StringField(key=key, protected=key == "Password")

    # --- Standard field properties ---

    def _get_string(self, key: str) -> str | None:
        string_field = self.strings.get(key)
        return string_field.value if string_field else None

    def _set_string(self, key: str, value: str | None) -> None:
        if key not in self.strings:
            self.strings[key] = StringField(key, protected=key == "Password")
        self.strings[key].value = value
        self._mark_modified()

    @property
    def title(self) -> str | None:
        """Get or set entry title."""
        return self._get_string("Title")

    @title.setter
    def title(self, value: str | None) -> None:
        self._set_string("Title", value)

    @property
    def username(self) -> str | None:
        """Get or set entry username."""
        return self._get_string("UserName")

    @username.setter
    def username(self, value: str | None) -> None:
        self._set_string("UserName", value)

    @property
    def password(self) -> str | None:
        """Get or set entry password."""
        return self._get_string("Password")

    @password.setter
    def password(self, value: str | None) -> None:
        self._set_string("Password", value)

    @property
    def url(self) -> str | None:
        """Get or set entry URL."""
        return self._get_string("URL")

    @url.setter
    def url(self, value: str | None) -> None:
        self._set_string("URL", value)

    @property
    def notes(self) -> str | None:
        """Get or set entry notes."""
        return self._get_string("Notes")

    @notes.setter
    def notes(self, value: str | None) -> None:
        self._set_string("Notes", value)

    # --- Custom properties ---

    def set_custom_property(self, key: str, value: str, protected: bool = False) -> None:
        """Set a custom property.

        Args:
            key: Property name (must not be a reserved key)
            value: Property value
            protected: Whether to write the value through the protected-field cipher

        Raises:
            ValueError: If key is a reserved key
        """
        if key in RESERVED_KEYS:
            raise ValueError(f"{key} is a reserved key, use the property instead")
        self.strings[key] = StringField(key=key, value=value, protected=protected)
        self._mark_modified()

    @property
    def custom_properties(self) -> dict[str, str | None]:
        """Get all custom properties as a dictionary."""
        return {k: v.value for k, v in self.strings.items() if k not in RESERVED_KEYS}

    # --- Attachments ---

    def add_attachment(self, name: str, data: bytes) -> None:
        """Attach binary data under a filename, replacing any existing one."""
        self.attachments[name] = bytes(data)
        self._mark_modified()

    def get_attachment(self, name: str) -> bytes | None:
        return self.attachments.get(name)

    def list_attachments(self) -> list[str]:
        return list(self.attachments)

    # --- Tree navigation ---

    @property
    def parent(self) -> Group | None:
        """Get parent group, or None if the entry is unattached."""
        return self._parent() if self._parent is not None else None

    @property
    def database(self) -> Database | None:
        """Get the database this entry belongs to."""
        return self._database() if self._database is not None else None

    def _set_parent(self, group: Group | None) -> None:
        self._parent = weakref.ref(group) if group is not None else None

    def _bind(self, database: Database | None) -> None:
        self._database = weakref.ref(database) if database is not None else None

    def _mark_modified(self) -> None:
        database = self.database
        if database is not None:
            database._mark_modified()

    # --- Convenience methods ---

    @property
    def expired(self) -> bool:
        """Check if entry has expired."""
        return self.times.expired

    def touch(self, modify: bool = False) -> None:
        """Update access time, optionally modification time."""
        self.times.touch(modify=modify)

    def save_history(self) -> None:
        """Save current state to history before making changes."""
        self.history.append(HistoryEntry.from_entry(self))
        self._mark_modified()

    def duplicate(self) -> Entry:
        """Deep copy of this entry with a new UUID.

        The copy is unattached and not bound to any database. History is
        copied along and re-labelled with the new UUID.
        """
        clone = Entry(
            times=copy.deepcopy(self.times),
            icon_id=self.icon_id,
            tags=list(self.tags),
            strings=copy.deepcopy(self.strings),
            attachments=dict(self.attachments),
            foreground_color=self.foreground_color,
            background_color=self.background_color,
            override_url=self.override_url,
        )
        for old in self.history:
            snapshot = HistoryEntry.from_entry(old)
            snapshot.uuid = clone.uuid
            clone.history.append(snapshot)
        return clone

    def has_same_data(self, other: Entry) -> bool:
        """Compare everything but identity and timestamps.

        Empty and missing string values compare equal, since the file
        format does not distinguish them.
        """

        def normalized(entry: Entry) -> dict[str, tuple[str, bool]]:
            return {
                k: (v.value or "", v.protected) for k, v in entry.strings.items()
            }

        return (
            self.icon_id == other.icon_id
            and self.tags == other.tags
            and normalized(self) == normalized(other)
            and self.attachments == other.attachments
            and self.foreground_color == other.foreground_color
            and self.background_color == other.background_color
            and self.override_url == other.override_url
            and len(self.history) == len(other.history)
            and all(a.has_same_data(b) for a, b in zip(self.history, other.history))
        )

    def __str__(self) -> str:
        return f'Entry: "{self.title}" ({self.username})'

    def __hash__(self) -> int:
        return hash(self.uuid)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Entry):
            return self.uuid == other.uuid
        return NotImplemented

    @classmethod
    def create(
        cls,
        title: str | None = None,
        username: str | None = None,
        password: str | None = None,
        url: str | None = None,
        notes: str | None = None,
        tags: list[str] | None = None,
        icon_id: str = "0",
        expires: bool = False,
        expiry_time: datetime | None = None,
    ) -> Entry:
        """Create a new entry with common fields.

        Args:
            title: Entry title
            username: Username
            password: Password
            url: URL
            notes: Notes
            tags: List of tags
            icon_id: Icon ID
            expires: Whether entry expires
            expiry_time: Expiration time

        Returns:
            New Entry instance
        """
        entry = cls(
            times=Times.create_new(expires=expires, expiry_time=expiry_time),
            icon_id=icon_id,
            tags=tags or [],
        )
        entry.title = title
        entry.username = username
        entry.password = password
        entry.url = url
        entry.notes = notes
        return entry


@dataclass
class HistoryEntry(Entry):
    """A historical version of an entry.

    History entries are snapshots of an entry at a previous point in time.
    They share the same UUID as their parent entry.
    """

    def __str__(self) -> str:
        return f'HistoryEntry: "{self.title}" ({self.times.last_modification_time})'

    def __hash__(self) -> int:
        # History entries share UUID with parent
        return hash((self.uuid, self.times.last_modification_time))

    def __eq__(self, other: object) -> bool:
        if isinstance(other, HistoryEntry):
            return (self.uuid, self.times.last_modification_time) == (
                other.uuid,
                other.times.last_modification_time,
            )
        return NotImplemented

    @classmethod
    def from_entry(cls, entry: Entry) -> HistoryEntry:
        """Create a history entry from an existing entry."""
        return cls(
            uuid=entry.uuid,
            times=copy.deepcopy(entry.times),
            icon_id=entry.icon_id,
            tags=list(entry.tags),
            strings=copy.deepcopy(entry.strings),
            attachments=dict(entry.attachments),
            history=[],  # History entries don't have history
            foreground_color=entry.foreground_color,
            background_color=entry.background_color,
            override_url=entry.override_url,
        )
