"""Group model for KDBX database folders."""

from __future__ import annotations

import copy
import uuid as uuid_module
import weakref
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from .entry import Entry
from .times import Times

if TYPE_CHECKING:
    from kdbxstream.database import Database


@dataclass
class Group:
    """A group (folder) in a KDBX database.

    Groups organize entries into a hierarchical structure. Each group can
    contain entries and subgroups, both kept in insertion order.

    The subgroup and entry lists are the owning edges of the tree. The
    parent group and the database are weak back-references, so a group
    never keeps its ancestors alive.

    Attributes:
        uuid: Unique identifier for the group
        name: Display name of the group
        notes: Optional notes/description
        times: Timestamps (creation, modification, access, expiry)
        icon_id: Icon ID for display
        is_expanded: Whether group is expanded in UI
        entries: List of entries in this group
        subgroups: List of subgroups
    """

    uuid: uuid_module.UUID = field(default_factory=uuid_module.uuid4)
    name: str | None = None
    notes: str | None = None
    times: Times = field(default_factory=Times.create_new)
    icon_id: str = "48"  # Default folder icon
    is_expanded: bool = True
    entries: list[Entry] = field(default_factory=list)
    subgroups: list[Group] = field(default_factory=list)

    # Runtime back-references (not serialized)
    _parent: weakref.ref[Group] | None = field(default=None, repr=False, compare=False)
    _database: weakref.ref[Database] | None = field(
        default=None, repr=False, compare=False
    )
    # Flag for root group
    _is_root: bool = field(default=False, repr=False)

    @property
    def parent(self) -> Group | None:
        """Get parent group, or None if this is the root or unattached."""
        return self._parent() if self._parent is not None else None

    @property
    def database(self) -> Database | None:
        """Get the database this group belongs to."""
        return self._database() if self._database is not None else None

    @property
    def is_root_group(self) -> bool:
        """Check if this is the database root group."""
        return self._is_root

    @property
    def path(self) -> list[str]:
        """Get path from root to this group.

        Returns:
            List of group names from root (exclusive) to this group (inclusive).
            Empty list for the root group.
        """
        parts: list[str] = []
        current: Group | None = self
        while current is not None and not current.is_root_group:
            if current.name is not None:
                parts.insert(0, current.name)
            current = current.parent
        return parts

    @property
    def expired(self) -> bool:
        """Check if group has expired."""
        return self.times.expired

    def touch(self, modify: bool = False) -> None:
        """Update access time, optionally modification time."""
        self.times.touch(modify=modify)

    # --- Internal tree plumbing ---

    def _append_entry(self, entry: Entry) -> None:
        entry._set_parent(self)
        entry._bind(self.database)
        self.entries.append(entry)

    def _append_subgroup(self, group: Group) -> None:
        group._parent = weakref.ref(self)
        group._bind(self.database)
        self.subgroups.append(group)

    def _bind(self, database: Database | None) -> None:
        """Bind this group and everything below it to a database."""
        self._database = weakref.ref(database) if database is not None else None
        for entry in self.entries:
            entry._bind(database)
        for subgroup in self.subgroups:
            subgroup._bind(database)

    def _mark_modified(self) -> None:
        database = self.database
        if database is not None:
            database._mark_modified()

    def _is_ancestor_of(self, group: Group) -> bool:
        current = group.parent
        while current is not None:
            if current is self:
                return True
            current = current.parent
        return False

    # --- Entry management ---

    def add_entry(self, entry: Entry) -> Entry:
        """Attach an entry as the last entry of this group.

        If the entry already has a parent it is removed there first, so an
        entry is never in two groups at once. Moving between databases
        rebinds the entry to this group's database.

        Args:
            entry: Entry to add

        Returns:
            The added entry
        """
        previous = entry.parent
        if previous is not None:
            previous.entries.remove(entry)
            previous.touch(modify=True)
            previous._mark_modified()
            entry.times.update_location()

        self._append_entry(entry)
        self.touch(modify=True)
        self._mark_modified()
        return entry

    def remove_entry(self, entry: Entry) -> None:
        """Remove an entry from this group.

        Raises:
            ValueError: If entry is not in this group
        """
        if not any(e is entry for e in self.entries):
            raise ValueError("Entry not in this group")
        self.entries.remove(entry)
        entry._set_parent(None)
        self.touch(modify=True)
        self._mark_modified()

    def create_entry(
        self,
        title: str | None = None,
        username: str | None = None,
        password: str | None = None,
        url: str | None = None,
        notes: str | None = None,
        tags: list[str] | None = None,
    ) -> Entry:
        """Create and add a new entry to this group."""
        entry = Entry.create(
            title=title,
            username=username,
            password=password,
            url=url,
            notes=notes,
            tags=tags,
        )
        return self.add_entry(entry)

    # --- Subgroup management ---

    def add_subgroup(self, group: Group) -> Group:
        """Attach a group as the last subgroup of this group.

        This is a move: a group that already has a parent is detached from
        it first. The moved subtree is rebound to this group's database.

        Args:
            group: Group to add

        Returns:
            The added group

        Raises:
            ValueError: If group is a root group
            ValueError: If group is this group (cannot add into self)
            ValueError: If group is an ancestor of this group (would create cycle)
        """
        if group.is_root_group:
            raise ValueError("Cannot add a root group as a subgroup")
        if group is self:
            raise ValueError("Cannot add group into itself")
        if group._is_ancestor_of(self):
            raise ValueError("Cannot add group into its own descendant (would create cycle)")

        previous = group.parent
        if previous is not None:
            previous.subgroups.remove(group)
            previous.touch(modify=True)
            previous._mark_modified()
            group.times.update_location()

        self._append_subgroup(group)
        self.touch(modify=True)
        self._mark_modified()
        return group

    def remove_subgroup(self, group: Group) -> None:
        """Remove a subgroup from this group.

        Raises:
            ValueError: If group is not a subgroup of this group
        """
        if not any(g is group for g in self.subgroups):
            raise ValueError("Group is not a subgroup")
        self.subgroups.remove(group)
        group._parent = None
        self.touch(modify=True)
        self._mark_modified()

    def create_subgroup(
        self,
        name: str,
        notes: str | None = None,
        icon_id: str = "48",
    ) -> Group:
        """Create and add a new subgroup."""
        group = Group(name=name, notes=notes, icon_id=icon_id)
        return self.add_subgroup(group)

    # --- Copying ---

    def duplicate(self) -> Group:
        """Copy of this group's own properties, without children.

        The copy gets a new UUID and is unattached.
        """
        return Group(
            name=self.name,
            notes=self.notes,
            times=copy.deepcopy(self.times),
            icon_id=self.icon_id,
            is_expanded=self.is_expanded,
        )

    def _deep_copy(self) -> Group:
        clone = self.duplicate()
        for entry in self.entries:
            clone._append_entry(entry.duplicate())
        for subgroup in self.subgroups:
            clone._append_subgroup(subgroup._deep_copy())
        return clone

    def copy(self, source: Group) -> None:
        """Append deep copies of the source group's entries and subgroups.

        The copies get new UUIDs and are bound to this group's database.
        The source's own properties are not copied and the source is left
        untouched, which makes this usable across databases (for example
        to migrate the contents of one root group into another).

        Args:
            source: Group whose children are copied
        """
        # Copy everything before attaching, in case source is an ancestor
        entries = [entry.duplicate() for entry in source.entries]
        subgroups = [subgroup._deep_copy() for subgroup in source.subgroups]

        for entry in entries:
            self._append_entry(entry)
        for subgroup in subgroups:
            self._append_subgroup(subgroup)

        if entries or subgroups:
            self.touch(modify=True)
            self._mark_modified()

    def has_same_data(self, other: Group) -> bool:
        """Recursively compare everything but identity and timestamps."""
        return (
            (self.name or "") == (other.name or "")
            and (self.notes or "") == (other.notes or "")
            and self.icon_id == other.icon_id
            and self.is_expanded == other.is_expanded
            and len(self.entries) == len(other.entries)
            and len(self.subgroups) == len(other.subgroups)
            and all(a.has_same_data(b) for a, b in zip(self.entries, other.entries))
            and all(a.has_same_data(b) for a, b in zip(self.subgroups, other.subgroups))
        )

    # --- Iteration and search ---

    def iter_entries(self, recursive: bool = True) -> Iterator[Entry]:
        """Iterate over entries in this group.

        Args:
            recursive: If True, include entries from all subgroups

        Yields:
            Entry objects
        """
        yield from self.entries
        if recursive:
            for subgroup in self.subgroups:
                yield from subgroup.iter_entries(recursive=True)

    def iter_groups(self, recursive: bool = True) -> Iterator[Group]:
        """Iterate over subgroups.

        Args:
            recursive: If True, include nested subgroups

        Yields:
            Group objects
        """
        for subgroup in self.subgroups:
            yield subgroup
            if recursive:
                yield from subgroup.iter_groups(recursive=True)

    def find_entries(
        self,
        title: str | None = None,
        username: str | None = None,
        url: str | None = None,
        tags: list[str] | None = None,
        recursive: bool = True,
    ) -> list[Entry]:
        """Find entries matching criteria.

        All criteria are combined with AND logic. None means "any value".

        Args:
            title: Match entries with this title (exact)
            username: Match entries with this username (exact)
            url: Match entries with this URL (exact)
            tags: Match entries containing all these tags
            recursive: Search in subgroups

        Returns:
            List of matching entries
        """
        results = []
        for entry in self.iter_entries(recursive=recursive):
            if title is not None and entry.title != title:
                continue
            if username is not None and entry.username != username:
                continue
            if url is not None and entry.url != url:
                continue
            if tags is not None and not all(t in entry.tags for t in tags):
                continue
            results.append(entry)
        return results

    def find_groups(
        self,
        name: str | None = None,
        recursive: bool = True,
    ) -> list[Group]:
        """Find groups matching criteria.

        Args:
            name: Match groups with this name (exact)
            recursive: Search in nested subgroups

        Returns:
            List of matching groups
        """
        results = []
        for group in self.iter_groups(recursive=recursive):
            if name is not None and group.name != name:
                continue
            results.append(group)
        return results

    def __str__(self) -> str:
        path_str = "/".join(self.path) if self.path else "(root)"
        return f'Group: "{path_str}"'

    def __hash__(self) -> int:
        return hash(self.uuid)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Group):
            return self.uuid == other.uuid
        return NotImplemented

    @classmethod
    def create_root(cls, name: str = "Root") -> Group:
        """Create a root group for a new database.

        Args:
            name: Name for the root group

        Returns:
            New root Group instance
        """
        group = cls(name=name)
        group._is_root = True
        return group


def splice(new_parent: Group, group: Group) -> Group:
    """Copy a group and its whole subtree under a new parent.

    The new parent may live in another database. The spliced group and
    its original parent are left untouched; the copy gets new UUIDs
    throughout.

    Args:
        new_parent: Group that receives the copy as its last subgroup
        group: Group to copy

    Returns:
        The newly added group
    """
    database = new_parent.database
    added = database.new_group(group) if database is not None else group.duplicate()
    added.copy(group)
    return new_parent.add_subgroup(added)
