"""Pre-order traversal of the group tree.

A visitor is any object with some of these hooks:

    on_group_start(group)   before the group's entries and subgroups
    on_entry(entry)         for each entry of the current group
    on_group_end(group)     after the group's subgroups

Missing hooks are skipped, so a visitor only implements what it needs.
Each group's entries and subgroups are snapshotted before they are
visited: a visitor may add, move or remove nodes while walking, and the
walk follows the tree as it was when the group was reached.
"""

from __future__ import annotations

import sys
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, TextIO

if TYPE_CHECKING:
    from .entry import Entry
    from .group import Group


class BaseVisitor:
    """Visitor with no-op hooks, for subclassing."""

    def on_group_start(self, group: Group) -> None:
        pass

    def on_entry(self, entry: Entry) -> None:
        pass

    def on_group_end(self, group: Group) -> None:
        pass


class PrintVisitor(BaseVisitor):
    """Writes an indented listing of groups and entry titles.

    Example:
        >>> db.visit(PrintVisitor())
        Database
          Email
            - Gmail
    """

    def __init__(self, stream: TextIO | None = None, indent: str = "  ") -> None:
        self._stream = stream if stream is not None else sys.stdout
        self._indent = indent
        self._depth = 0

    def on_group_start(self, group: Group) -> None:
        self._write(group.name or "")
        self._depth += 1

    def on_entry(self, entry: Entry) -> None:
        self._write(f"- {entry.title or ''}")

    def on_group_end(self, group: Group) -> None:
        self._depth -= 1

    def _write(self, text: str) -> None:
        self._stream.write(f"{self._indent * self._depth}{text}\n")


def _hook(visitor: Any, name: str) -> Callable[[Any], object] | None:
    hook = getattr(visitor, name, None)
    return hook if callable(hook) else None


def walk(group: Group, visitor: Any) -> None:
    """Visit a group and everything below it, depth first.

    Order: on_group_start(group), on_entry for each entry, each subgroup
    recursively, then on_group_end(group).
    """
    _walk(
        group,
        _hook(visitor, "on_group_start"),
        _hook(visitor, "on_entry"),
        _hook(visitor, "on_group_end"),
    )


def _walk(
    group: Group,
    on_group_start: Callable[[Any], object] | None,
    on_entry: Callable[[Any], object] | None,
    on_group_end: Callable[[Any], object] | None,
) -> None:
    if on_group_start is not None:
        on_group_start(group)
    if on_entry is not None:
        for entry in list(group.entries):
            on_entry(entry)
    for subgroup in list(group.subgroups):
        _walk(subgroup, on_group_start, on_entry, on_group_end)
    if on_group_end is not None:
        on_group_end(group)
