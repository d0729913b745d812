"""Data models for KDBX database elements.

This module provides typed Python classes for representing KDBX database
contents: entries, groups, timestamps and tree traversal.
"""

from .entry import Entry, HistoryEntry, StringField
from .group import Group, splice
from .settings import DatabaseSettings
from .times import Times
from .visitor import BaseVisitor, PrintVisitor, walk

__all__ = [
    "BaseVisitor",
    "DatabaseSettings",
    "Entry",
    "Group",
    "HistoryEntry",
    "PrintVisitor",
    "StringField",
    "Times",
    "splice",
    "walk",
]
