"""Database-wide metadata stored in the XML Meta element."""

from __future__ import annotations

import uuid as uuid_module
from dataclasses import dataclass, field


def _default_memory_protection() -> dict[str, bool]:
    return {
        "Title": False,
        "UserName": False,
        "Password": True,
        "URL": False,
        "Notes": False,
    }


@dataclass
class DatabaseSettings:
    """Settings for a KDBX database.

    Attributes:
        generator: Generator application name
        database_name: Name of the database
        database_description: Description of the database
        default_username: Default username for new entries
        maintenance_history_days: Days to keep deleted items
        color: Database color (hex)
        master_key_change_rec: Days until master key change recommended
        master_key_change_force: Days until master key change forced
        memory_protection: Which standard fields are written protected
        recycle_bin_enabled: Whether recycle bin is enabled
        recycle_bin_uuid: UUID of recycle bin group
        history_max_items: Max history entries per entry
        history_max_size: Max history size in bytes
    """

    generator: str = "kdbxstream"
    database_name: str = "Database"
    database_description: str = ""
    default_username: str = ""
    maintenance_history_days: int = 365
    color: str | None = None
    master_key_change_rec: int = -1
    master_key_change_force: int = -1
    memory_protection: dict[str, bool] = field(default_factory=_default_memory_protection)
    recycle_bin_enabled: bool = True
    recycle_bin_uuid: uuid_module.UUID | None = None
    history_max_items: int = 10
    history_max_size: int = 6 * 1024 * 1024  # 6 MiB

    def should_protect(self, key: str, flagged: bool) -> bool:
        """Whether a string field is written protected.

        Standard fields follow the memory protection policy; custom fields
        keep their own flag.
        """
        return self.memory_protection.get(key, flagged)
