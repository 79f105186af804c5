"""Transactional stores the importer can load into."""

from mbz_import.config import Settings
from mbz_import.store.base import Store, TxReport
from mbz_import.store.memory import MemoryStore


def open_store(settings: Settings) -> Store:
    """Build the store selected in settings."""
    if settings.store == "memory":
        return MemoryStore()
    if settings.store == "sqlserver":
        from mbz_import.store.sqlserver import SqlServerStore

        return SqlServerStore(settings)
    raise ValueError(f"Unknown store backend: {settings.store!r}")


__all__ = ["MemoryStore", "Store", "TxReport", "open_store"]
