"""Storage interfaces and backends for the urgency registry and noise archive."""

from sovereign.storage.base import (
    TABLE_ARCHIVE,
    TABLE_URGENCY,
    ArchiveStore,
    ContactRegistry,
    SovereignStore,
    normalize_row_key,
)
from sovereign.storage.postgres import PostgresSovereignStore

__all__ = [
    "TABLE_ARCHIVE",
    "TABLE_URGENCY",
    "ArchiveStore",
    "ContactRegistry",
    "PostgresSovereignStore",
    "SovereignStore",
    "normalize_row_key",
]
