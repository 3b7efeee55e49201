"""PostgreSQL backend for the urgency registry and the noise archive.

Manages two tables (created by the ``sovereign`` Alembic chain):

- ``sovereign_urgency`` — the urgency/priority contact list (source of truth).
- ``sovereign_archive`` — silent archive for system-noise messages.

Row keys are normalized with :func:`normalize_row_key` before every read and
write, so callers always pass raw sender identifiers.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta

import asyncpg

from sovereign.models import PARTITION_CONTACTS, ArchivedNoiseEntry, ContactRecord
from sovereign.storage.base import TABLE_ARCHIVE, TABLE_URGENCY, normalize_row_key

logger = logging.getLogger(__name__)

_CONTACT_COLUMNS = (
    "partition_key, row_key, display_name, is_priority, "
    "last_message_at, last_replied_at, notes"
)


def _parse_contact(row: asyncpg.Record) -> ContactRecord:
    """Convert a ``sovereign_urgency`` row to a ContactRecord."""
    return ContactRecord(
        partition_key=row["partition_key"],
        row_key=row["row_key"],
        display_name=row["display_name"],
        is_priority=bool(row["is_priority"]),
        last_message_at=row["last_message_at"],
        last_replied_at=row["last_replied_at"],
        notes=row["notes"],
    )


class PostgresSovereignStore:
    """asyncpg-backed registry and archive.

    Parameters
    ----------
    pool:
        asyncpg connection pool for the filter's database.
    """

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    # ------------------------------------------------------------------
    # Urgency registry (contacts)
    # ------------------------------------------------------------------

    async def get_contact(self, sender_id: str) -> ContactRecord | None:
        """Look up a contact by sender identifier.

        Returns ``None`` if the sender is not in the urgency table.  Any
        database error propagates to the caller.
        """
        row = await self._pool.fetchrow(
            f"""
            SELECT {_CONTACT_COLUMNS}
            FROM {TABLE_URGENCY}
            WHERE partition_key = $1 AND row_key = $2
            """,
            PARTITION_CONTACTS,
            normalize_row_key(sender_id),
        )
        if row is None:
            return None
        return _parse_contact(row)

    async def list_contacts(self) -> list[ContactRecord]:
        """List all contacts in the urgency table."""
        rows = await self._pool.fetch(
            f"""
            SELECT {_CONTACT_COLUMNS}
            FROM {TABLE_URGENCY}
            WHERE partition_key = $1
            ORDER BY row_key
            """,
            PARTITION_CONTACTS,
        )
        return [_parse_contact(row) for row in rows]

    async def list_priority_contacts(self) -> list[ContactRecord]:
        """List only priority contacts."""
        contacts = await self.list_contacts()
        return [c for c in contacts if c.is_priority]

    async def upsert_contact(self, record: ContactRecord) -> None:
        """Insert or merge a contact into the urgency table.

        ``display_name`` and ``is_priority`` are always written.  Timestamps
        and notes left as ``None`` keep whatever is already stored.
        """
        await self._pool.execute(
            f"""
            INSERT INTO {TABLE_URGENCY}
                (partition_key, row_key, display_name, is_priority,
                 last_message_at, last_replied_at, notes)
            VALUES ($1, $2, $3, $4, $5, $6, $7)
            ON CONFLICT (partition_key, row_key) DO UPDATE SET
                display_name = EXCLUDED.display_name,
                is_priority = EXCLUDED.is_priority,
                last_message_at = COALESCE(
                    EXCLUDED.last_message_at, {TABLE_URGENCY}.last_message_at
                ),
                last_replied_at = COALESCE(
                    EXCLUDED.last_replied_at, {TABLE_URGENCY}.last_replied_at
                ),
                notes = COALESCE(EXCLUDED.notes, {TABLE_URGENCY}.notes)
            """,
            PARTITION_CONTACTS,
            normalize_row_key(record.row_key),
            record.display_name,
            record.is_priority,
            record.last_message_at,
            record.last_replied_at,
            record.notes,
        )
        logger.debug("Upserted contact %s (priority=%s)", record.row_key, record.is_priority)

    async def touch_contact_last_message(self, sender_id: str) -> None:
        """Update the last-message timestamp for a contact.

        An UPDATE against a missing row affects nothing, so unknown senders
        are silently ignored.
        """
        await self._pool.execute(
            f"""
            UPDATE {TABLE_URGENCY}
            SET last_message_at = $3
            WHERE partition_key = $1 AND row_key = $2
            """,
            PARTITION_CONTACTS,
            normalize_row_key(sender_id),
            datetime.now(UTC),
        )

    async def find_silent_contacts(self, silent_hours: int) -> list[ContactRecord]:
        """Find contacts that haven't been communicated with recently.

        Returns contacts whose ``last_message_at`` is absent (never messaged)
        or older than *silent_hours* ago.
        """
        cutoff = datetime.now(UTC) - timedelta(hours=silent_hours)
        rows = await self._pool.fetch(
            f"""
            SELECT {_CONTACT_COLUMNS}
            FROM {TABLE_URGENCY}
            WHERE partition_key = $1
              AND (last_message_at IS NULL OR last_message_at < $2)
            ORDER BY row_key
            """,
            PARTITION_CONTACTS,
            cutoff,
        )
        return [_parse_contact(row) for row in rows]

    # ------------------------------------------------------------------
    # Silent archive
    # ------------------------------------------------------------------

    async def archive_noise(self, entry: ArchivedNoiseEntry) -> None:
        """Archive a system-noise message, replacing any entry with the same id."""
        await self._pool.execute(
            f"""
            INSERT INTO {TABLE_ARCHIVE}
                (partition_key, row_key, provider, sender_id, sender_name,
                 body, received_at, session_key)
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
            ON CONFLICT (row_key) DO UPDATE SET
                partition_key = EXCLUDED.partition_key,
                provider = EXCLUDED.provider,
                sender_id = EXCLUDED.sender_id,
                sender_name = EXCLUDED.sender_name,
                body = EXCLUDED.body,
                received_at = EXCLUDED.received_at,
                session_key = EXCLUDED.session_key
            """,
            entry.partition_key,
            entry.row_key,
            entry.provider,
            entry.sender_id,
            entry.sender_name,
            entry.body,
            entry.received_at,
            entry.session_key,
        )
        logger.debug("Archived noise message %s from %s", entry.row_key, entry.sender_id)
