"""Storage interfaces for the sovereign filter.

The filter only needs a narrow view of its durable backend:

- ``ContactRegistry`` — the urgency registry, the single source of truth for
  who is a human sender and how urgent they are.
- ``ArchiveStore`` — a write-only sink for archived system-noise messages.

Lookups return ``None`` for an unknown sender; any other failure is a backend
fault and propagates as an exception.
"""

from __future__ import annotations

from typing import Protocol
from urllib.parse import quote

from sovereign.models import ArchivedNoiseEntry, ContactRecord

TABLE_URGENCY = "sovereign_urgency"
TABLE_ARCHIVE = "sovereign_archive"

# Characters left unescaped, matching the JavaScript encodeURIComponent set
# (alphanumerics and "-_.~" are always safe for quote()).
_ROW_KEY_SAFE_CHARS = "!*'()"


def normalize_row_key(raw: str) -> str:
    """Normalize a sender identifier for use as a registry key.

    Percent-encodes every character outside the unreserved set, then replaces
    each ``%`` with ``$`` so encoded keys never contain ``/``, ``\\``, ``#``,
    ``?`` or a literal percent sign.

    >>> normalize_row_key("user123")
    'user123'
    >>> normalize_row_key("a/b#c")
    'a$2Fb$23c'
    """
    return quote(raw, safe=_ROW_KEY_SAFE_CHARS).replace("%", "$")


class ContactRegistry(Protocol):
    """Protocol for urgency registry backends."""

    async def get_contact(self, sender_id: str) -> ContactRecord | None:
        """Look up a contact by raw sender identifier.

        Returns:
            The contact record, or ``None`` if the sender is not registered.
        """
        ...

    async def list_contacts(self) -> list[ContactRecord]:
        """Return every contact in registry enumeration order."""
        ...

    async def list_priority_contacts(self) -> list[ContactRecord]:
        """Return only contacts flagged as priority."""
        ...

    async def upsert_contact(self, record: ContactRecord) -> None:
        """Insert or merge a contact.

        Optional fields left as ``None`` keep their stored values.
        """
        ...

    async def touch_contact_last_message(self, sender_id: str) -> None:
        """Set ``last_message_at`` to now.

        Must not raise when the contact does not exist.
        """
        ...

    async def find_silent_contacts(self, silent_hours: int) -> list[ContactRecord]:
        """Return contacts never messaged or silent for longer than *silent_hours*."""
        ...


class ArchiveStore(Protocol):
    """Protocol for the system-noise archive."""

    async def archive_noise(self, entry: ArchivedNoiseEntry) -> None:
        """Write *entry*, replacing any existing entry with the same row key."""
        ...


class SovereignStore(ContactRegistry, ArchiveStore, Protocol):
    """A backend serving both the urgency registry and the archive."""
