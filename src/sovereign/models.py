"""Data model for the sovereign filter.

Closed enums for classification and action, the contact/archive records that
live in the backing store, the in-memory batched message, and the derived
relationship nudge.
"""

from __future__ import annotations

import enum
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any

PARTITION_CONTACTS = "contacts"


class Classification(enum.StrEnum):
    """How the filter classifies an inbound sender."""

    PRIORITY_HUMAN = "priority-human"
    KNOWN_HUMAN = "known-human"
    SYSTEM_NOISE = "system-noise"


class FilterAction(enum.StrEnum):
    """The routing action taken for one inbound message."""

    DELIVER_RAW = "deliver-raw"
    BATCH = "batch"
    ARCHIVE = "archive"


_ACTION_FOR_CLASSIFICATION: dict[Classification, FilterAction] = {
    Classification.PRIORITY_HUMAN: FilterAction.DELIVER_RAW,
    Classification.KNOWN_HUMAN: FilterAction.BATCH,
    Classification.SYSTEM_NOISE: FilterAction.ARCHIVE,
}


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _first_present(*values: str | None) -> str | None:
    """Return the first value that is not ``None`` (empty strings count)."""
    return next((v for v in values if v is not None), None)


@dataclass(frozen=True)
class InboundMessage:
    """Inbound message context handed to the filter by the dispatch layer.

    Attributes
    ----------
    sender_id:
        Primary sender identity on the originating channel.
    from_:
        Secondary identity field, used when ``sender_id`` is absent.
    surface:
        Fallback provider label when ``provider`` is absent.
    message_sid:
        Unique message id from the channel, used as the archive key.
    """

    body: str | None = None
    sender_id: str | None = None
    from_: str | None = None
    sender_name: str | None = None
    provider: str | None = None
    surface: str | None = None
    message_sid: str | None = None
    session_key: str | None = None
    originating_channel: str | None = None
    originating_to: str | None = None

    @property
    def sender_identity(self) -> str | None:
        """Primary identity, else secondary identity, else ``None``.

        Falls back only when a field is absent; an empty primary identity
        is kept as-is.
        """
        return _first_present(self.sender_id, self.from_)

    @property
    def effective_sender_id(self) -> str:
        """:attr:`sender_identity`, or ``""`` when both fields are absent."""
        identity = self.sender_identity
        return identity if identity is not None else ""

    @property
    def effective_provider(self) -> str | None:
        return _first_present(self.provider, self.surface)


@dataclass
class ContactRecord:
    """A single row in the urgency registry."""

    row_key: str
    display_name: str
    is_priority: bool = False
    last_message_at: datetime | None = None
    last_replied_at: datetime | None = None
    notes: str | None = None
    partition_key: str = PARTITION_CONTACTS

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["last_message_at"] = _isoformat(self.last_message_at)
        data["last_replied_at"] = _isoformat(self.last_replied_at)
        return data


@dataclass(frozen=True)
class ArchivedNoiseEntry:
    """A system-noise message archived silently.

    ``partition_key`` is the ``YYYY-MM-DD`` receipt date so archives can be
    scanned by day; ``row_key`` is the unique message id.
    """

    partition_key: str
    row_key: str
    provider: str
    sender_id: str
    body: str
    received_at: datetime
    sender_name: str | None = None
    session_key: str | None = None


@dataclass(frozen=True)
class BatchedMessage:
    """A message held for batched delivery on the known-human track.

    ``body`` is the raw inbound text and is never summarized or altered.
    """

    sender_id: str
    body: str
    received_at: datetime
    sender_name: str | None = None
    provider: str | None = None
    session_key: str | None = None
    originating_channel: str | None = None
    originating_to: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["received_at"] = self.received_at.isoformat()
        return data


@dataclass(frozen=True)
class RelationshipNudge:
    """A suggestion to reconnect with a contact who has gone silent."""

    contact_name: str
    contact_id: str
    silent_hours: int
    suggestion: str


@dataclass(frozen=True)
class ClassificationResult:
    """Result of classifying an inbound message sender."""

    classification: Classification
    contact: ContactRecord | None = None


@dataclass(frozen=True)
class SovereignFilterOutcome:
    """Outcome of sovereign-filter processing for one inbound message.

    Only the three (action, classification) pairs produced by
    :meth:`for_classification` are valid; construction rejects any other
    combination.
    """

    action: FilterAction
    classification: Classification

    def __post_init__(self) -> None:
        expected = _ACTION_FOR_CLASSIFICATION[self.classification]
        if self.action != expected:
            raise ValueError(
                f"Invalid outcome: action {str(self.action)!r} does not match "
                f"classification {str(self.classification)!r}"
            )

    @classmethod
    def for_classification(cls, classification: Classification) -> SovereignFilterOutcome:
        return cls(
            action=_ACTION_FOR_CLASSIFICATION[classification],
            classification=classification,
        )

    def to_dict(self) -> dict[str, str]:
        return {"action": str(self.action), "classification": str(self.classification)}
