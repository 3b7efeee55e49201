"""Relationship maintenance nudges.

If a registered contact hasn't been heard from in
``FilterConfig.nudge_after_silent_hours``, produce a suggestion to reconnect.
Nudges are derived from the registry on every call and never stored.
"""

from __future__ import annotations

import logging
import math
from datetime import UTC, datetime

from sovereign.config import DEFAULT_FILTER_CONFIG, FilterConfig
from sovereign.models import ContactRecord, RelationshipNudge
from sovereign.storage.base import ContactRegistry

logger = logging.getLogger(__name__)

_SECONDS_PER_HOUR = 3600


async def generate_relationship_nudges(
    registry: ContactRegistry,
    config: FilterConfig = DEFAULT_FILTER_CONFIG,
) -> list[RelationshipNudge]:
    """Generate nudges for contacts that have gone silent.

    Order follows the registry's enumeration order.
    """
    threshold = config.nudge_after_silent_hours
    silent = await registry.find_silent_contacts(threshold)
    nudges = [build_nudge(contact, threshold) for contact in silent]
    logger.info("Generated %d relationship nudge(s) (threshold=%dh)", len(nudges), threshold)
    return nudges


def build_nudge(
    contact: ContactRecord,
    silent_hours: int,
    now: datetime | None = None,
) -> RelationshipNudge:
    """Build a nudge for one silent contact.

    Contacts never messaged report *silent_hours* verbatim, since their real
    silence is undefined.
    """
    if contact.last_message_at is not None:
        now = now or datetime.now(UTC)
        last = contact.last_message_at
        if last.tzinfo is None:
            last = last.replace(tzinfo=UTC)
        # Round half up.
        hours = math.floor((now - last).total_seconds() / _SECONDS_PER_HOUR + 0.5)
    else:
        hours = silent_hours

    if contact.notes:
        suggestion = f"Consider acknowledging {contact.display_name} for: {contact.notes}"
    else:
        suggestion = (
            f"It's been {hours} hours since you last connected with "
            f"{contact.display_name}. Consider reaching out."
        )

    return RelationshipNudge(
        contact_name=contact.display_name,
        contact_id=contact.row_key,
        silent_hours=hours,
        suggestion=suggestion,
    )
