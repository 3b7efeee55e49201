"""Sender classification against the urgency registry."""

from __future__ import annotations

import logging

from sovereign.models import Classification, ClassificationResult, InboundMessage
from sovereign.storage.base import ContactRegistry

logger = logging.getLogger(__name__)


async def classify_sender(
    message: InboundMessage,
    registry: ContactRegistry,
) -> ClassificationResult:
    """Classify an inbound message sender.

    Resolution order:
      1. No sender identity at all → system-noise (no lookup).
      2. Sender in the urgency registry → priority-human or known-human,
         depending on the contact's priority flag.
      3. Not registered → system-noise.

    Registry faults propagate; only a clean miss resolves to noise.
    """
    sender_id = message.effective_sender_id

    if not sender_id:
        return ClassificationResult(classification=Classification.SYSTEM_NOISE)

    contact = await registry.get_contact(sender_id)

    if contact is None:
        logger.debug("Sender %s not in urgency registry; classifying as noise", sender_id)
        return ClassificationResult(classification=Classification.SYSTEM_NOISE)

    classification = (
        Classification.PRIORITY_HUMAN if contact.is_priority else Classification.KNOWN_HUMAN
    )
    return ClassificationResult(classification=classification, contact=contact)
