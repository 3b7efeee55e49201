"""Sovereign filter — dual-track routing for inbound messages.

Priority humans are delivered raw and immediately, known humans are held for
scheduled batch delivery, and everyone else is archived silently.
"""

from sovereign.batch_queue import MessageBatchQueue
from sovereign.classifier import classify_sender
from sovereign.config import DEFAULT_FILTER_CONFIG, ConfigError, FilterConfig, load_config
from sovereign.dispatch import SovereignDispatchResult, dispatch_with_sovereign_filter
from sovereign.filter import apply_sovereign_filter, archive_system_noise
from sovereign.models import (
    ArchivedNoiseEntry,
    BatchedMessage,
    Classification,
    ClassificationResult,
    ContactRecord,
    FilterAction,
    InboundMessage,
    RelationshipNudge,
    SovereignFilterOutcome,
)
from sovereign.nudges import generate_relationship_nudges
from sovereign.storage import (
    TABLE_ARCHIVE,
    TABLE_URGENCY,
    ArchiveStore,
    ContactRegistry,
    PostgresSovereignStore,
    SovereignStore,
    normalize_row_key,
)

__all__ = [
    "DEFAULT_FILTER_CONFIG",
    "TABLE_ARCHIVE",
    "TABLE_URGENCY",
    "ArchiveStore",
    "ArchivedNoiseEntry",
    "BatchedMessage",
    "Classification",
    "ClassificationResult",
    "ConfigError",
    "ContactRecord",
    "ContactRegistry",
    "FilterAction",
    "FilterConfig",
    "InboundMessage",
    "MessageBatchQueue",
    "PostgresSovereignStore",
    "RelationshipNudge",
    "SovereignDispatchResult",
    "SovereignFilterOutcome",
    "SovereignStore",
    "apply_sovereign_filter",
    "archive_system_noise",
    "classify_sender",
    "dispatch_with_sovereign_filter",
    "generate_relationship_nudges",
    "load_config",
    "normalize_row_key",
]
