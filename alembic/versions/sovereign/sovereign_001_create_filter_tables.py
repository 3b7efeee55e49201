"""create sovereign_urgency and sovereign_archive tables

Revision ID: sovereign_001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

from __future__ import annotations

from alembic import op

# revision identifiers, used by Alembic.
revision = "sovereign_001"
down_revision = None
branch_labels = ("sovereign",)
depends_on = None


def upgrade() -> None:
    # Urgency registry: one row per known sender, keyed by normalized id
    op.execute("""
        CREATE TABLE IF NOT EXISTS sovereign_urgency (
            partition_key TEXT NOT NULL DEFAULT 'contacts',
            row_key TEXT NOT NULL,
            display_name TEXT NOT NULL,
            is_priority BOOLEAN NOT NULL DEFAULT false,
            last_message_at TIMESTAMPTZ,
            last_replied_at TIMESTAMPTZ,
            notes TEXT,
            PRIMARY KEY (partition_key, row_key)
        )
    """)

    # Silent archive: write-once, partitioned by receipt date for day scans
    op.execute("""
        CREATE TABLE IF NOT EXISTS sovereign_archive (
            row_key TEXT PRIMARY KEY,
            partition_key TEXT NOT NULL,
            provider TEXT NOT NULL,
            sender_id TEXT NOT NULL,
            sender_name TEXT,
            body TEXT NOT NULL DEFAULT '',
            received_at TIMESTAMPTZ NOT NULL,
            session_key TEXT
        )
    """)

    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_sovereign_archive_partition
        ON sovereign_archive (partition_key, received_at)
    """)

    # Nudge scans filter on last_message_at
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_sovereign_urgency_last_message
        ON sovereign_urgency (last_message_at)
    """)


def downgrade() -> None:
    op.execute("DROP INDEX IF EXISTS idx_sovereign_urgency_last_message")
    op.execute("DROP INDEX IF EXISTS idx_sovereign_archive_partition")
    op.execute("DROP TABLE IF EXISTS sovereign_archive")
    op.execute("DROP TABLE IF EXISTS sovereign_urgency")
