"""Shared test fixtures for the sovereign filter test suite."""

from __future__ import annotations

import uuid
from collections.abc import Iterator
from dataclasses import replace
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import pytest

from sovereign.batch_queue import MessageBatchQueue
from sovereign.models import ArchivedNoiseEntry, ContactRecord
from sovereign.storage.base import normalize_row_key

if TYPE_CHECKING:
    from testcontainers.postgres import PostgresContainer


class FakeSovereignStore:
    """An in-memory registry/archive that records every call.

    Set ``lookup_error``, ``touch_error`` or ``archive_error`` to make the
    corresponding operation raise.
    """

    def __init__(self, contacts: list[ContactRecord] | None = None) -> None:
        self.contacts: dict[str, ContactRecord] = {}
        for record in contacts or []:
            key = normalize_row_key(record.row_key)
            self.contacts[key] = replace(record, row_key=key)
        self.archived: list[ArchivedNoiseEntry] = []
        self.lookups: list[str] = []
        self.touched: list[str] = []
        self.lookup_error: Exception | None = None
        self.touch_error: Exception | None = None
        self.archive_error: Exception | None = None

    async def get_contact(self, sender_id: str) -> ContactRecord | None:
        self.lookups.append(sender_id)
        if self.lookup_error is not None:
            raise self.lookup_error
        return self.contacts.get(normalize_row_key(sender_id))

    async def list_contacts(self) -> list[ContactRecord]:
        return list(self.contacts.values())

    async def list_priority_contacts(self) -> list[ContactRecord]:
        return [c for c in self.contacts.values() if c.is_priority]

    async def upsert_contact(self, record: ContactRecord) -> None:
        key = normalize_row_key(record.row_key)
        self.contacts[key] = replace(record, row_key=key)

    async def touch_contact_last_message(self, sender_id: str) -> None:
        self.touched.append(sender_id)
        if self.touch_error is not None:
            raise self.touch_error
        key = normalize_row_key(sender_id)
        if key in self.contacts:
            self.contacts[key].last_message_at = datetime.now(UTC)

    async def find_silent_contacts(self, silent_hours: int) -> list[ContactRecord]:
        cutoff = datetime.now(UTC) - timedelta(hours=silent_hours)
        return [
            c
            for c in self.contacts.values()
            if c.last_message_at is None or c.last_message_at < cutoff
        ]

    async def archive_noise(self, entry: ArchivedNoiseEntry) -> None:
        if self.archive_error is not None:
            raise self.archive_error
        self.archived.append(entry)


@pytest.fixture
def priority_contact() -> ContactRecord:
    return ContactRecord(row_key="+15550001", display_name="Alice", is_priority=True)


@pytest.fixture
def known_contact() -> ContactRecord:
    return ContactRecord(row_key="bob@example.com", display_name="Bob", is_priority=False)


@pytest.fixture
def fake_store(priority_contact: ContactRecord, known_contact: ContactRecord) -> FakeSovereignStore:
    return FakeSovereignStore([priority_contact, known_contact])


@pytest.fixture
def batch_queue() -> MessageBatchQueue:
    return MessageBatchQueue()


@pytest.fixture
def make_store() -> type[FakeSovereignStore]:
    """Return the in-memory store class for tests that build their own contacts."""
    return FakeSovereignStore


# ---------------------------------------------------------------------------
# PostgreSQL testcontainer (integration tests only)
# ---------------------------------------------------------------------------


def _unique_test_db_name() -> str:
    return f"test_{uuid.uuid4().hex[:12]}"


@pytest.fixture(scope="session")
def postgres_container() -> Iterator[PostgresContainer]:
    """Shared Postgres testcontainer for all DB-backed tests in this session.

    Each ``migrated_database_url`` usage provisions a fresh database with a
    random name, so rows never leak between tests.
    """
    from testcontainers.postgres import PostgresContainer

    with PostgresContainer("postgres:16") as pg:
        yield pg


@pytest.fixture
async def migrated_database_url(postgres_container: PostgresContainer) -> str:
    """Create a fresh database, run the sovereign migrations, and return its URL."""
    import asyncpg

    from sovereign.migrations import run_migrations

    host = postgres_container.get_container_host_ip()
    port = int(postgres_container.get_exposed_port(5432))
    user = postgres_container.username
    password = postgres_container.password
    db_name = _unique_test_db_name()

    conn = await asyncpg.connect(
        host=host, port=port, user=user, password=password, database="postgres"
    )
    try:
        await conn.execute(f'CREATE DATABASE "{db_name}"')
    finally:
        await conn.close()

    url = f"postgresql://{user}:{password}@{host}:{port}/{db_name}"
    await run_migrations(url)
    return url
