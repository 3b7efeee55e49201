"""Command-line interface for managing the urgency registry and storage."""

from __future__ import annotations

import asyncio
import logging
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import UTC, datetime
from pathlib import Path
from typing import NoReturn

import click
from croniter import croniter

from sovereign.config import (
    CONFIG_FILENAME,
    ConfigError,
    FilterConfig,
    load_config,
    resolve_database_url,
)
from sovereign.core.logging import configure_logging
from sovereign.core.metrics import init_metrics
from sovereign.db import Database
from sovereign.migrations import run_migrations
from sovereign.models import ContactRecord, RelationshipNudge
from sovereign.nudges import generate_relationship_nudges
from sovereign.storage.postgres import PostgresSovereignStore

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = Path(".")


def _load(config_dir: Path) -> FilterConfig:
    """Load sovereign.toml from *config_dir*, or defaults when absent."""
    if not (config_dir / CONFIG_FILENAME).exists():
        return FilterConfig()
    return load_config(config_dir)


@asynccontextmanager
async def _open_store(config: FilterConfig) -> AsyncIterator[PostgresSovereignStore]:
    """Open a PostgreSQL store for the duration of one command."""
    db = Database.from_config(config)
    pool = await db.connect()
    try:
        yield PostgresSovereignStore(pool)
    finally:
        await db.close()


def _fail(message: str) -> NoReturn:
    click.echo(f"Error: {message}", err=True)
    sys.exit(1)


@click.group()
@click.version_option(version="0.1.0")
@click.option(
    "--config",
    "config_dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=DEFAULT_CONFIG_DIR,
    help=f"Directory containing {CONFIG_FILENAME}",
)
@click.pass_context
def cli(ctx: click.Context, config_dir: Path) -> None:
    """Sovereign filter — priority routing for inbound messages."""
    try:
        config = _load(config_dir)
    except ConfigError as exc:
        _fail(str(exc))
    configure_logging(
        level=config.logging.level,
        fmt=config.logging.format,
        log_root=Path(config.logging.log_root) if config.logging.log_root else None,
        service_name="sovereign-cli",
    )
    init_metrics("sovereign-cli")
    ctx.obj = config


@cli.command("check-config")
@click.pass_obj
def check_config(config: FilterConfig) -> None:
    """Validate and print the effective configuration."""
    next_batch = croniter(config.batch_schedule, datetime.now(UTC)).get_next(datetime)
    database = "configured" if config.database_url else "from environment"
    click.echo(f"enabled:                  {config.enabled}")
    click.echo(f"batch_schedule:           {config.batch_schedule}")
    click.echo(f"next batch delivery:      {next_batch.isoformat()}")
    click.echo(f"nudge_after_silent_hours: {config.nudge_after_silent_hours}")
    click.echo(f"database_url:             {database}")


@cli.command()
@click.pass_obj
def migrate(config: FilterConfig) -> None:
    """Create or upgrade the registry and archive tables."""
    try:
        db_url = resolve_database_url(config)
    except ConfigError as exc:
        _fail(str(exc))
    asyncio.run(run_migrations(db_url))
    click.echo("Migrations applied.")


@cli.group()
def contacts() -> None:
    """Manage the urgency registry."""


@contacts.command("list")
@click.option("--priority", "priority_only", is_flag=True, help="Only show priority contacts")
@click.pass_obj
def contacts_list(config: FilterConfig, priority_only: bool) -> None:
    """List registered contacts."""

    async def _run() -> list[ContactRecord]:
        async with _open_store(config) as store:
            if priority_only:
                return await store.list_priority_contacts()
            return await store.list_contacts()

    try:
        records = asyncio.run(_run())
    except ConfigError as exc:
        _fail(str(exc))

    if not records:
        click.echo("No contacts registered.")
        return

    click.echo(f"{'ID':<30} {'Name':<24} {'Priority':<9} {'Last message'}")
    click.echo("-" * 80)
    for record in records:
        last = record.last_message_at.isoformat() if record.last_message_at else "never"
        flag = "yes" if record.is_priority else "no"
        click.echo(f"{record.row_key:<30} {record.display_name:<24} {flag:<9} {last}")


@contacts.command("add")
@click.argument("sender_id")
@click.argument("name")
@click.option("--priority/--no-priority", default=False, help="Deliver immediately")
@click.option("--notes", default=None, help="Free-text relationship notes")
@click.pass_obj
def contacts_add(
    config: FilterConfig,
    sender_id: str,
    name: str,
    priority: bool,
    notes: str | None,
) -> None:
    """Register or update a contact."""
    record = ContactRecord(row_key=sender_id, display_name=name, is_priority=priority, notes=notes)

    async def _run() -> None:
        async with _open_store(config) as store:
            await store.upsert_contact(record)

    try:
        asyncio.run(_run())
    except ConfigError as exc:
        _fail(str(exc))
    track = "priority" if priority else "batched"
    click.echo(f"Saved {name} ({sender_id}) on the {track} track.")


@cli.command()
@click.option(
    "--hours", type=click.IntRange(min=1), default=None, help="Override silence threshold"
)
@click.pass_obj
def nudges(config: FilterConfig, hours: int | None) -> None:
    """Print reconnect suggestions for contacts gone silent."""
    if hours is not None:
        config = replace(config, nudge_after_silent_hours=hours)

    async def _run() -> list[RelationshipNudge]:
        async with _open_store(config) as store:
            return await generate_relationship_nudges(store, config)

    try:
        results = asyncio.run(_run())
    except ConfigError as exc:
        _fail(str(exc))

    if not results:
        click.echo("Nobody has gone quiet.")
        return
    for nudge in results:
        click.echo(f"- {nudge.contact_name} ({nudge.silent_hours}h): {nudge.suggestion}")


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
