"""Tests for sovereign-aware inbound dispatch."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

import sovereign.dispatch as dispatch_mod
from sovereign.config import ConfigError, FilterConfig
from sovereign.dispatch import default_batch_queue, dispatch_with_sovereign_filter
from sovereign.filter import schedule_touch, wait_for_pending_touches
from sovereign.models import Classification, FilterAction, InboundMessage

pytestmark = pytest.mark.unit

ENABLED = FilterConfig(enabled=True)


@pytest.fixture
def dispatch_fn() -> AsyncMock:
    return AsyncMock(return_value={"queued_final": True})


@pytest.fixture
def dispatcher() -> MagicMock:
    return MagicMock()


class TestDisabledFilter:
    async def test_passes_everything_through(self, dispatch_fn, dispatcher, fake_store):
        msg = InboundMessage(sender_id="+18005550000", body="promo")

        result = await dispatch_with_sovereign_filter(
            msg,
            dispatch_fn=dispatch_fn,
            dispatcher=dispatcher,
            config=FilterConfig(enabled=False),
            store=fake_store,
        )

        assert result.intercepted is False
        assert result.outcome.action == FilterAction.DELIVER_RAW
        assert result.outcome.classification == Classification.PRIORITY_HUMAN
        assert result.dispatch_result == {"queued_final": True}
        dispatch_fn.assert_awaited_once_with(msg)
        dispatcher.mark_complete.assert_not_called()
        assert fake_store.lookups == []
        assert fake_store.archived == []

    async def test_default_config_is_disabled(self, dispatch_fn, dispatcher, monkeypatch):
        monkeypatch.delenv("SOVEREIGN_DATABASE_URL", raising=False)
        monkeypatch.delenv("DATABASE_URL", raising=False)

        result = await dispatch_with_sovereign_filter(
            InboundMessage(sender_id="x"), dispatch_fn=dispatch_fn, dispatcher=dispatcher
        )

        assert result.intercepted is False
        dispatch_fn.assert_awaited_once()


class TestEnabledFilter:
    async def test_priority_goes_to_pipeline(
        self, dispatch_fn, dispatcher, fake_store, batch_queue
    ):
        msg = InboundMessage(sender_id="+15550001", body="Are you free?")

        result = await dispatch_with_sovereign_filter(
            msg,
            dispatch_fn=dispatch_fn,
            dispatcher=dispatcher,
            config=ENABLED,
            store=fake_store,
            batch_queue=batch_queue,
        )
        await wait_for_pending_touches()

        assert result.intercepted is False
        assert result.outcome.action == FilterAction.DELIVER_RAW
        dispatch_fn.assert_awaited_once_with(msg)
        dispatcher.mark_complete.assert_not_called()

    async def test_known_is_batched_and_marked_complete(
        self, dispatch_fn, dispatcher, fake_store, batch_queue
    ):
        result = await dispatch_with_sovereign_filter(
            InboundMessage(sender_id="bob@example.com", body="see you friday"),
            dispatch_fn=dispatch_fn,
            dispatcher=dispatcher,
            config=ENABLED,
            store=fake_store,
            batch_queue=batch_queue,
        )
        await wait_for_pending_touches()

        assert result.intercepted is True
        assert result.outcome.action == FilterAction.BATCH
        assert result.dispatch_result is None
        dispatch_fn.assert_not_awaited()
        dispatcher.mark_complete.assert_called_once_with()
        assert batch_queue.size == 1

    async def test_noise_is_archived_and_marked_complete(
        self, dispatch_fn, dispatcher, fake_store, batch_queue
    ):
        result = await dispatch_with_sovereign_filter(
            InboundMessage(sender_id="noreply@shop.example", body="SALE"),
            dispatch_fn=dispatch_fn,
            dispatcher=dispatcher,
            config=ENABLED,
            store=fake_store,
            batch_queue=batch_queue,
        )

        assert result.intercepted is True
        assert result.outcome.action == FilterAction.ARCHIVE
        dispatch_fn.assert_not_awaited()
        dispatcher.mark_complete.assert_called_once_with()
        assert len(fake_store.archived) == 1
        assert batch_queue.size == 0

    async def test_archive_fault_propagates_without_dispatch(
        self, dispatch_fn, dispatcher, fake_store, batch_queue
    ):
        fake_store.archive_error = RuntimeError("archive down")

        with pytest.raises(RuntimeError, match="archive down"):
            await dispatch_with_sovereign_filter(
                InboundMessage(sender_id="noise"),
                dispatch_fn=dispatch_fn,
                dispatcher=dispatcher,
                config=ENABLED,
                store=fake_store,
                batch_queue=batch_queue,
            )
        dispatch_fn.assert_not_awaited()
        dispatcher.mark_complete.assert_not_called()

    async def test_default_queue_is_shared_across_calls(self, dispatch_fn, dispatcher, fake_store):
        queue = default_batch_queue()
        queue.drain()
        msg = InboundMessage(sender_id="bob@example.com", body="one")

        await dispatch_with_sovereign_filter(
            msg, dispatch_fn=dispatch_fn, dispatcher=dispatcher, config=ENABLED, store=fake_store
        )
        await dispatch_with_sovereign_filter(
            msg, dispatch_fn=dispatch_fn, dispatcher=dispatcher, config=ENABLED, store=fake_store
        )
        await wait_for_pending_touches()

        assert [m.body for m in queue.drain()] == ["one", "one"]


class TestPerCallStore:
    async def test_missing_database_url_raises(self, dispatch_fn, dispatcher, monkeypatch):
        monkeypatch.delenv("SOVEREIGN_DATABASE_URL", raising=False)
        monkeypatch.delenv("DATABASE_URL", raising=False)

        with pytest.raises(ConfigError):
            await dispatch_with_sovereign_filter(
                InboundMessage(sender_id="x"),
                dispatch_fn=dispatch_fn,
                dispatcher=dispatcher,
                config=ENABLED,
            )
        dispatch_fn.assert_not_awaited()

    async def test_pool_closed_after_touch(
        self, dispatch_fn, dispatcher, fake_store, batch_queue
    ):
        db = MagicMock()
        db.connect = AsyncMock(return_value=MagicMock())
        db.close = AsyncMock()

        with (
            patch.object(dispatch_mod.Database, "from_config", return_value=db),
            patch.object(dispatch_mod, "PostgresSovereignStore", return_value=fake_store),
        ):
            result = await dispatch_with_sovereign_filter(
                InboundMessage(sender_id="+15550001", body="hi"),
                dispatch_fn=dispatch_fn,
                dispatcher=dispatcher,
                config=ENABLED,
                batch_queue=batch_queue,
            )
            await asyncio.gather(*list(dispatch_mod._closing))

        assert result.outcome.action == FilterAction.DELIVER_RAW
        assert fake_store.touched == ["+15550001"]
        db.close.assert_awaited_once()

    async def test_pool_close_ignores_unrelated_touches(
        self, dispatch_fn, dispatcher, fake_store, batch_queue
    ):
        release = asyncio.Event()
        other_registry = MagicMock()

        async def slow_touch(_sender_id: str) -> None:
            await release.wait()

        other_registry.touch_contact_last_message = slow_touch
        unrelated = schedule_touch(other_registry, "carol@example.com")

        db = MagicMock()
        db.connect = AsyncMock(return_value=MagicMock())
        db.close = AsyncMock()

        with (
            patch.object(dispatch_mod.Database, "from_config", return_value=db),
            patch.object(dispatch_mod, "PostgresSovereignStore", return_value=fake_store),
        ):
            await dispatch_with_sovereign_filter(
                InboundMessage(sender_id="+15550001", body="hi"),
                dispatch_fn=dispatch_fn,
                dispatcher=dispatcher,
                config=ENABLED,
                batch_queue=batch_queue,
            )
            await asyncio.wait_for(asyncio.gather(*list(dispatch_mod._closing)), timeout=1)

        db.close.assert_awaited_once()
        assert not unrelated.done()

        release.set()
        await wait_for_pending_touches()
        assert unrelated.done()
