"""Tests for src/admin/events.py: subscriptions, dispatch isolation, queue lifecycle, deferred events."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from src.admin.events import (
    PENDING_EVENTS_KEY,
    EventBus,
    defer_until_commit,
    discard_deferred,
    emit_safely,
    publish_deferred,
)
from src.db.engine import get_session
from src.schemas.events import EventType, SystemEvent


def _event(event_type: EventType = EventType.REQUEST_SUBMITTED) -> SystemEvent:
    return SystemEvent(event_type=event_type)


class TestDispatch:
    @pytest.mark.asyncio()
    async def test_global_and_typed_handlers(self):
        bus = EventBus()
        everything = AsyncMock()
        failures = AsyncMock()
        bus.subscribe(everything)
        bus.subscribe(failures, [EventType.REQUEST_FAILED])

        await bus.dispatch(_event(EventType.REQUEST_SUBMITTED))
        await bus.dispatch(_event(EventType.REQUEST_FAILED))

        assert everything.await_count == 2
        failures.assert_awaited_once()

    @pytest.mark.asyncio()
    async def test_failing_handler_isolated(self):
        bus = EventBus()
        broken = AsyncMock(side_effect=RuntimeError("sink down"))
        healthy = AsyncMock()
        bus.subscribe(broken)
        bus.subscribe(healthy)

        # Should not raise
        await bus.dispatch(_event())

        healthy.assert_awaited_once()

    def test_unsubscribe(self):
        bus = EventBus()
        handler = AsyncMock()
        bus.subscribe(handler)
        bus.subscribe(handler, [EventType.REQUEST_FAILED])

        bus.unsubscribe(handler)

        assert bus.subscriber_count == 0


class TestQueue:
    @pytest.mark.asyncio()
    async def test_emit_then_stop_drains(self):
        bus = EventBus()
        handler = AsyncMock()
        bus.subscribe(handler)

        await bus.emit(_event())
        await bus.emit(_event(EventType.REQUEST_CANCELLED))
        await bus.stop()

        assert [c.args[0].event_type for c in handler.call_args_list] == [
            EventType.REQUEST_SUBMITTED,
            EventType.REQUEST_CANCELLED,
        ]

    @pytest.mark.asyncio()
    async def test_full_queue_drops(self):
        bus = EventBus(max_size=1)
        handler = AsyncMock()
        bus.subscribe(handler)

        # the worker has not run yet, so the second event finds the queue full
        await bus.emit(_event())
        await bus.emit(_event(EventType.REQUEST_CANCELLED))
        await bus.stop()

        assert [c.args[0].event_type for c in handler.call_args_list] == [EventType.REQUEST_SUBMITTED]


class TestEmitSafely:
    @pytest.mark.asyncio()
    async def test_never_raises(self):
        with patch("src.admin.events.bus") as mock_bus:
            mock_bus.emit = AsyncMock(side_effect=RuntimeError("no loop"))
            # Should not raise
            await emit_safely(_event())


class TestDeferredEvents:
    def _session(self) -> MagicMock:
        session = MagicMock()
        session.info = {}
        return session

    @pytest.mark.asyncio()
    async def test_published_in_order(self):
        session = self._session()
        first, second = _event(), _event(EventType.REQUEST_CANCELLED)
        defer_until_commit(session, first)
        defer_until_commit(session, second)

        with patch("src.admin.events.emit_safely", new_callable=AsyncMock) as mock_emit:
            published = await publish_deferred(session)

        assert published == 2
        assert [c.args[0] for c in mock_emit.call_args_list] == [first, second]
        assert PENDING_EVENTS_KEY not in session.info

    @pytest.mark.asyncio()
    async def test_published_once(self):
        session = self._session()
        defer_until_commit(session, _event())

        with patch("src.admin.events.emit_safely", new_callable=AsyncMock) as mock_emit:
            await publish_deferred(session)
            assert await publish_deferred(session) == 0

        mock_emit.assert_awaited_once()

    @pytest.mark.asyncio()
    async def test_discarded_on_rollback(self):
        session = self._session()
        defer_until_commit(session, _event())

        assert discard_deferred(session) == 1
        with patch("src.admin.events.emit_safely", new_callable=AsyncMock) as mock_emit:
            assert await publish_deferred(session) == 0
        mock_emit.assert_not_awaited()


class TestSessionDependency:
    def _factory(self, mock_factory: MagicMock) -> AsyncMock:
        session = AsyncMock()
        session.info = {}
        mock_factory.return_value.__aenter__ = AsyncMock(return_value=session)
        mock_factory.return_value.__aexit__ = AsyncMock(return_value=False)
        return session

    @pytest.mark.asyncio()
    async def test_events_follow_commit(self):
        event = _event()
        with (
            patch("src.db.engine.async_session_factory") as mock_factory,
            patch("src.admin.events.emit_safely", new_callable=AsyncMock) as mock_emit,
        ):
            session = self._factory(mock_factory)
            gen = get_session()
            assert await gen.__anext__() is session
            defer_until_commit(session, event)
            mock_emit.assert_not_awaited()

            with pytest.raises(StopAsyncIteration):
                await gen.__anext__()

        session.commit.assert_awaited_once()
        mock_emit.assert_awaited_once_with(event)

    @pytest.mark.asyncio()
    async def test_rollback_drops_events(self):
        with (
            patch("src.db.engine.async_session_factory") as mock_factory,
            patch("src.admin.events.emit_safely", new_callable=AsyncMock) as mock_emit,
        ):
            session = self._factory(mock_factory)
            gen = get_session()
            await gen.__anext__()
            defer_until_commit(session, _event())

            with pytest.raises(RuntimeError, match="handler failed"):
                await gen.athrow(RuntimeError("handler failed"))

        session.commit.assert_not_awaited()
        session.rollback.assert_awaited_once()
        mock_emit.assert_not_awaited()
        assert PENDING_EVENTS_KEY not in session.info

    @pytest.mark.asyncio()
    async def test_failed_commit_drops_events(self):
        with (
            patch("src.db.engine.async_session_factory") as mock_factory,
            patch("src.admin.events.emit_safely", new_callable=AsyncMock) as mock_emit,
        ):
            session = self._factory(mock_factory)
            session.commit.side_effect = RuntimeError("serialization failure")
            gen = get_session()
            await gen.__anext__()
            defer_until_commit(session, _event())

            with pytest.raises(RuntimeError, match="serialization failure"):
                await gen.__anext__()

        session.rollback.assert_awaited_once()
        mock_emit.assert_not_awaited()
