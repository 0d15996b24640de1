"""Tests for admin notifications and the audit subscriber.

Covers:
- Alert engine rule evaluation (Korean templates, won formatting)
- Sink failures never propagate
- Slack webhook sink (mocked httpx)
- Audit log subscriber
"""

from __future__ import annotations

import uuid
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from src.admin.alerts import AlertEngine
from src.admin.sinks import SlackWebhookSink
from src.schemas.events import EventType, SystemEvent
from src.security.audit import audit_on_event, to_audit_row


def _make_event(**kwargs) -> SystemEvent:
    defaults = {
        "event_type": EventType.REQUEST_SUBMITTED,
        "letter_id": uuid.uuid4(),
        "request_id": uuid.uuid4(),
        "data": {},
    }
    defaults.update(kwargs)
    return SystemEvent(**defaults)


def _submitted_data() -> dict:
    return {
        "recipient_name": "홍***",
        "total_cost": 5500,
        "requested_at": "2026-03-01T09:00:00+00:00",
        "status": "pending",
        "letter_title": "봄날의 편지",
    }


# ── Alert engine ─────────────────────────────────────────────────────


class TestAlertEngine:
    """Test alert rule evaluation and message delivery."""

    @pytest.mark.asyncio()
    async def test_submission_triggers_alert(self):
        engine = AlertEngine()
        send_fn = AsyncMock()
        engine.set_send_fn(send_fn)

        event = _make_event(data=_submitted_data())

        with patch("src.admin.alerts.settings") as mock_settings:
            mock_settings.notifications.admin_channel = "letters"
            await engine.on_event(event)

        send_fn.assert_awaited_once()
        channel, text = send_fn.call_args.args
        assert channel == "letters"
        assert "새 실물 편지 신청" in text
        assert "5,500원" in text
        assert "홍***" in text
        assert str(event.letter_id) in text

    @pytest.mark.asyncio()
    async def test_batch_triggers_alert(self):
        engine = AlertEngine()
        send_fn = AsyncMock()
        engine.set_send_fn(send_fn)

        event = _make_event(
            event_type=EventType.REQUEST_BATCH_SUBMITTED,
            request_id=None,
            data={
                "batch_id": str(uuid.uuid4()),
                "recipient_count": 3,
                "total_cost": 15500,
                "requested_at": "2026-03-01T09:00:00+00:00",
                "letter_title": "봄날의 편지",
            },
        )

        with patch("src.admin.alerts.settings") as mock_settings:
            mock_settings.notifications.admin_channel = "letters"
            await engine.on_event(event)

        text = send_fn.call_args.args[1]
        assert "3명" in text
        assert "15,500원" in text

    @pytest.mark.asyncio()
    async def test_missing_keys_still_sent(self):
        engine = AlertEngine()
        send_fn = AsyncMock()
        engine.set_send_fn(send_fn)

        with patch("src.admin.alerts.settings") as mock_settings:
            mock_settings.notifications.admin_channel = "letters"
            await engine.on_event(_make_event(data={"total_cost": 5000}))

        send_fn.assert_awaited_once()
        assert "일부 데이터 누락" in send_fn.call_args.args[1]

    @pytest.mark.asyncio()
    async def test_failed_delivery_alert(self):
        engine = AlertEngine()
        send_fn = AsyncMock()
        engine.set_send_fn(send_fn)

        event = _make_event(event_type=EventType.REQUEST_FAILED, data={"reason": "주소 불명"})

        with patch("src.admin.alerts.settings") as mock_settings:
            mock_settings.notifications.admin_channel = "letters"
            await engine.on_event(event)

        text = send_fn.call_args.args[1]
        assert "배송 실패" in text
        assert "주소 불명" in text

    @pytest.mark.asyncio()
    async def test_unrelated_event_type_no_alert(self):
        engine = AlertEngine()
        send_fn = AsyncMock()
        engine.set_send_fn(send_fn)

        with patch("src.admin.alerts.settings") as mock_settings:
            mock_settings.notifications.admin_channel = "letters"
            await engine.on_event(_make_event(event_type=EventType.REQUEST_APPROVED))

        send_fn.assert_not_awaited()

    @pytest.mark.asyncio()
    async def test_no_send_fn_does_nothing(self):
        engine = AlertEngine()
        # Should not raise
        await engine.on_event(_make_event(data=_submitted_data()))

    @pytest.mark.asyncio()
    async def test_sink_failure_swallowed(self):
        engine = AlertEngine()
        engine.set_send_fn(AsyncMock(side_effect=RuntimeError("sink down")))

        with patch("src.admin.alerts.settings") as mock_settings:
            mock_settings.notifications.admin_channel = "letters"
            # Should not raise
            await engine.on_event(_make_event(data=_submitted_data()))

    def test_watched_types_covers_rules(self):
        types = AlertEngine().watched_types
        assert EventType.REQUEST_SUBMITTED in types
        assert EventType.REQUEST_BATCH_SUBMITTED in types
        assert EventType.REQUEST_FAILED in types
        assert EventType.COUNTERS_RECONCILED in types
        assert EventType.SYSTEM_ERROR in types
        assert EventType.REQUEST_APPROVED not in types


# ── Slack sink ───────────────────────────────────────────────────────


def _mock_client(mock_cls: MagicMock, response: MagicMock | None = None, side_effect=None) -> AsyncMock:
    client = mock_cls.return_value.__aenter__.return_value
    client.post = AsyncMock(return_value=response or MagicMock(), side_effect=side_effect)
    return client


class TestSlackWebhookSink:
    @pytest.mark.asyncio()
    async def test_disabled_falls_back_to_log(self):
        sink = SlackWebhookSink(webhook_url="")
        assert sink.enabled is False

        with patch("src.admin.sinks.httpx.AsyncClient") as mock_cls:
            await sink("letters", "hello")

        mock_cls.assert_not_called()

    @pytest.mark.asyncio()
    async def test_posts_message(self):
        sink = SlackWebhookSink(webhook_url="https://hooks.example.test/abc", timeout=2.0)

        with patch("src.admin.sinks.httpx.AsyncClient") as mock_cls:
            client = _mock_client(mock_cls)
            await sink("letters", "새 신청")

        client.post.assert_awaited_once_with(
            "https://hooks.example.test/abc", json={"text": "새 신청", "channel": "letters"}
        )

    @pytest.mark.asyncio()
    async def test_http_error_not_raised(self):
        sink = SlackWebhookSink(webhook_url="https://hooks.example.test/abc")
        request = httpx.Request("POST", "https://hooks.example.test/abc")
        response = MagicMock()
        response.raise_for_status.side_effect = httpx.HTTPStatusError(
            "server error", request=request, response=httpx.Response(500, request=request)
        )

        with patch("src.admin.sinks.httpx.AsyncClient") as mock_cls:
            _mock_client(mock_cls, response=response)
            # Should not raise
            await sink("letters", "hello")

    @pytest.mark.asyncio()
    async def test_timeout_not_raised(self):
        sink = SlackWebhookSink(webhook_url="https://hooks.example.test/abc")

        with patch("src.admin.sinks.httpx.AsyncClient") as mock_cls:
            _mock_client(mock_cls, side_effect=httpx.ConnectTimeout("slow"))
            # Should not raise
            await sink("letters", "hello")


# ── Audit subscriber ────────────────────────────────────────────────


class TestAuditSubscriber:
    """Test the audit log event subscriber."""

    def test_row_carries_source_module(self):
        event = _make_event(
            event_type=EventType.REQUEST_APPROVED,
            actor_id="author-1",
            actor_role="author",
            data={"total_cost": 5000},
            source_module="workflow.engine",
        )

        row = to_audit_row(event)

        assert row.event_type == "request.approved"
        assert row.letter_id == event.letter_id
        assert row.request_id == event.request_id
        assert row.data == {"total_cost": 5000, "source_module": "workflow.engine"}

    @pytest.mark.asyncio()
    async def test_event_written_to_db(self):
        event = _make_event(
            event_type=EventType.REQUEST_CANCELLED,
            data={"from_status": "pending"},
            actor_id="anonymous",
            actor_role="requester",
        )

        with patch("src.security.audit.async_session_factory") as mock_factory:
            mock_session = MagicMock()
            mock_session.commit = AsyncMock()
            mock_factory.return_value.__aenter__ = AsyncMock(return_value=mock_session)
            mock_factory.return_value.__aexit__ = AsyncMock(return_value=False)

            await audit_on_event(event)

        mock_session.add.assert_called_once()
        added = mock_session.add.call_args.args[0]
        assert added.event_type == "request.cancelled"
        assert added.actor_id == "anonymous"
        assert added.data == {"from_status": "pending"}
        mock_session.commit.assert_awaited_once()

    @pytest.mark.asyncio()
    async def test_db_failure_logged_not_raised(self):
        event = _make_event(event_type=EventType.SYSTEM_ERROR)

        with patch("src.security.audit.async_session_factory") as mock_factory:
            mock_factory.return_value.__aenter__ = AsyncMock(
                side_effect=Exception("DB connection lost")
            )
            mock_factory.return_value.__aexit__ = AsyncMock(return_value=False)

            # Should not raise
            await audit_on_event(event)
