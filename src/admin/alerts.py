"""Admin alerts for the physical-letter workflow.

Each watched event type maps to one Korean message template. The engine only
renders; delivery goes through the send function installed with
``set_send_fn`` (the Slack webhook sink in production, the log otherwise).
Alerting is best effort: nothing here raises back into the event worker.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from typing import Any

from src.admin.formatters import format_won
from src.config import settings
from src.schemas.events import EventType, SystemEvent

logger = logging.getLogger(__name__)

SendFn = Callable[[str, str], Coroutine[Any, Any, None]]

_LEVEL_ICONS = {"info": "\U0001f4ee", "warning": "⚠️", "critical": "\U0001f6a8"}


@dataclass(frozen=True)
class AlertTemplate:
    title: str
    lines: tuple[str, ...]
    level: str = "info"

    def render(self, ctx: dict[str, Any]) -> str:
        head = f"{_LEVEL_ICONS.get(self.level, '')} *{self.title}*".strip()
        try:
            body = [line.format(**ctx) for line in self.lines]
        except KeyError as exc:
            logger.warning("Alert '%s' is missing field %s", self.title, exc)
            return f"{head}\n(일부 데이터 누락: {sorted(ctx)})"
        return "\n".join([head, *body])


TEMPLATES: dict[EventType, AlertTemplate] = {
    EventType.REQUEST_SUBMITTED: AlertTemplate(
        title="새 실물 편지 신청",
        lines=(
            "편지: {letter_title} ({letter_id})",
            "받는 분: {recipient_name}",
            "비용: {total_cost_won}",
            "신청 시간: {requested_at}",
            "상태: {status}",
        ),
    ),
    EventType.REQUEST_BATCH_SUBMITTED: AlertTemplate(
        title="다중 실물 편지 신청",
        lines=(
            "편지: {letter_title} ({letter_id})",
            "수신자: {recipient_count}명",
            "총 비용: {total_cost_won}",
            "신청 시간: {requested_at}",
        ),
    ),
    EventType.REQUEST_FAILED: AlertTemplate(
        title="배송 실패",
        lines=("신청: {request_id}", "사유: {reason}"),
        level="warning",
    ),
    EventType.COUNTERS_RECONCILED: AlertTemplate(
        title="카운터 불일치 보정",
        lines=("편지: {letter_id}", "이전: {before}", "보정: {after}"),
        level="warning",
    ),
    EventType.SYSTEM_ERROR: AlertTemplate(
        title="시스템 오류",
        lines=("오류: {error}", "모듈: {source_module}"),
        level="critical",
    ),
}


def alert_context(event: SystemEvent) -> dict[str, Any]:
    """Template fields: event payload plus ids and a won-formatted total."""
    ctx: dict[str, Any] = dict(event.data)
    for key in ("letter_id", "request_id", "source_module"):
        value = getattr(event, key)
        if value is not None:
            ctx.setdefault(key, str(value))
    if "total_cost" in ctx:
        ctx.setdefault("total_cost_won", format_won(ctx["total_cost"]))
    return ctx


class AlertEngine:
    def __init__(self) -> None:
        self._send_fn: SendFn | None = None

    @property
    def watched_types(self) -> list[EventType]:
        return list(TEMPLATES)

    def set_send_fn(self, fn: SendFn) -> None:
        self._send_fn = fn

    async def on_event(self, event: SystemEvent) -> None:
        template = TEMPLATES.get(event.event_type)
        if template is None or self._send_fn is None:
            return

        message = template.render(alert_context(event))
        channel = settings.notifications.admin_channel
        try:
            await self._send_fn(channel, message)
        except Exception:
            logger.exception("Alert '%s' not delivered to %s", template.title, channel)


alert_engine = AlertEngine()
