"""Audit log subscriber: persists every SystemEvent to the audit_log table.

Registered as a global subscriber (receives ALL events). Together with each
request's append-only admin notes this is the immutable trail of who moved
which request where.

Never raises: failures are logged but never propagate to the event system.
"""

from __future__ import annotations

import logging

from src.db.engine import async_session_factory
from src.models.audit import AuditLog
from src.schemas.events import SystemEvent

logger = logging.getLogger(__name__)


def to_audit_row(event: SystemEvent) -> AuditLog:
    return AuditLog(
        event_type=event.event_type.value,
        letter_id=event.letter_id,
        request_id=event.request_id,
        actor_id=event.actor_id,
        actor_role=event.actor_role,
        data={**event.data, "source_module": event.source_module} if event.source_module else event.data,
    )


async def audit_on_event(event: SystemEvent) -> None:
    """Write a SystemEvent to the audit_log table.

    Called by the event system for every emitted event. Uses its own
    session, so an audit row is written even if the request that emitted
    the event later rolls back.
    """
    try:
        async with async_session_factory() as db:
            db.add(to_audit_row(event))
            await db.commit()
    except Exception:
        logger.exception(
            "Failed to persist audit event: %s (request=%s)",
            event.event_type.value,
            event.request_id,
        )
