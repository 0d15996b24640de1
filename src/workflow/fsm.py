"""Finite state machine for a single physical-letter request.

The FSM validates transitions, enforces who may trigger them, and stamps the
side-effect fields on the record. Persistence, counters and events are the
engine's job.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from src.models.enums import ActorRole, RequestStatus
from src.schemas.requests import RequestRecord
from src.workflow.errors import AccessDenied, AlreadyTerminal, InvalidTransition, ValidationError
from src.workflow.states import TERMINAL_STATES, TRANSITIONS, TRIGGER_FOR_TARGET, Transition

logger = logging.getLogger(__name__)

DEFAULT_REJECTION_REASON = "작성자에 의해 거절됨"

_TARGET_NAME: dict[str, str] = {trigger: status.value for status, trigger in TRIGGER_FOR_TARGET.items()}


class RequestStateMachine:
    """Applies transitions to one RequestRecord."""

    def __init__(self, record: RequestRecord) -> None:
        self.record = record

    @property
    def current_state(self) -> RequestStatus:
        return self.record.status

    @property
    def is_terminal(self) -> bool:
        return self.record.status in TERMINAL_STATES

    def can_transition(self, trigger: str, role: ActorRole | None = None) -> bool:
        transition = TRANSITIONS.get(self.record.status, {}).get(trigger)
        if transition is None:
            return False
        return role is None or role in transition.actors

    def get_valid_triggers(self, role: ActorRole | None = None) -> list[str]:
        return [
            trigger
            for trigger, transition in TRANSITIONS.get(self.record.status, {}).items()
            if role is None or role in transition.actors
        ]

    def _resolve(self, trigger: str, role: ActorRole) -> Transition:
        current = self.record.status
        wanted = _TARGET_NAME.get(trigger, trigger)
        if current in TERMINAL_STATES:
            raise AlreadyTerminal(current.value, wanted)

        transition = TRANSITIONS[current].get(trigger)
        if transition is None:
            raise InvalidTransition(current.value, wanted)
        if role not in transition.actors:
            raise AccessDenied(f"'{trigger}' 처리 권한이 없습니다.")
        return transition

    def transition(
        self,
        trigger: str,
        role: ActorRole,
        actor_id: str,
        *,
        reason: str | None = None,
        tracking_number: str | None = None,
        shipping_company: str | None = None,
        now: datetime | None = None,
    ) -> RequestStatus:
        """Execute a transition in place.

        Returns:
            The status the record left.

        Raises:
            AlreadyTerminal: The record is in a terminal state.
            InvalidTransition: The trigger is not legal from the current state.
            AccessDenied: The role may not fire this trigger.
            ValidationError: ``mark_sent`` without tracking number and carrier.
        """
        transition = self._resolve(trigger, role)
        if trigger == "mark_sent":
            if not (tracking_number or "").strip():
                raise ValidationError("tracking_number", "발송 처리에는 운송장 번호가 필요합니다.")
            if not (shipping_company or "").strip():
                raise ValidationError("shipping_company", "발송 처리에는 택배사 정보가 필요합니다.")

        now = now or datetime.now(timezone.utc)
        record = self.record
        old_state = record.status

        if trigger == "approve":
            record.approved_at = now
            record.approved_by = actor_id
        elif trigger == "reject":
            record.rejected_at = now
            record.rejection_reason = (reason or "").strip() or DEFAULT_REJECTION_REASON
        elif trigger == "mark_writing":
            record.writing_at = now
        elif trigger == "mark_sent":
            record.shipping.tracking_number = (tracking_number or "").strip()
            record.shipping.shipping_company = (shipping_company or "").strip()
            record.shipping.sent_at = now
        elif trigger == "mark_delivered":
            record.shipping.delivered_at = now
        elif trigger == "mark_failed":
            record.failed_at = now
            record.failure_reason = (reason or "").strip() or None
        elif trigger == "cancel":
            record.cancelled_at = now

        record.status = transition.target
        record.updated_at = now

        logger.info(
            "Request transition: %s --%s--> %s (request=%s actor=%s:%s)",
            old_state.value,
            trigger,
            record.status.value,
            record.id,
            role.value,
            actor_id,
        )
        return old_state
