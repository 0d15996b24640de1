"""Physical-letter request workflow engine.

Orchestrates the pure pieces (address validation, pricing, state machine,
request limit) over the storage protocols, and publishes a SystemEvent for
every change. One engine serves all four workflow modes; the mode decides
approval policy, recipients per submission and duplicate handling.

Atomicity:
- submissions run "limit check -> insert -> counter deltas" under
  ``repository.lock("submit:...")``
- transitions run "read -> validate -> save -> counter deltas" under
  ``repository.lock("request:{id}")``
Validation and policy errors are raised before any write.

Events for ledger writes are held on the database session and published
only after it commits (see ``src.admin.events.defer_until_commit``); policy
rejections are published straight away since their transaction rolls back.
"""

from __future__ import annotations

import logging
import uuid
from collections import Counter
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from src.admin.events import defer_until_commit, emit_safely
from src.admin.formatters import mask_name
from src.config import settings
from src.models.enums import ActorRole, ApprovalAction, RequesterKind, RequestStatus
from src.schemas.events import EventType, SystemEvent
from src.schemas.requests import (
    AddressInput,
    AdminNote,
    AdminRequestList,
    AdminRequestView,
    BatchSubmitResult,
    LetterCounters,
    LetterRequestList,
    LetterSettings,
    LetterSettingsUpdate,
    LetterSnapshot,
    LetterSummaryReport,
    NormalizedAddress,
    Pagination,
    PopularLetter,
    PublicRequests,
    RequestFilters,
    RequestLimitStatus,
    RequestRecord,
    RequestView,
    ShipmentUpdate,
    SubmitResult,
    TrackingView,
)
from src.storage import build_storage
from src.storage.repository import Storage
from src.workflow.address import validate_address, validate_batch
from src.workflow.errors import (
    AccessDenied,
    AlreadyProcessed,
    LetterNotFound,
    NotAuthor,
    RateLimitExceeded,
    RequestNotFound,
    RequestsNotAllowed,
    ValidationError,
)
from src.workflow.fsm import RequestStateMachine
from src.workflow.identity import Actor, RequesterIdentity, identity_key, owns
from src.workflow.modes import StorageKind, WorkflowMode, get_mode
from src.workflow.pricing import CostCalculator
from src.workflow.rate_limit import RequestLimiter
from src.workflow.reporting import RequestReporter
from src.workflow.states import TRIGGER_FOR_TARGET, counter_deltas, recount

logger = logging.getLogger(__name__)

_SOURCE = "workflow.engine"

_STATUS_EVENTS: dict[RequestStatus, EventType] = {
    RequestStatus.APPROVED: EventType.REQUEST_APPROVED,
    RequestStatus.REJECTED: EventType.REQUEST_REJECTED,
    RequestStatus.FAILED: EventType.REQUEST_FAILED,
    RequestStatus.CANCELLED: EventType.REQUEST_CANCELLED,
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _requester_label(identity: RequesterIdentity) -> str:
    """Actor id for logs and events; session tokens never leave the ledger."""
    if identity.kind == RequesterKind.ACCOUNT:
        return identity.key
    return "anonymous"


class PhysicalLetterWorkflow:
    """The request lifecycle: submit, decide, ship, cancel, report."""

    def __init__(
        self,
        storage: Storage,
        mode: WorkflowMode | None = None,
        calculator: CostCalculator | None = None,
        delivery_days: int | None = None,
        session: AsyncSession | None = None,
    ) -> None:
        self.storage = storage
        self.session = session
        self.mode = mode or get_mode(settings.workflow.mode)
        self.calculator = calculator or CostCalculator()
        self.delivery_days = (
            settings.workflow.estimated_delivery_days if delivery_days is None else delivery_days
        )
        self.limiter = RequestLimiter(storage.requests)
        self.reporter = RequestReporter(storage, self.delivery_days)

    async def _publish(self, event: SystemEvent) -> None:
        if self.session is not None:
            defer_until_commit(self.session, event)
        else:
            await emit_safely(event)

    # ── Lookups ──────────────────────────────────────────────────────

    async def _letter(self, letter_id: uuid.UUID) -> LetterSnapshot:
        letter = await self.storage.letters.get(letter_id)
        if letter is None:
            raise LetterNotFound(letter_id)
        return letter

    async def _request(self, request_id: uuid.UUID) -> RequestRecord:
        record = await self.storage.requests.get(request_id)
        if record is None:
            raise RequestNotFound(request_id)
        return record

    @staticmethod
    def _require_author(letter: LetterSnapshot, actor: Actor) -> None:
        if actor.role == ActorRole.ADMIN:
            return
        if actor.role != ActorRole.AUTHOR or not letter.author_id or letter.author_id != actor.actor_id:
            raise NotAuthor()

    def _submit_lock_key(self, letter_id: uuid.UUID, identity: RequesterIdentity) -> str:
        # duplicate-recipient detection spans requesters, so lock the whole letter
        if self.mode.dedup_recipients:
            return f"submit:{letter_id}"
        return f"submit:{letter_id}:{identity_key(identity)}"

    def _new_record(
        self,
        letter: LetterSnapshot,
        identity: RequesterIdentity,
        recipient: NormalizedAddress,
        now: datetime,
        batch_id: uuid.UUID | None = None,
    ) -> RequestRecord:
        record = RequestRecord(
            letter_id=letter.id,
            batch_id=batch_id,
            requester_kind=identity.kind,
            requester_key=identity.key,
            hashed_ip=identity.hashed_ip,
            user_agent=identity.user_agent,
            recipient=recipient,
            cost=self.calculator.price(recipient.postal_code),
            created_at=now,
            updated_at=now,
        )
        if self.mode.auto_approves(letter.settings.auto_approve):
            record.status = RequestStatus.APPROVED
            record.approved_at = now
            record.approved_by = ActorRole.SYSTEM.value
        return record

    @staticmethod
    def _submit_result(record: RequestRecord, is_duplicate: bool = False) -> SubmitResult:
        return SubmitResult(
            request_id=record.id,
            total_cost=record.cost.total_cost,
            status=record.status,
            needs_approval=record.status == RequestStatus.PENDING,
            cost=record.cost,
            is_duplicate=is_duplicate,
        )

    async def _open_letter(self, letter_id: uuid.UUID) -> LetterSnapshot:
        letter = await self._letter(letter_id)
        if not letter.settings.allow_physical_requests:
            raise RequestsNotAllowed(letter_id)
        return letter

    async def _limit_or_raise(self, letter: LetterSnapshot, identity: RequesterIdentity, requested: int) -> None:
        try:
            await self.limiter.check(letter, identity, requested=requested)
        except RateLimitExceeded as exc:
            await emit_safely(SystemEvent(
                event_type=EventType.RATE_LIMIT_EXCEEDED,
                letter_id=letter.id,
                actor_id=_requester_label(identity),
                actor_role=ActorRole.REQUESTER.value,
                data=exc.details,
                source_module=_SOURCE,
            ))
            raise

    # ── Submission ───────────────────────────────────────────────────

    async def submit_request(
        self, letter_id: uuid.UUID, identity: RequesterIdentity, address: AddressInput
    ) -> SubmitResult:
        """Validate, price and record one request.

        Raises:
            ValidationError, LetterNotFound, RequestsNotAllowed, RateLimitExceeded
        """
        recipient = validate_address(address)
        letter = await self._open_letter(letter_id)
        repo = self.storage.requests

        async with repo.lock(self._submit_lock_key(letter.id, identity)):
            if self.mode.dedup_recipients:
                existing = await repo.find_live_duplicate(letter.id, recipient.phone, identity.kind, identity.key)
                if existing is not None:
                    logger.info("Duplicate request on letter %s -> existing %s", letter.id, existing.id)
                    await emit_safely(SystemEvent(
                        event_type=EventType.REQUEST_DUPLICATE,
                        letter_id=letter.id,
                        request_id=existing.id,
                        actor_id=_requester_label(identity),
                        actor_role=ActorRole.REQUESTER.value,
                        source_module=_SOURCE,
                    ))
                    return self._submit_result(existing, is_duplicate=True)

            await self._limit_or_raise(letter, identity, requested=1)

            record = self._new_record(letter, identity, recipient, _now())
            await repo.add(record)
            await self.storage.counters.apply(letter.id, counter_deltas(None, record.status))

        logger.info(
            "Request submitted: %s letter=%s status=%s total=%d",
            record.id,
            letter.id,
            record.status.value,
            record.cost.total_cost,
        )
        await self._publish(SystemEvent(
            event_type=EventType.REQUEST_SUBMITTED,
            letter_id=letter.id,
            request_id=record.id,
            actor_id=_requester_label(identity),
            actor_role=ActorRole.REQUESTER.value,
            data={
                "recipient_name": mask_name(record.recipient.name),
                "total_cost": record.cost.total_cost,
                "requested_at": record.created_at.isoformat(),
                "status": record.status.value,
                "needs_approval": record.status == RequestStatus.PENDING,
                "letter_title": letter.title,
            },
            source_module=_SOURCE,
        ))
        return self._submit_result(record)

    async def submit_batch(
        self, letter_id: uuid.UUID, identity: RequesterIdentity, addresses: list[AddressInput]
    ) -> BatchSubmitResult:
        """Submit up to ``mode.max_recipients`` recipients in one all-or-nothing unit."""
        if not self.mode.allows_batch:
            raise ValidationError("recipients", "이 편지는 한 번에 한 명에게만 신청할 수 있습니다.")
        recipients = validate_batch(addresses, self.mode.max_recipients)
        letter = await self._open_letter(letter_id)
        repo = self.storage.requests
        batch_id = uuid.uuid4()

        async with repo.lock(self._submit_lock_key(letter.id, identity)):
            await self._limit_or_raise(letter, identity, requested=len(recipients))

            now = _now()
            records = [self._new_record(letter, identity, r, now, batch_id=batch_id) for r in recipients]
            await repo.add_many(records)

            deltas: Counter[str] = Counter()
            for record in records:
                deltas.update(counter_deltas(None, record.status))
            await self.storage.counters.apply(letter.id, dict(deltas))

        total_cost = sum(r.cost.total_cost for r in records)
        logger.info(
            "Batch submitted: %s letter=%s recipients=%d total=%d",
            batch_id,
            letter.id,
            len(records),
            total_cost,
        )
        await self._publish(SystemEvent(
            event_type=EventType.REQUEST_BATCH_SUBMITTED,
            letter_id=letter.id,
            actor_id=_requester_label(identity),
            actor_role=ActorRole.REQUESTER.value,
            data={
                "batch_id": str(batch_id),
                "recipient_count": len(records),
                "recipient_name": mask_name(records[0].recipient.name),
                "total_cost": total_cost,
                "requested_at": now.isoformat(),
                "letter_title": letter.title,
            },
            source_module=_SOURCE,
        ))
        return BatchSubmitResult(
            batch_id=batch_id,
            letter_id=letter.id,
            total_recipients=len(records),
            total_cost=total_cost,
            requests=[self._submit_result(r) for r in records],
        )

    async def check_request_limit(self, letter_id: uuid.UUID, identity: RequesterIdentity) -> RequestLimitStatus:
        letter = await self._letter(letter_id)
        return await self.limiter.status(letter, identity)

    # ── Requester reads / cancel ─────────────────────────────────────

    async def get_request_status(self, request_id: uuid.UUID, identity: RequesterIdentity) -> RequestView:
        """Owner view. Distinguishes RequestNotFound from AccessDenied."""
        record = await self._request(request_id)
        if not owns(record, identity):
            raise AccessDenied("본인의 신청만 조회할 수 있습니다.")
        return RequestView.from_record(record, self.delivery_days)

    async def get_request_tracking(self, request_id: uuid.UUID) -> TrackingView:
        """Public tracking: no identity check, personal data masked."""
        record = await self._request(request_id)
        letter = await self.storage.letters.get(record.letter_id)
        return TrackingView.from_record(
            record, self.delivery_days, letter_title=letter.title if letter else None
        )

    async def cancel_request(self, request_id: uuid.UUID, identity: RequesterIdentity) -> RequestView:
        """Requester cancels a pending/approved/writing request.

        Raises:
            RequestNotFound, AccessDenied, AlreadyTerminal, InvalidTransition
        """
        repo = self.storage.requests
        async with repo.lock(f"request:{request_id}"):
            record = await self._request(request_id)
            if not owns(record, identity):
                raise AccessDenied("본인의 신청만 취소할 수 있습니다.")
            old = RequestStateMachine(record).transition("cancel", ActorRole.REQUESTER, _requester_label(identity))
            await repo.save(record)
            await self.storage.counters.apply(record.letter_id, counter_deltas(old, record.status))

        await self._publish(SystemEvent(
            event_type=EventType.REQUEST_CANCELLED,
            letter_id=record.letter_id,
            request_id=record.id,
            actor_id=_requester_label(identity),
            actor_role=ActorRole.REQUESTER.value,
            data={"from_status": old.value},
            source_module=_SOURCE,
        ))
        return RequestView.from_record(record, self.delivery_days)

    # ── Author ───────────────────────────────────────────────────────

    async def list_requests_for_letter(
        self,
        letter_id: uuid.UUID,
        actor: Actor,
        filters: RequestFilters | None = None,
        page: int = 1,
        per_page: int = 20,
    ) -> LetterRequestList:
        letter = await self._letter(letter_id)
        self._require_author(letter, actor)

        scoped = (filters or RequestFilters()).model_copy(update={"letter_id": letter.id})
        records, total = await self.storage.requests.query(
            scoped, offset=(page - 1) * per_page, limit=per_page
        )
        return LetterRequestList(
            items=[RequestView.from_record(r, self.delivery_days) for r in records],
            summary=await self.reporter.letter_summary(letter.id),
            pagination=Pagination.build(page, per_page, total),
            settings=letter.settings,
        )

    async def decide_approval(
        self,
        letter_id: uuid.UUID,
        request_id: uuid.UUID,
        actor: Actor,
        action: str,
        reason: str | None = None,
    ) -> RequestView:
        """Approve or reject a pending request.

        Raises:
            LetterNotFound, NotAuthor, ValidationError, RequestNotFound, AlreadyProcessed
        """
        letter = await self._letter(letter_id)
        self._require_author(letter, actor)
        try:
            decision = ApprovalAction(action)
        except ValueError:
            raise ValidationError("action", "action은 'approve' 또는 'reject'여야 합니다.") from None

        repo = self.storage.requests
        async with repo.lock(f"request:{request_id}"):
            record = await self._request(request_id)
            if record.letter_id != letter.id:
                raise RequestNotFound(request_id)
            if record.status != RequestStatus.PENDING:
                raise AlreadyProcessed(record.status.value)

            old = RequestStateMachine(record).transition(
                decision.value, actor.role, actor.actor_id, reason=reason
            )
            await repo.save(record)
            await self.storage.counters.apply(letter.id, counter_deltas(old, record.status))

        await self._publish(SystemEvent(
            event_type=_STATUS_EVENTS[record.status],
            letter_id=letter.id,
            request_id=record.id,
            actor_id=actor.actor_id,
            actor_role=actor.role.value,
            data={
                "recipient_name": mask_name(record.recipient.name),
                "total_cost": record.cost.total_cost,
                "reason": record.rejection_reason,
            },
            source_module=_SOURCE,
        ))
        return RequestView.from_record(record, self.delivery_days)

    async def update_letter_settings(
        self, letter_id: uuid.UUID, actor: Actor, update: LetterSettingsUpdate
    ) -> LetterSettings:
        letter = await self._letter(letter_id)
        self._require_author(letter, actor)

        changes = update.model_dump(exclude_none=True)
        merged = letter.settings.model_copy(update=changes)
        await self.storage.letters.update_settings(letter.id, merged)

        logger.info("Letter %s settings updated by %s: %s", letter.id, actor.actor_id, sorted(changes))
        await self._publish(SystemEvent(
            event_type=EventType.LETTER_SETTINGS_UPDATED,
            letter_id=letter.id,
            actor_id=actor.actor_id,
            actor_role=actor.role.value,
            data=changes,
            source_module=_SOURCE,
        ))
        return merged

    async def get_letter_summary(self, letter_id: uuid.UUID, actor: Actor) -> LetterSummaryReport:
        letter = await self._letter(letter_id)
        self._require_author(letter, actor)
        return await self.reporter.summary_report(letter)

    # ── Admin ────────────────────────────────────────────────────────

    async def update_shipment_status(
        self, request_id: uuid.UUID, actor: Actor, update: ShipmentUpdate
    ) -> AdminRequestView:
        """Drive the shipping phase and/or append an admin note.

        A call without ``status`` only appends the note. Raises
        RequestNotFound, InvalidTransition, AlreadyTerminal, ValidationError.
        """
        if actor.role != ActorRole.ADMIN:
            raise AccessDenied("관리자만 배송 상태를 변경할 수 있습니다.")

        note = (update.note or "").strip()
        target: RequestStatus | None = None
        if update.status:
            try:
                target = RequestStatus.parse(update.status)
            except ValueError:
                raise ValidationError("status", f"알 수 없는 상태입니다: {update.status}") from None
        elif not note:
            raise ValidationError("status", "변경할 상태 또는 메모가 필요합니다.")

        repo = self.storage.requests
        async with repo.lock(f"request:{request_id}"):
            record = await self._request(request_id)
            old: RequestStatus | None = None
            now = _now()

            if target is not None:
                machine = RequestStateMachine(record)
                trigger = TRIGGER_FOR_TARGET.get(target, target.value)
                old = machine.transition(
                    trigger,
                    ActorRole.ADMIN,
                    actor.actor_id,
                    reason=update.failure_reason,
                    tracking_number=update.tracking_number,
                    shipping_company=update.shipping_company,
                    now=now,
                )
            if note:
                record.admin_notes.append(AdminNote(note=note, created_at=now, created_by=actor.actor_id))
                record.updated_at = now

            await repo.save(record)
            if old is not None:
                await self.storage.counters.apply(record.letter_id, counter_deltas(old, record.status))

        if old is not None:
            await self._publish(SystemEvent(
                event_type=_STATUS_EVENTS.get(record.status, EventType.REQUEST_STATUS_CHANGED),
                letter_id=record.letter_id,
                request_id=record.id,
                actor_id=actor.actor_id,
                actor_role=actor.role.value,
                data={
                    "from_status": old.value,
                    "to_status": record.status.value,
                    "recipient_name": mask_name(record.recipient.name),
                    "total_cost": record.cost.total_cost,
                    "tracking_number": record.shipping.tracking_number,
                    "reason": record.failure_reason or record.rejection_reason,
                },
                source_module=_SOURCE,
            ))
        if note:
            await self._publish(SystemEvent(
                event_type=EventType.REQUEST_NOTE_ADDED,
                letter_id=record.letter_id,
                request_id=record.id,
                actor_id=actor.actor_id,
                actor_role=actor.role.value,
                data={"note": note},
                source_module=_SOURCE,
            ))

        letter = await self.storage.letters.get(record.letter_id)
        return AdminRequestView.from_record(
            record, self.delivery_days, letter_title=letter.title if letter else None
        )

    async def list_all_requests(
        self, actor: Actor, filters: RequestFilters | None = None, page: int = 1, per_page: int = 20
    ) -> AdminRequestList:
        if actor.role != ActorRole.ADMIN:
            raise AccessDenied()
        return await self.reporter.admin_list(filters or RequestFilters(), page, per_page)

    async def get_admin_request(self, request_id: uuid.UUID, actor: Actor) -> AdminRequestView:
        if actor.role != ActorRole.ADMIN:
            raise AccessDenied()
        record = await self._request(request_id)
        letter = await self.storage.letters.get(record.letter_id)
        return AdminRequestView.from_record(
            record, self.delivery_days, letter_title=letter.title if letter else None
        )

    # ── Public reporting ─────────────────────────────────────────────

    async def get_popular_letters(self, limit: int | None = None) -> list[PopularLetter]:
        return await self.reporter.popular_letters(limit or settings.workflow.popular_letters_limit)

    async def get_public_requests(self, letter_id: uuid.UUID, limit: int | None = None) -> PublicRequests:
        letter = await self._letter(letter_id)
        return await self.reporter.public_requests(letter, limit or settings.workflow.public_list_limit)

    # ── Reconciliation ───────────────────────────────────────────────

    async def reconcile_counters(self, letter_id: uuid.UUID) -> LetterCounters:
        """Recompute the letter's cached counters from the ledger.

        Idempotent: a second run right after the first changes nothing.
        The counters are locked before the ledger is read, so deltas from
        concurrent transitions land either before the recount or after
        the overwrite.
        """
        letter = await self._letter(letter_id)
        cached = await self.storage.counters.lock_counters(letter.id)
        if cached is None:
            raise LetterNotFound(letter_id)
        stats = await self.storage.requests.status_stats(RequestFilters(letter_id=letter.id))
        counters = recount({status: s.count for status, s in stats.items()})
        if counters == cached:
            return counters

        await self.storage.counters.overwrite(letter.id, counters)
        logger.warning(
            "Reconciled drifted counters on letter %s: %s -> %s",
            letter.id,
            cached.model_dump(),
            counters.model_dump(),
        )
        await self._publish(SystemEvent(
            event_type=EventType.COUNTERS_RECONCILED,
            letter_id=letter.id,
            actor_id=ActorRole.SYSTEM.value,
            actor_role=ActorRole.SYSTEM.value,
            data={"before": cached.model_dump(), "after": counters.model_dump()},
            source_module=_SOURCE,
        ))
        return counters

    async def reconcile_all(self) -> dict[str, int]:
        """Reconcile every letter that has requests. Returns a summary."""
        summary = {"letters_checked": 0, "letters_corrected": 0}
        for letter_id in await self.storage.requests.letter_ids():
            letter = await self.storage.letters.get(letter_id)
            if letter is None:
                logger.warning("Requests reference missing letter %s", letter_id)
                continue
            summary["letters_checked"] += 1
            if await self.reconcile_counters(letter_id) != letter.counters:
                summary["letters_corrected"] += 1
        return summary


def build_workflow(db: AsyncSession | None = None, mode: WorkflowMode | None = None) -> PhysicalLetterWorkflow:
    """Engine wired to the configured storage backend.

    The ``recipient`` mode stores requests inside the letter row, so a
    configured "sql" backend is switched to "embedded" for it.
    """
    mode = mode or get_mode(settings.workflow.mode)
    backend = settings.workflow.storage_backend
    if backend == "sql" and mode.storage == StorageKind.EMBEDDED:
        backend = "embedded"
    return PhysicalLetterWorkflow(build_storage(backend, db), mode=mode, session=db)
