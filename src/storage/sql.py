"""PostgreSQL storage: requests in their own ``physical_requests`` table.

All methods run inside the caller's AsyncSession; nothing here commits.
``get_session`` commits once at the end of the HTTP request, which also
releases the transaction-scoped advisory locks taken by ``lock()``.
"""

from __future__ import annotations

import contextlib
import logging
import uuid
from collections.abc import AsyncIterator, Collection
from typing import Any

from sqlalchemy import Select, func, select, text, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.models.enums import RequesterKind, RequestStatus
from src.models.letter import Letter
from src.models.physical_request import PhysicalRequest
from src.schemas.requests import (
    AdminNote,
    CostBreakdown,
    LetterCounters,
    LetterSettings,
    LetterSnapshot,
    NormalizedAddress,
    RequestFilters,
    RequestRecord,
    ShippingInfo,
    StatusStat,
)
from src.storage.repository import Storage
from src.workflow.states import COUNTER_BUCKETS, NON_LIVE_STATES

logger = logging.getLogger(__name__)

_NON_LIVE = [s.value for s in NON_LIVE_STATES]


async def advisory_lock(db: AsyncSession, key: str) -> None:
    """Take a transaction-scoped PostgreSQL advisory lock on ``key``."""
    await db.execute(text("SELECT pg_advisory_xact_lock(hashtext(:key))"), {"key": key})


def locked_letter(letter_id: uuid.UUID) -> Select[tuple[Letter]]:
    """SELECT ... FOR UPDATE on one letter row, refreshing any copy already in the session."""
    return (
        select(Letter)
        .where(Letter.id == letter_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )


# ── Row <-> record mapping ───────────────────────────────────────────


def to_record(row: PhysicalRequest) -> RequestRecord:
    return RequestRecord(
        id=row.id,
        letter_id=row.letter_id,
        batch_id=row.batch_id,
        requester_kind=RequesterKind(row.requester_kind),
        requester_key=row.requester_key,
        hashed_ip=row.hashed_ip,
        user_agent=row.user_agent,
        recipient=NormalizedAddress(
            name=row.recipient_name,
            phone=row.recipient_phone,
            postal_code=row.postal_code,
            address1=row.address1,
            address2=row.address2 or "",
            memo=row.memo or "",
        ),
        cost=CostBreakdown(
            shipping_cost=row.shipping_cost,
            letter_cost=row.letter_cost,
            total_cost=row.total_cost,
        ),
        status=RequestStatus.parse(row.status),
        approved_at=row.approved_at,
        approved_by=row.approved_by,
        rejected_at=row.rejected_at,
        rejection_reason=row.rejection_reason,
        writing_at=row.writing_at,
        cancelled_at=row.cancelled_at,
        failed_at=row.failed_at,
        failure_reason=row.failure_reason,
        shipping=ShippingInfo(
            tracking_number=row.tracking_number,
            shipping_company=row.shipping_company,
            sent_at=row.sent_at,
            delivered_at=row.delivered_at,
        ),
        admin_notes=[AdminNote.model_validate(n) for n in (row.admin_notes or [])],
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _mutable_columns(record: RequestRecord) -> dict[str, Any]:
    return {
        "status": record.status.value,
        "approved_at": record.approved_at,
        "approved_by": record.approved_by,
        "rejected_at": record.rejected_at,
        "rejection_reason": record.rejection_reason,
        "writing_at": record.writing_at,
        "cancelled_at": record.cancelled_at,
        "failed_at": record.failed_at,
        "failure_reason": record.failure_reason,
        "tracking_number": record.shipping.tracking_number,
        "shipping_company": record.shipping.shipping_company,
        "sent_at": record.shipping.sent_at,
        "delivered_at": record.shipping.delivered_at,
        "admin_notes": [n.model_dump(mode="json") for n in record.admin_notes],
        "updated_at": record.updated_at,
    }


def to_row(record: RequestRecord) -> PhysicalRequest:
    return PhysicalRequest(
        id=record.id,
        letter_id=record.letter_id,
        batch_id=record.batch_id,
        requester_kind=record.requester_kind.value,
        requester_key=record.requester_key,
        hashed_ip=record.hashed_ip,
        user_agent=record.user_agent,
        recipient_name=record.recipient.name,
        recipient_phone=record.recipient.phone,
        postal_code=record.recipient.postal_code,
        address1=record.recipient.address1,
        address2=record.recipient.address2,
        memo=record.recipient.memo,
        shipping_cost=record.cost.shipping_cost,
        letter_cost=record.cost.letter_cost,
        total_cost=record.cost.total_cost,
        created_at=record.created_at,
        **_mutable_columns(record),
    )


def to_snapshot(letter: Letter) -> LetterSnapshot:
    return LetterSnapshot(
        id=letter.id,
        author_id=letter.author_id,
        title=letter.display_title,
        letter_type=letter.letter_type,
        settings=LetterSettings(
            allow_physical_requests=letter.allow_physical_requests,
            auto_approve=letter.auto_approve,
            max_requests_per_person=letter.max_requests_per_person,
            approval_message=letter.approval_message,
        ),
        counters=LetterCounters(**{name: getattr(letter, name) for name in COUNTER_BUCKETS}),
    )


def _filtered(stmt: Select[Any], filters: RequestFilters) -> Select[Any]:
    if filters.letter_id is not None:
        stmt = stmt.where(PhysicalRequest.letter_id == filters.letter_id)
    if filters.status is not None:
        stmt = stmt.where(PhysicalRequest.status == filters.status.value)
    if filters.date_from is not None:
        stmt = stmt.where(PhysicalRequest.created_at >= filters.date_from)
    if filters.date_to is not None:
        stmt = stmt.where(PhysicalRequest.created_at <= filters.date_to)
    return stmt


# ── Repository ───────────────────────────────────────────────────────


class SqlRequestRepository:
    """RequestRepository over the ``physical_requests`` table."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    @contextlib.asynccontextmanager
    async def lock(self, key: str) -> AsyncIterator[None]:
        await advisory_lock(self.db, key)
        yield

    async def add(self, record: RequestRecord) -> None:
        self.db.add(to_row(record))
        await self.db.flush()

    async def add_many(self, records: list[RequestRecord]) -> None:
        self.db.add_all([to_row(r) for r in records])
        await self.db.flush()

    async def get(self, request_id: uuid.UUID) -> RequestRecord | None:
        row = await self.db.get(PhysicalRequest, request_id)
        return to_record(row) if row is not None else None

    async def save(self, record: RequestRecord) -> None:
        await self.db.execute(
            update(PhysicalRequest)
            .where(PhysicalRequest.id == record.id)
            .values(**_mutable_columns(record))
        )

    async def count_live(self, letter_id: uuid.UUID, kind: RequesterKind, key: str) -> int:
        result = await self.db.execute(
            select(func.count(PhysicalRequest.id)).where(
                PhysicalRequest.letter_id == letter_id,
                PhysicalRequest.requester_kind == kind.value,
                PhysicalRequest.requester_key == key,
                PhysicalRequest.status.not_in(_NON_LIVE),
            )
        )
        return result.scalar() or 0

    async def find_live_duplicate(
        self, letter_id: uuid.UUID, phone: str, kind: RequesterKind, key: str
    ) -> RequestRecord | None:
        result = await self.db.execute(
            select(PhysicalRequest)
            .where(
                PhysicalRequest.letter_id == letter_id,
                PhysicalRequest.status.not_in(_NON_LIVE),
                (PhysicalRequest.recipient_phone == phone)
                | (
                    (PhysicalRequest.requester_kind == kind.value)
                    & (PhysicalRequest.requester_key == key)
                ),
            )
            .order_by(PhysicalRequest.created_at.asc())
            .limit(1)
        )
        row = result.scalar_one_or_none()
        return to_record(row) if row is not None else None

    async def query(
        self,
        filters: RequestFilters,
        offset: int = 0,
        limit: int | None = None,
        statuses: Collection[RequestStatus] | None = None,
    ) -> tuple[list[RequestRecord], int]:
        base = _filtered(select(PhysicalRequest), filters)
        count_stmt = _filtered(select(func.count(PhysicalRequest.id)), filters)
        if statuses is not None:
            values = [s.value for s in statuses]
            base = base.where(PhysicalRequest.status.in_(values))
            count_stmt = count_stmt.where(PhysicalRequest.status.in_(values))

        total = (await self.db.execute(count_stmt)).scalar() or 0

        stmt = base.order_by(PhysicalRequest.created_at.desc()).offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self.db.execute(stmt)
        return [to_record(row) for row in result.scalars().all()], total

    async def status_stats(self, filters: RequestFilters) -> dict[RequestStatus, StatusStat]:
        stmt = _filtered(
            select(
                PhysicalRequest.status,
                func.count(PhysicalRequest.id),
                func.coalesce(func.sum(PhysicalRequest.total_cost), 0),
            ),
            filters,
        ).group_by(PhysicalRequest.status)
        result = await self.db.execute(stmt)
        stats: dict[RequestStatus, StatusStat] = {}
        for status, count, total_cost in result.all():
            parsed = RequestStatus.parse(status)
            prev = stats.get(parsed, StatusStat(count=0, total_cost=0))
            stats[parsed] = StatusStat(count=prev.count + count, total_cost=prev.total_cost + int(total_cost))
        return stats

    async def popular(self, limit: int) -> list[tuple[uuid.UUID, int, int]]:
        request_count = func.count(PhysicalRequest.id).label("request_count")
        result = await self.db.execute(
            select(
                PhysicalRequest.letter_id,
                request_count,
                func.coalesce(func.sum(PhysicalRequest.total_cost), 0),
            )
            .group_by(PhysicalRequest.letter_id)
            .order_by(request_count.desc())
            .limit(limit)
        )
        return [(letter_id, count, int(revenue)) for letter_id, count, revenue in result.all()]

    async def letter_ids(self) -> list[uuid.UUID]:
        result = await self.db.execute(select(PhysicalRequest.letter_id).distinct())
        return list(result.scalars().all())


# ── Letters and counters ─────────────────────────────────────────────


class SqlLetterStore:
    """LetterStore + CounterStore over the ``letters`` table."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def get(self, letter_id: uuid.UUID) -> LetterSnapshot | None:
        letter = await self.db.get(Letter, letter_id)
        return to_snapshot(letter) if letter is not None else None

    async def get_many(self, letter_ids: Collection[uuid.UUID]) -> dict[uuid.UUID, LetterSnapshot]:
        if not letter_ids:
            return {}
        result = await self.db.execute(select(Letter).where(Letter.id.in_(list(letter_ids))))
        return {letter.id: to_snapshot(letter) for letter in result.scalars().all()}

    async def update_settings(self, letter_id: uuid.UUID, letter_settings: LetterSettings) -> None:
        await self.db.execute(
            update(Letter).where(Letter.id == letter_id).values(**letter_settings.model_dump())
        )

    async def apply(self, letter_id: uuid.UUID, deltas: dict[str, int]) -> None:
        if not deltas:
            return
        values = {name: getattr(Letter, name) + delta for name, delta in deltas.items()}
        await self.db.execute(update(Letter).where(Letter.id == letter_id).values(**values))

    async def lock_counters(self, letter_id: uuid.UUID) -> LetterCounters | None:
        result = await self.db.execute(locked_letter(letter_id))
        letter = result.scalar_one_or_none()
        return to_snapshot(letter).counters if letter is not None else None

    async def overwrite(self, letter_id: uuid.UUID, counters: LetterCounters) -> None:
        await self.db.execute(update(Letter).where(Letter.id == letter_id).values(**counters.model_dump()))
        logger.info("Counters overwritten for letter %s: %s", letter_id, counters.model_dump())


def sql_storage(db: AsyncSession) -> Storage:
    letters = SqlLetterStore(db)
    return Storage(requests=SqlRequestRepository(db), letters=letters, counters=letters)
