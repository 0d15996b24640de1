"""Read-side aggregation over the request ledger.

Everything here is computed from the ledger on demand; the cached letter
counters are only reported next to the recount, never trusted. Admin-scoped
projections are the only ones that carry hashed IPs and admin notes.
"""

from __future__ import annotations

import logging
import uuid

from src.admin.formatters import mask_name
from src.models.enums import RequestStatus
from src.schemas.requests import (
    AdminRequestList,
    AdminRequestView,
    LetterRequestSummary,
    LetterSnapshot,
    LetterSummaryReport,
    Pagination,
    PopularLetter,
    PublicRequestItem,
    PublicRequests,
    PublicSummary,
    RequestFilters,
    StatusStat,
)
from src.storage.repository import Storage
from src.workflow.states import APPROVED_PHASE, recount

logger = logging.getLogger(__name__)


def summarize(stats: dict[RequestStatus, StatusStat]) -> LetterRequestSummary:
    """Build a per-letter summary from a status -> StatusStat grouping."""
    return LetterRequestSummary(
        total_requests=sum(s.count for s in stats.values()),
        status_counts={status.value: s.count for status, s in stats.items()},
        total_cost=sum(s.total_cost for s in stats.values()),
        approved_cost=sum(s.total_cost for status, s in stats.items() if status in APPROVED_PHASE),
    )


class RequestReporter:
    """Summaries, rankings and list views."""

    def __init__(self, storage: Storage, delivery_days: int = 3) -> None:
        self.storage = storage
        self.delivery_days = delivery_days

    async def letter_summary(self, letter_id: uuid.UUID) -> LetterRequestSummary:
        stats = await self.storage.requests.status_stats(RequestFilters(letter_id=letter_id))
        return summarize(stats)

    async def summary_report(self, letter: LetterSnapshot) -> LetterSummaryReport:
        """Ledger summary plus cached vs. recomputed counters."""
        stats = await self.storage.requests.status_stats(RequestFilters(letter_id=letter.id))
        ledger = recount({status: s.count for status, s in stats.items()})
        drift = ledger != letter.counters
        if drift:
            logger.warning(
                "Counter drift on letter %s: cached=%s ledger=%s",
                letter.id,
                letter.counters.model_dump(),
                ledger.model_dump(),
            )
        return LetterSummaryReport(
            letter_id=letter.id,
            summary=summarize(stats),
            cached_counters=letter.counters,
            ledger_counters=ledger,
            drift=drift,
        )

    async def popular_letters(self, limit: int) -> list[PopularLetter]:
        ranking = await self.storage.requests.popular(limit)
        letters = await self.storage.letters.get_many([letter_id for letter_id, _, _ in ranking])
        popular: list[PopularLetter] = []
        for letter_id, count, revenue in ranking:
            letter = letters.get(letter_id)
            popular.append(PopularLetter(
                letter_id=letter_id,
                title=letter.title if letter else None,
                letter_type=letter.letter_type if letter else None,
                request_count=count,
                total_revenue=revenue,
                avg_cost=round(revenue / count) if count else 0,
            ))
        return popular

    async def admin_list(self, filters: RequestFilters, page: int = 1, per_page: int = 20) -> AdminRequestList:
        records, total = await self.storage.requests.query(
            filters, offset=(page - 1) * per_page, limit=per_page
        )
        stats = await self.storage.requests.status_stats(filters)
        letters = await self.storage.letters.get_many({r.letter_id for r in records})
        items = [
            AdminRequestView.from_record(
                record,
                self.delivery_days,
                letter_title=letters[record.letter_id].title if record.letter_id in letters else None,
            )
            for record in records
        ]
        return AdminRequestList(
            items=items,
            stats={status.value: s for status, s in stats.items()},
            pagination=Pagination.build(page, per_page, total),
        )

    async def public_requests(self, letter: LetterSnapshot, limit: int) -> PublicRequests:
        """Approved-phase requests with masked names, newest first."""
        records, _ = await self.storage.requests.query(
            RequestFilters(letter_id=letter.id), limit=limit, statuses=APPROVED_PHASE
        )
        counters = letter.counters
        return PublicRequests(
            approved_requests=[
                PublicRequestItem(
                    recipient_name=mask_name(r.recipient.name),
                    approved_at=r.approved_at,
                    cost=r.cost.total_cost,
                )
                for r in records
            ],
            summary=PublicSummary(
                total_requests=counters.total_requests,
                approved_requests=counters.approved_requests,
                pending_requests=counters.pending_requests,
                allow_new_requests=letter.settings.allow_physical_requests,
            ),
        )
