"""Storage interfaces for the request workflow.

The engine talks only to these protocols, so "own table" vs. "embedded in
the parent letter" vs. "in memory" is an implementation swap:

- RequestRepository: the request ledger (source of truth) plus the
  per-key lock that makes check-then-insert atomic.
- LetterStore: read access to the parent letter and its author settings.
- CounterStore: +1/-1 deltas on the letter's cached counters, and the
  lock plus absolute overwrite used only by reconciliation.
"""

from __future__ import annotations

import uuid
from collections.abc import Collection
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from typing import Protocol

from src.models.enums import RequesterKind, RequestStatus
from src.schemas.requests import (
    LetterCounters,
    LetterSettings,
    LetterSnapshot,
    RequestFilters,
    RequestRecord,
    StatusStat,
)


class RequestRepository(Protocol):
    def lock(self, key: str) -> AbstractAsyncContextManager[None]:
        """Serialize work on ``key`` until the surrounding unit of work ends."""
        ...

    async def add(self, record: RequestRecord) -> None: ...

    async def add_many(self, records: list[RequestRecord]) -> None: ...

    async def get(self, request_id: uuid.UUID) -> RequestRecord | None: ...

    async def save(self, record: RequestRecord) -> None: ...

    async def count_live(self, letter_id: uuid.UUID, kind: RequesterKind, key: str) -> int: ...

    async def find_live_duplicate(
        self, letter_id: uuid.UUID, phone: str, kind: RequesterKind, key: str
    ) -> RequestRecord | None:
        """Live request on the letter with the same recipient phone or requester."""
        ...

    async def query(
        self,
        filters: RequestFilters,
        offset: int = 0,
        limit: int | None = None,
        statuses: Collection[RequestStatus] | None = None,
    ) -> tuple[list[RequestRecord], int]:
        """Matching records newest first, and the total match count."""
        ...

    async def status_stats(self, filters: RequestFilters) -> dict[RequestStatus, StatusStat]: ...

    async def popular(self, limit: int) -> list[tuple[uuid.UUID, int, int]]:
        """(letter_id, request_count, total_cost) ordered by count descending."""
        ...

    async def letter_ids(self) -> list[uuid.UUID]:
        """Every letter that has at least one request."""
        ...


class LetterStore(Protocol):
    async def get(self, letter_id: uuid.UUID) -> LetterSnapshot | None: ...

    async def get_many(self, letter_ids: Collection[uuid.UUID]) -> dict[uuid.UUID, LetterSnapshot]: ...

    async def update_settings(self, letter_id: uuid.UUID, letter_settings: LetterSettings) -> None: ...


class CounterStore(Protocol):
    async def apply(self, letter_id: uuid.UUID, deltas: dict[str, int]) -> None: ...

    async def lock_counters(self, letter_id: uuid.UUID) -> LetterCounters | None:
        """Current counters, with further deltas blocked until the unit of work ends."""
        ...

    async def overwrite(self, letter_id: uuid.UUID, counters: LetterCounters) -> None: ...


@dataclass
class Storage:
    """The three storage capabilities handed to the workflow engine."""

    requests: RequestRepository
    letters: LetterStore
    counters: CounterStore


def matches(record: RequestRecord, filters: RequestFilters, statuses: Collection[RequestStatus] | None = None) -> bool:
    """Python-side filter shared by the non-SQL backends."""
    if filters.letter_id is not None and record.letter_id != filters.letter_id:
        return False
    if filters.status is not None and record.status != filters.status:
        return False
    if statuses is not None and record.status not in statuses:
        return False
    if filters.date_from is not None and record.created_at < filters.date_from:
        return False
    if filters.date_to is not None and record.created_at > filters.date_to:
        return False
    return True


def stats_for(records: list[RequestRecord]) -> dict[RequestStatus, StatusStat]:
    stats: dict[RequestStatus, StatusStat] = {}
    for record in records:
        current = stats.get(record.status, StatusStat(count=0, total_cost=0))
        stats[record.status] = StatusStat(
            count=current.count + 1,
            total_cost=current.total_cost + record.cost.total_cost,
        )
    return stats
