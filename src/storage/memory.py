"""In-memory storage: a single-process implementation of the storage protocols.

Used by the test suite and for local runs without PostgreSQL
(WORKFLOW_STORAGE_BACKEND=memory). Records are deep-copied on the way in and
out so callers can never mutate the ledger without calling ``save``.
"""

from __future__ import annotations

import asyncio
import contextlib
import uuid
from collections import Counter, defaultdict
from collections.abc import AsyncIterator, Collection

from src.models.enums import RequesterKind, RequestStatus
from src.schemas.requests import (
    LetterCounters,
    LetterSettings,
    LetterSnapshot,
    RequestFilters,
    RequestRecord,
    StatusStat,
)
from src.storage.repository import Storage, matches, stats_for
from src.workflow.states import NON_LIVE_STATES


class InMemoryRequestRepository:
    """RequestRepository backed by a dict, with per-key asyncio locks."""

    def __init__(self) -> None:
        self._records: dict[uuid.UUID, RequestRecord] = {}
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    @contextlib.asynccontextmanager
    async def lock(self, key: str) -> AsyncIterator[None]:
        async with self._locks[key]:
            yield

    async def add(self, record: RequestRecord) -> None:
        self._records[record.id] = record.model_copy(deep=True)

    async def add_many(self, records: list[RequestRecord]) -> None:
        for record in records:
            await self.add(record)

    async def get(self, request_id: uuid.UUID) -> RequestRecord | None:
        record = self._records.get(request_id)
        return record.model_copy(deep=True) if record is not None else None

    async def save(self, record: RequestRecord) -> None:
        if record.id not in self._records:
            msg = f"Request {record.id} does not exist"
            raise KeyError(msg)
        self._records[record.id] = record.model_copy(deep=True)

    def _live(self, letter_id: uuid.UUID) -> list[RequestRecord]:
        return [
            r for r in self._records.values()
            if r.letter_id == letter_id and r.status not in NON_LIVE_STATES
        ]

    async def count_live(self, letter_id: uuid.UUID, kind: RequesterKind, key: str) -> int:
        return sum(
            1 for r in self._live(letter_id)
            if r.requester_kind == kind and r.requester_key == key
        )

    async def find_live_duplicate(
        self, letter_id: uuid.UUID, phone: str, kind: RequesterKind, key: str
    ) -> RequestRecord | None:
        for record in sorted(self._live(letter_id), key=lambda r: r.created_at):
            same_requester = record.requester_kind == kind and record.requester_key == key
            if record.recipient.phone == phone or same_requester:
                return record.model_copy(deep=True)
        return None

    async def query(
        self,
        filters: RequestFilters,
        offset: int = 0,
        limit: int | None = None,
        statuses: Collection[RequestStatus] | None = None,
    ) -> tuple[list[RequestRecord], int]:
        found = [r for r in self._records.values() if matches(r, filters, statuses)]
        found.sort(key=lambda r: r.created_at, reverse=True)
        end = None if limit is None else offset + limit
        return [r.model_copy(deep=True) for r in found[offset:end]], len(found)

    async def status_stats(self, filters: RequestFilters) -> dict[RequestStatus, StatusStat]:
        return stats_for([r for r in self._records.values() if matches(r, filters)])

    async def popular(self, limit: int) -> list[tuple[uuid.UUID, int, int]]:
        counts: Counter[uuid.UUID] = Counter()
        revenue: Counter[uuid.UUID] = Counter()
        for record in self._records.values():
            counts[record.letter_id] += 1
            revenue[record.letter_id] += record.cost.total_cost
        return [(letter_id, count, revenue[letter_id]) for letter_id, count in counts.most_common(limit)]

    async def letter_ids(self) -> list[uuid.UUID]:
        return sorted({r.letter_id for r in self._records.values()}, key=str)


class InMemoryLetterStore:
    """LetterStore + CounterStore over a dict of snapshots."""

    def __init__(self) -> None:
        self._letters: dict[uuid.UUID, LetterSnapshot] = {}

    def put(self, letter: LetterSnapshot) -> LetterSnapshot:
        """Seed a letter (tests and local runs)."""
        self._letters[letter.id] = letter.model_copy(deep=True)
        return letter

    async def get(self, letter_id: uuid.UUID) -> LetterSnapshot | None:
        letter = self._letters.get(letter_id)
        return letter.model_copy(deep=True) if letter is not None else None

    async def get_many(self, letter_ids: Collection[uuid.UUID]) -> dict[uuid.UUID, LetterSnapshot]:
        return {
            letter_id: self._letters[letter_id].model_copy(deep=True)
            for letter_id in letter_ids
            if letter_id in self._letters
        }

    async def update_settings(self, letter_id: uuid.UUID, letter_settings: LetterSettings) -> None:
        self._letters[letter_id].settings = letter_settings.model_copy()

    async def apply(self, letter_id: uuid.UUID, deltas: dict[str, int]) -> None:
        counters = self._letters[letter_id].counters
        for name, delta in deltas.items():
            setattr(counters, name, getattr(counters, name) + delta)

    async def lock_counters(self, letter_id: uuid.UUID) -> LetterCounters | None:
        # in-memory calls never suspend, so no delta can land mid-recount
        letter = self._letters.get(letter_id)
        return letter.counters.model_copy() if letter is not None else None

    async def overwrite(self, letter_id: uuid.UUID, counters: LetterCounters) -> None:
        self._letters[letter_id].counters = counters.model_copy()


def memory_storage() -> tuple[Storage, InMemoryLetterStore]:
    """Fresh in-memory storage; the letter store is returned for seeding."""
    letters = InMemoryLetterStore()
    return Storage(requests=InMemoryRequestRepository(), letters=letters, counters=letters), letters
