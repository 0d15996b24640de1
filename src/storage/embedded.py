"""Embedded storage: requests live in a JSONB array on the parent letter row.

Backs the ``recipient`` workflow mode. Each array element is a JSON dump of
a RequestRecord; lookups by request id use JSONB containment
(``recipient_entries @> '[{"id": ...}]'``). Counters and settings still
live in the letter's own columns, so SqlLetterStore is reused unchanged.

Writes lock the letter row with ``SELECT ... FOR UPDATE``: request-level
advisory locks do not stop two transitions on the same letter from
rewriting the array at once.
"""

from __future__ import annotations

import contextlib
import logging
import uuid
from collections import Counter, defaultdict
from collections.abc import AsyncIterator, Collection
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.models.enums import RequesterKind, RequestStatus
from src.models.letter import Letter
from src.schemas.requests import RequestFilters, RequestRecord, StatusStat
from src.storage.repository import Storage, matches, stats_for
from src.storage.sql import SqlLetterStore, advisory_lock, locked_letter
from src.workflow.states import NON_LIVE_STATES

logger = logging.getLogger(__name__)


def _dump(record: RequestRecord) -> dict[str, Any]:
    return record.model_dump(mode="json")


def _load(entries: list[dict[str, Any]] | None) -> list[RequestRecord]:
    return [RequestRecord.model_validate(entry) for entry in (entries or [])]


class EmbeddedRequestRepository:
    """RequestRepository over ``letters.recipient_entries``."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    @contextlib.asynccontextmanager
    async def lock(self, key: str) -> AsyncIterator[None]:
        await advisory_lock(self.db, key)
        yield

    async def _locked_letter(self, letter_id: uuid.UUID) -> Letter:
        letter = (await self.db.execute(locked_letter(letter_id))).scalar_one_or_none()
        if letter is None:
            msg = f"Letter {letter_id} does not exist"
            raise KeyError(msg)
        return letter

    async def _records_for(self, letter_id: uuid.UUID) -> list[RequestRecord]:
        letter = await self.db.get(Letter, letter_id)
        return _load(letter.recipient_entries) if letter is not None else []

    async def _all_letters(self) -> list[Letter]:
        result = await self.db.execute(
            select(Letter).where(func.jsonb_array_length(Letter.recipient_entries) > 0)
        )
        return list(result.scalars().all())

    async def add(self, record: RequestRecord) -> None:
        await self.add_many([record])

    async def add_many(self, records: list[RequestRecord]) -> None:
        by_letter: defaultdict[uuid.UUID, list[RequestRecord]] = defaultdict(list)
        for record in records:
            by_letter[record.letter_id].append(record)
        for letter_id, new_records in by_letter.items():
            letter = await self._locked_letter(letter_id)
            # reassign so the JSONB column is flagged dirty
            letter.recipient_entries = [*(letter.recipient_entries or []), *map(_dump, new_records)]
        await self.db.flush()

    async def get(self, request_id: uuid.UUID) -> RequestRecord | None:
        result = await self.db.execute(
            select(Letter).where(Letter.recipient_entries.contains([{"id": str(request_id)}]))
        )
        letter = result.scalar_one_or_none()
        if letter is None:
            return None
        for record in _load(letter.recipient_entries):
            if record.id == request_id:
                return record
        return None

    async def save(self, record: RequestRecord) -> None:
        letter = await self._locked_letter(record.letter_id)
        entries = list(letter.recipient_entries or [])
        for i, entry in enumerate(entries):
            if entry.get("id") == str(record.id):
                entries[i] = _dump(record)
                break
        else:
            msg = f"Request {record.id} is not embedded in letter {record.letter_id}"
            raise KeyError(msg)
        letter.recipient_entries = entries
        await self.db.flush()

    async def count_live(self, letter_id: uuid.UUID, kind: RequesterKind, key: str) -> int:
        return sum(
            1 for r in await self._records_for(letter_id)
            if r.status not in NON_LIVE_STATES and r.requester_kind == kind and r.requester_key == key
        )

    async def find_live_duplicate(
        self, letter_id: uuid.UUID, phone: str, kind: RequesterKind, key: str
    ) -> RequestRecord | None:
        for record in await self._records_for(letter_id):
            if record.status in NON_LIVE_STATES:
                continue
            if record.recipient.phone == phone or (record.requester_kind == kind and record.requester_key == key):
                return record
        return None

    async def _matching(
        self, filters: RequestFilters, statuses: Collection[RequestStatus] | None = None
    ) -> list[RequestRecord]:
        if filters.letter_id is not None:
            records = await self._records_for(filters.letter_id)
        else:
            records = [r for letter in await self._all_letters() for r in _load(letter.recipient_entries)]
        return [r for r in records if matches(r, filters, statuses)]

    async def query(
        self,
        filters: RequestFilters,
        offset: int = 0,
        limit: int | None = None,
        statuses: Collection[RequestStatus] | None = None,
    ) -> tuple[list[RequestRecord], int]:
        found = await self._matching(filters, statuses)
        found.sort(key=lambda r: r.created_at, reverse=True)
        end = None if limit is None else offset + limit
        return found[offset:end], len(found)

    async def status_stats(self, filters: RequestFilters) -> dict[RequestStatus, StatusStat]:
        return stats_for(await self._matching(filters))

    async def popular(self, limit: int) -> list[tuple[uuid.UUID, int, int]]:
        counts: Counter[uuid.UUID] = Counter()
        revenue: Counter[uuid.UUID] = Counter()
        for letter in await self._all_letters():
            records = _load(letter.recipient_entries)
            counts[letter.id] = len(records)
            revenue[letter.id] = sum(r.cost.total_cost for r in records)
        return [(letter_id, count, revenue[letter_id]) for letter_id, count in counts.most_common(limit)]

    async def letter_ids(self) -> list[uuid.UUID]:
        return [letter.id for letter in await self._all_letters()]


def embedded_storage(db: AsyncSession) -> Storage:
    letters = SqlLetterStore(db)
    return Storage(requests=EmbeddedRequestRepository(db), letters=letters, counters=letters)
