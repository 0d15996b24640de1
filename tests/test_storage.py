"""Tests for storage wiring, the in-memory backend and workflow modes."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone

import pytest

from src.models.enums import RequesterKind, RequestStatus
from src.schemas.requests import CostBreakdown, NormalizedAddress, RequestFilters, RequestRecord
from src.storage import build_storage, shared_memory_storage
from src.storage.memory import InMemoryRequestRepository
from src.workflow.modes import AUTHOR_APPROVAL, CUMULATIVE, MULTI_RECIPIENT, RECIPIENT, StorageKind, get_mode


def _record(letter_id: uuid.UUID, key: str = "t" * 64, phone: str = "010-1234-5678", **kwargs) -> RequestRecord:
    return RequestRecord(
        letter_id=letter_id,
        requester_kind=RequesterKind.ANONYMOUS,
        requester_key=key,
        recipient=NormalizedAddress(name="홍길동", phone=phone, postal_code="06000", address1="서울시 강남구 역삼동"),
        cost=CostBreakdown(shipping_cost=3000, letter_cost=2000, total_cost=5000),
        **kwargs,
    )


class TestBuildStorage:
    def test_memory_is_shared(self):
        assert build_storage("memory") is shared_memory_storage()

    def test_sql_needs_session(self):
        with pytest.raises(ValueError, match="needs a database session"):
            build_storage("sql")

    def test_unknown_backend(self):
        with pytest.raises(ValueError, match="Unknown storage backend"):
            build_storage("mongo", db=object())


class TestInMemoryRepository:
    @pytest.mark.asyncio()
    async def test_records_are_copied(self):
        repo = InMemoryRequestRepository()
        record = _record(uuid.uuid4())
        await repo.add(record)

        fetched = await repo.get(record.id)
        fetched.status = RequestStatus.CANCELLED

        assert (await repo.get(record.id)).status == RequestStatus.PENDING

    @pytest.mark.asyncio()
    async def test_save_unknown_record(self):
        with pytest.raises(KeyError):
            await InMemoryRequestRepository().save(_record(uuid.uuid4()))

    @pytest.mark.asyncio()
    async def test_count_live_skips_cancelled_and_rejected(self):
        repo = InMemoryRequestRepository()
        letter_id = uuid.uuid4()
        await repo.add_many([
            _record(letter_id),
            _record(letter_id, status=RequestStatus.CANCELLED),
            _record(letter_id, status=RequestStatus.REJECTED),
            _record(letter_id, status=RequestStatus.FAILED),
            _record(letter_id, key="u" * 64),
        ])

        assert await repo.count_live(letter_id, RequesterKind.ANONYMOUS, "t" * 64) == 2

    @pytest.mark.asyncio()
    async def test_find_live_duplicate_by_phone(self):
        repo = InMemoryRequestRepository()
        letter_id = uuid.uuid4()
        existing = _record(letter_id)
        await repo.add(existing)

        found = await repo.find_live_duplicate(letter_id, "010-1234-5678", RequesterKind.ANONYMOUS, "u" * 64)
        assert found.id == existing.id
        assert await repo.find_live_duplicate(letter_id, "010-0000-0000", RequesterKind.ANONYMOUS, "u" * 64) is None

    @pytest.mark.asyncio()
    async def test_query_newest_first_with_paging(self):
        repo = InMemoryRequestRepository()
        letter_id = uuid.uuid4()
        base = datetime(2026, 3, 1, tzinfo=timezone.utc)
        records = [_record(letter_id, created_at=base + timedelta(hours=i)) for i in range(3)]
        await repo.add_many(records)

        page, total = await repo.query(RequestFilters(letter_id=letter_id), offset=1, limit=1)

        assert total == 3
        assert [r.id for r in page] == [records[1].id]

    @pytest.mark.asyncio()
    async def test_status_stats(self):
        repo = InMemoryRequestRepository()
        letter_id = uuid.uuid4()
        await repo.add_many([
            _record(letter_id),
            _record(letter_id),
            _record(letter_id, status=RequestStatus.SENT),
            _record(uuid.uuid4()),
        ])

        stats = await repo.status_stats(RequestFilters(letter_id=letter_id))

        assert stats[RequestStatus.PENDING].count == 2
        assert stats[RequestStatus.PENDING].total_cost == 10000
        assert stats[RequestStatus.SENT].count == 1


class TestModes:
    def test_lookup(self):
        assert get_mode("recipient") is RECIPIENT

    def test_unknown_mode(self):
        with pytest.raises(ValueError, match="Unknown workflow mode"):
            get_mode("express")

    def test_knobs(self):
        assert AUTHOR_APPROVAL.auto_approves(True) is True
        assert CUMULATIVE.auto_approves(True) is False
        assert MULTI_RECIPIENT.allows_batch is True
        assert AUTHOR_APPROVAL.allows_batch is False
        assert RECIPIENT.storage == StorageKind.EMBEDDED
        assert RECIPIENT.dedup_recipients is True
