"""Tests for src/storage/sql.py: row mapping and the statements sent to PostgreSQL.

The AsyncSession is mocked; statements are compiled with the PostgreSQL
dialect and inspected instead of executed.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.dialects import postgresql

from src.models.enums import RequesterKind, RequestStatus
from src.models.letter import Letter
from src.models.physical_request import PhysicalRequest
from src.schemas.requests import (
    AdminNote,
    CostBreakdown,
    LetterCounters,
    NormalizedAddress,
    RequestRecord,
    ShippingInfo,
)
from src.storage.embedded import EmbeddedRequestRepository
from src.storage.sql import (
    SqlLetterStore,
    SqlRequestRepository,
    _mutable_columns,
    advisory_lock,
    to_record,
    to_row,
)
from src.workflow.engine import build_workflow
from src.workflow.modes import AUTHOR_APPROVAL, RECIPIENT

SENT_AT = datetime(2026, 3, 2, 9, 30, tzinfo=timezone.utc)


def _record(**kwargs) -> RequestRecord:
    return RequestRecord(
        letter_id=uuid.uuid4(),
        requester_kind=RequesterKind.ACCOUNT,
        requester_key="reader-42",
        hashed_ip="f" * 64,
        recipient=NormalizedAddress(
            name="홍길동", phone="010-1234-5678", postal_code="06000", address1="서울시 강남구 역삼동", memo="문 앞"
        ),
        cost=CostBreakdown(shipping_cost=3000, letter_cost=2000, total_cost=5000),
        **kwargs,
    )


def _shipped_record() -> RequestRecord:
    return _record(
        status=RequestStatus.SENT,
        approved_at=datetime(2026, 3, 1, tzinfo=timezone.utc),
        approved_by="author-1",
        writing_at=datetime(2026, 3, 1, 12, tzinfo=timezone.utc),
        shipping=ShippingInfo(tracking_number="6070-1234-5678", shipping_company="CJ대한통운", sent_at=SENT_AT),
        admin_notes=[AdminNote(note="우체국 접수", created_at=SENT_AT, created_by="ops")],
    )


def _letter(**counters) -> Letter:
    values = {name: 0 for name in LetterCounters.model_fields}
    values.update(counters)
    return Letter(
        id=uuid.uuid4(),
        author_id="author-1",
        title="봄날의 편지",
        letter_type="story",
        allow_physical_requests=True,
        auto_approve=False,
        max_requests_per_person=5,
        recipient_entries=[],
        **values,
    )


def _session(result: MagicMock | None = None) -> AsyncMock:
    db = AsyncMock()
    db.add = MagicMock()
    db.add_all = MagicMock()
    db.execute = AsyncMock(return_value=result or MagicMock())
    return db


def _sql(db: AsyncMock) -> str:
    stmt = db.execute.call_args.args[0]
    return str(stmt.compile(dialect=postgresql.dialect()))


class TestRowMapping:
    def test_round_trip(self):
        record = _shipped_record()
        assert to_record(to_row(record)) == record

    def test_pending_round_trip(self):
        record = _record()
        restored = to_record(to_row(record))
        assert restored == record
        assert restored.shipping == ShippingInfo()
        assert restored.admin_notes == []

    def test_legacy_requested_status(self):
        row = to_row(_record())
        row.status = "requested"
        assert to_record(row).status == RequestStatus.PENDING

    def test_mutable_columns_exist_on_table(self):
        columns = set(PhysicalRequest.__table__.columns.keys())
        assert set(_mutable_columns(_shipped_record())) <= columns

    def test_identity_columns_are_not_mutable(self):
        mutable = _mutable_columns(_shipped_record())
        for column in ("letter_id", "requester_key", "recipient_phone", "total_cost", "created_at"):
            assert column not in mutable

    def test_admin_notes_stored_as_json(self):
        notes = _mutable_columns(_shipped_record())["admin_notes"]
        assert notes == [{"note": "우체국 접수", "created_at": "2026-03-02T09:30:00Z", "created_by": "ops"}]


class TestSqlRequestRepository:
    @pytest.mark.asyncio()
    async def test_add_flushes(self):
        db = _session()
        record = _record()

        await SqlRequestRepository(db).add(record)

        row = db.add.call_args.args[0]
        assert isinstance(row, PhysicalRequest)
        assert row.id == record.id
        db.flush.assert_awaited_once()

    @pytest.mark.asyncio()
    async def test_save_updates_mutable_columns_only(self):
        db = _session()
        record = _shipped_record()

        await SqlRequestRepository(db).save(record)

        stmt = db.execute.call_args.args[0]
        compiled = stmt.compile(dialect=postgresql.dialect())
        assert str(compiled).startswith("UPDATE physical_requests SET")
        assert compiled.params["status"] == "sent"
        assert compiled.params["tracking_number"] == "6070-1234-5678"
        assert compiled.params["admin_notes"][0]["created_by"] == "ops"
        assert "recipient_phone" not in compiled.params

    @pytest.mark.asyncio()
    async def test_get_missing(self):
        db = _session()
        db.get = AsyncMock(return_value=None)
        assert await SqlRequestRepository(db).get(uuid.uuid4()) is None

    @pytest.mark.asyncio()
    async def test_advisory_lock_key(self):
        db = _session()

        async with SqlRequestRepository(db).lock("request:abc"):
            pass

        assert "pg_advisory_xact_lock" in str(db.execute.call_args.args[0])
        assert db.execute.call_args.args[1] == {"key": "request:abc"}

    @pytest.mark.asyncio()
    async def test_duplicate_lookup_skips_non_live(self):
        result = MagicMock()
        result.scalar_one_or_none.return_value = None
        db = _session(result)

        found = await SqlRequestRepository(db).find_live_duplicate(
            uuid.uuid4(), "010-1234-5678", RequesterKind.ANONYMOUS, "t" * 64
        )

        assert found is None
        sql = _sql(db)
        assert "physical_requests.status NOT IN" in sql
        assert "physical_requests.recipient_phone" in sql


class TestSqlLetterStore:
    @pytest.mark.asyncio()
    async def test_empty_delta_skips_update(self):
        db = _session()
        await SqlLetterStore(db).apply(uuid.uuid4(), {})
        db.execute.assert_not_awaited()

    @pytest.mark.asyncio()
    async def test_delta_is_relative(self):
        db = _session()

        await SqlLetterStore(db).apply(uuid.uuid4(), {"total_requests": 1, "pending_requests": 1})

        sql = _sql(db)
        assert sql.startswith("UPDATE letters SET")
        assert "letters.total_requests +" in sql
        assert "letters.pending_requests +" in sql

    @pytest.mark.asyncio()
    async def test_lock_counters_selects_for_update(self):
        result = MagicMock()
        result.scalar_one_or_none.return_value = _letter(total_requests=3, pending_requests=2, cancelled_requests=1)
        db = _session(result)

        counters = await SqlLetterStore(db).lock_counters(uuid.uuid4())

        assert counters == LetterCounters(total_requests=3, pending_requests=2, cancelled_requests=1)
        stmt = db.execute.call_args.args[0]
        assert "FOR UPDATE" in _sql(db)
        assert stmt.get_execution_options()["populate_existing"] is True

    @pytest.mark.asyncio()
    async def test_lock_counters_missing_letter(self):
        result = MagicMock()
        result.scalar_one_or_none.return_value = None
        assert await SqlLetterStore(_session(result)).lock_counters(uuid.uuid4()) is None

    @pytest.mark.asyncio()
    async def test_get_many_empty(self):
        db = _session()
        assert await SqlLetterStore(db).get_many([]) == {}
        db.execute.assert_not_awaited()


class TestAdvisoryLock:
    @pytest.mark.asyncio()
    async def test_hashes_key_in_database(self):
        db = _session()
        await advisory_lock(db, "submit:letter")
        assert "hashtext(:key)" in str(db.execute.call_args.args[0])


class TestBuildWorkflow:
    @pytest.fixture
    def sql_backend(self):
        with patch("src.workflow.engine.settings") as mock_settings:
            mock_settings.workflow.storage_backend = "sql"
            mock_settings.workflow.estimated_delivery_days = 3
            yield mock_settings

    def test_recipient_mode_uses_embedded_storage(self, sql_backend):
        db = AsyncMock()
        workflow = build_workflow(db, mode=RECIPIENT)

        assert isinstance(workflow.storage.requests, EmbeddedRequestRepository)
        assert isinstance(workflow.storage.counters, SqlLetterStore)
        assert workflow.session is db

    def test_other_modes_use_table(self, sql_backend):
        db = AsyncMock()
        workflow = build_workflow(db, mode=AUTHOR_APPROVAL)

        assert isinstance(workflow.storage.requests, SqlRequestRepository)
        assert workflow.session is db
