"""Pydantic schemas for physical-letter requests.

Three layers:
- inputs (AddressInput, ShipmentUpdate, ApprovalDecision, LetterSettingsUpdate)
- the domain record the engine mutates and repositories persist (RequestRecord)
- scoped read views (RequestView < AdminRequestView, TrackingView, PublicRequestItem)

Privacy boundary: only AdminRequestView carries the hashed IP, user agent and
admin notes. Requester tokens never leave the service in any view.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator

from src.admin.formatters import mask_name, mask_phone
from src.config import settings
from src.models.enums import RequesterKind, RequestStatus, ShippingTier


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------


class AddressInput(BaseModel):
    """Raw recipient address as submitted by a reader."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = ""
    phone: str = ""
    postal_code: str = Field(
        default="",
        validation_alias=AliasChoices("postal_code", "postalCode", "zip_code", "zipCode"),
    )
    address1: str = ""
    address2: str | None = None
    memo: str | None = None


class BatchSubmission(BaseModel):
    recipients: list[AddressInput]


class ApprovalDecision(BaseModel):
    action: str
    reason: str | None = Field(default=None, max_length=500)


class ShipmentUpdate(BaseModel):
    """Admin update: a status change, a note, or both."""

    status: str | None = None
    tracking_number: str | None = Field(default=None, max_length=100)
    shipping_company: str | None = Field(default=None, max_length=100)
    failure_reason: str | None = Field(default=None, max_length=500)
    note: str | None = Field(default=None, max_length=1000)


class LetterSettingsUpdate(BaseModel):
    allow_physical_requests: bool | None = None
    auto_approve: bool | None = None
    max_requests_per_person: int | None = Field(default=None, ge=1, le=50)
    approval_message: str | None = Field(default=None, max_length=500)


class RequestFilters(BaseModel):
    status: RequestStatus | None = None
    letter_id: uuid.UUID | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None


# ---------------------------------------------------------------------------
# Domain record
# ---------------------------------------------------------------------------


class NormalizedAddress(BaseModel):
    name: str
    phone: str
    postal_code: str
    address1: str
    address2: str = ""
    memo: str = ""


class CostBreakdown(BaseModel):
    shipping_cost: int = Field(ge=0)
    letter_cost: int = Field(ge=0)
    total_cost: int = Field(ge=0)
    tier: ShippingTier | None = None

    @model_validator(mode="after")
    def _check_total(self) -> CostBreakdown:
        if self.total_cost != self.shipping_cost + self.letter_cost:
            msg = "total_cost must equal shipping_cost + letter_cost"
            raise ValueError(msg)
        return self


class ShippingInfo(BaseModel):
    tracking_number: str | None = None
    shipping_company: str | None = None
    sent_at: datetime | None = None
    delivered_at: datetime | None = None


class AdminNote(BaseModel):
    model_config = ConfigDict(frozen=True)

    note: str
    created_at: datetime
    created_by: str


class RequestRecord(BaseModel):
    """One physical-letter request as the workflow engine sees it."""

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    letter_id: uuid.UUID
    batch_id: uuid.UUID | None = None

    requester_kind: RequesterKind
    requester_key: str
    hashed_ip: str | None = None
    user_agent: str | None = None

    recipient: NormalizedAddress
    cost: CostBreakdown

    status: RequestStatus = RequestStatus.PENDING
    approved_at: datetime | None = None
    approved_by: str | None = None
    rejected_at: datetime | None = None
    rejection_reason: str | None = None
    writing_at: datetime | None = None
    cancelled_at: datetime | None = None
    failed_at: datetime | None = None
    failure_reason: str | None = None

    shipping: ShippingInfo = Field(default_factory=ShippingInfo)
    admin_notes: list[AdminNote] = Field(default_factory=list)

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def estimated_delivery(self, days: int) -> datetime | None:
        if self.status == RequestStatus.SENT and self.shipping.sent_at is not None:
            return self.shipping.sent_at + timedelta(days=days)
        return None


# ---------------------------------------------------------------------------
# Letter snapshot
# ---------------------------------------------------------------------------


class LetterSettings(BaseModel):
    allow_physical_requests: bool = True
    auto_approve: bool = False
    max_requests_per_person: int = Field(default_factory=lambda: settings.workflow.default_max_requests_per_person)
    approval_message: str | None = None


class LetterCounters(BaseModel):
    total_requests: int = 0
    pending_requests: int = 0
    approved_requests: int = 0
    rejected_requests: int = 0
    completed_requests: int = 0
    cancelled_requests: int = 0


class LetterSnapshot(BaseModel):
    id: uuid.UUID
    author_id: str | None = None
    title: str = ""
    letter_type: str | None = None
    settings: LetterSettings = Field(default_factory=LetterSettings)
    counters: LetterCounters = Field(default_factory=LetterCounters)


# ---------------------------------------------------------------------------
# Views
# ---------------------------------------------------------------------------


class RequestView(BaseModel):
    """Requester/author-scoped view."""

    request_id: uuid.UUID
    letter_id: uuid.UUID
    batch_id: uuid.UUID | None = None
    status: RequestStatus
    recipient: NormalizedAddress
    cost: CostBreakdown
    shipping: ShippingInfo
    approved_at: datetime | None = None
    rejected_at: datetime | None = None
    rejection_reason: str | None = None
    cancelled_at: datetime | None = None
    estimated_delivery: datetime | None = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def _base_fields(cls, record: RequestRecord, delivery_days: int) -> dict[str, Any]:
        return {
            "request_id": record.id,
            "letter_id": record.letter_id,
            "batch_id": record.batch_id,
            "status": record.status,
            "recipient": record.recipient,
            "cost": record.cost,
            "shipping": record.shipping,
            "approved_at": record.approved_at,
            "rejected_at": record.rejected_at,
            "rejection_reason": record.rejection_reason,
            "cancelled_at": record.cancelled_at,
            "estimated_delivery": record.estimated_delivery(delivery_days),
            "created_at": record.created_at,
            "updated_at": record.updated_at,
        }

    @classmethod
    def from_record(cls, record: RequestRecord, delivery_days: int = 3) -> RequestView:
        return cls(**cls._base_fields(record, delivery_days))


class AdminRequestView(RequestView):
    """Admin-scoped view: adds requester fingerprint and the audit trail."""

    requester_kind: RequesterKind
    hashed_ip: str | None = None
    user_agent: str | None = None
    approved_by: str | None = None
    failure_reason: str | None = None
    admin_notes: list[AdminNote] = Field(default_factory=list)
    letter_title: str | None = None

    @classmethod
    def from_record(
        cls, record: RequestRecord, delivery_days: int = 3, letter_title: str | None = None
    ) -> AdminRequestView:
        return cls(
            **cls._base_fields(record, delivery_days),
            requester_kind=record.requester_kind,
            hashed_ip=record.hashed_ip,
            user_agent=record.user_agent,
            approved_by=record.approved_by,
            failure_reason=record.failure_reason,
            admin_notes=list(record.admin_notes),
            letter_title=letter_title,
        )


class StatusHistory(BaseModel):
    requested: datetime
    approved: datetime | None = None
    writing: datetime | None = None
    sent: datetime | None = None
    delivered: datetime | None = None


class TrackingView(BaseModel):
    """Public tracking view: no identity check, so everything personal is masked."""

    request_id: uuid.UUID
    letter_id: uuid.UUID
    letter_title: str | None = None
    status: RequestStatus
    recipient_name: str
    recipient_phone: str
    history: StatusHistory
    can_track: bool
    shipping_company: str | None = None
    tracking_number: str | None = None
    estimated_delivery: datetime | None = None

    @classmethod
    def from_record(
        cls, record: RequestRecord, delivery_days: int = 3, letter_title: str | None = None
    ) -> TrackingView:
        can_track = record.status in (RequestStatus.SENT, RequestStatus.DELIVERED)
        return cls(
            request_id=record.id,
            letter_id=record.letter_id,
            letter_title=letter_title,
            status=record.status,
            recipient_name=mask_name(record.recipient.name),
            recipient_phone=mask_phone(record.recipient.phone),
            history=StatusHistory(
                requested=record.created_at,
                approved=record.approved_at,
                writing=record.writing_at,
                sent=record.shipping.sent_at,
                delivered=record.shipping.delivered_at,
            ),
            can_track=can_track,
            shipping_company=record.shipping.shipping_company if can_track else None,
            tracking_number=record.shipping.tracking_number if can_track else None,
            estimated_delivery=record.estimated_delivery(delivery_days),
        )


class PublicRequestItem(BaseModel):
    recipient_name: str
    approved_at: datetime | None = None
    cost: int


class PublicSummary(BaseModel):
    total_requests: int
    approved_requests: int
    pending_requests: int
    allow_new_requests: bool


class PublicRequests(BaseModel):
    approved_requests: list[PublicRequestItem]
    summary: PublicSummary


# ---------------------------------------------------------------------------
# Operation results
# ---------------------------------------------------------------------------


class SubmitResult(BaseModel):
    request_id: uuid.UUID
    total_cost: int
    status: RequestStatus
    needs_approval: bool
    cost: CostBreakdown
    is_duplicate: bool = False


class BatchSubmitResult(BaseModel):
    batch_id: uuid.UUID
    letter_id: uuid.UUID
    total_recipients: int
    total_cost: int
    requests: list[SubmitResult]


class RequestLimitStatus(BaseModel):
    can_request: bool
    remaining_requests: int
    max_requests_per_person: int
    current_request_count: int


class Pagination(BaseModel):
    page: int
    per_page: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool

    @classmethod
    def build(cls, page: int, per_page: int, total: int) -> Pagination:
        total_pages = (total + per_page - 1) // per_page if per_page > 0 else 0
        return cls(
            page=page,
            per_page=per_page,
            total=total,
            total_pages=total_pages,
            has_next=page < total_pages,
            has_prev=page > 1,
        )


class LetterRequestSummary(BaseModel):
    total_requests: int
    status_counts: dict[str, int]
    total_cost: int
    approved_cost: int


class LetterRequestList(BaseModel):
    items: list[RequestView]
    summary: LetterRequestSummary
    pagination: Pagination
    settings: LetterSettings | None = None


class StatusStat(BaseModel):
    count: int
    total_cost: int


class AdminRequestList(BaseModel):
    items: list[AdminRequestView]
    stats: dict[str, StatusStat]
    pagination: Pagination


class LetterSummaryReport(BaseModel):
    letter_id: uuid.UUID
    summary: LetterRequestSummary
    cached_counters: LetterCounters
    ledger_counters: LetterCounters
    drift: bool


class PopularLetter(BaseModel):
    letter_id: uuid.UUID
    title: str | None = None
    letter_type: str | None = None
    request_count: int
    total_revenue: int
    avg_cost: int
