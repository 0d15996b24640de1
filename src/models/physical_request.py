"""PhysicalRequest model: one request to receive a printed copy of a letter.

Never deleted: cancellation and rejection are terminal statuses.
`admin_notes` is append-only.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from src.models.base import Base, TimestampMixin
from src.models.enums import RequestStatus


class PhysicalRequest(TimestampMixin, Base):
    """Ledger row for a physical-letter request."""

    __tablename__ = "physical_requests"
    __table_args__ = (
        Index("ix_physical_requests_letter_requester", "letter_id", "requester_key"),
        Index("ix_physical_requests_letter_status", "letter_id", "status"),
        CheckConstraint("total_cost = shipping_cost + letter_cost", name="ck_physical_requests_total_cost"),
    )

    letter_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("letters.id"), nullable=False, index=True
    )
    batch_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), index=True)

    # Requester identity (raw IP is never stored)
    requester_kind: Mapped[str] = mapped_column(String(20), nullable=False)
    requester_key: Mapped[str] = mapped_column(String(128), nullable=False, comment="Account id or session token")
    hashed_ip: Mapped[str | None] = mapped_column(String(64))
    user_agent: Mapped[str | None] = mapped_column(String(500))

    # Recipient
    recipient_name: Mapped[str] = mapped_column(String(50), nullable=False)
    recipient_phone: Mapped[str] = mapped_column(String(13), nullable=False, index=True)
    postal_code: Mapped[str] = mapped_column(String(5), nullable=False)
    address1: Mapped[str] = mapped_column(String(200), nullable=False)
    address2: Mapped[str] = mapped_column(String(200), default="", nullable=False)
    memo: Mapped[str] = mapped_column(String(500), default="", nullable=False)

    # Cost
    shipping_cost: Mapped[int] = mapped_column(Integer, nullable=False)
    letter_cost: Mapped[int] = mapped_column(Integer, nullable=False)
    total_cost: Mapped[int] = mapped_column(Integer, nullable=False)

    # Status
    status: Mapped[str] = mapped_column(
        String(20), default=RequestStatus.PENDING.value, nullable=False, index=True
    )
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    approved_by: Mapped[str | None] = mapped_column(String(100))
    rejected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    rejection_reason: Mapped[str | None] = mapped_column(Text)
    writing_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    failed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    failure_reason: Mapped[str | None] = mapped_column(Text)

    # Shipping
    tracking_number: Mapped[str | None] = mapped_column(String(100))
    shipping_company: Mapped[str | None] = mapped_column(String(100))
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # Audit trail: [{"note", "created_at", "created_by"}]
    admin_notes: Mapped[list[dict[str, Any]]] = mapped_column(JSONB, default=list, nullable=False)

    def __repr__(self) -> str:
        return f"<PhysicalRequest id={self.id} letter={self.letter_id} status={self.status}>"
