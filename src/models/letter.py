"""Letter model: the parent letter a physical copy is requested for.

Only the columns the request workflow reads or writes are mapped here:
author settings, the denormalized aggregate counters, and the embedded
recipient array used by the ``recipient`` workflow mode.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import Boolean, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from src.config import settings
from src.models.base import Base, TimestampMixin
from src.models.enums import LetterType


class Letter(TimestampMixin, Base):
    """A digital letter/story that readers may request printed copies of."""

    __tablename__ = "letters"

    author_id: Mapped[str | None] = mapped_column(String(100), index=True, comment="Account id of the author")
    title: Mapped[str] = mapped_column(String(100), nullable=False)
    og_title: Mapped[str | None] = mapped_column(String(200))
    letter_type: Mapped[str] = mapped_column(String(20), default=LetterType.FRIEND.value, nullable=False)
    author_name: Mapped[str | None] = mapped_column(String(100))

    # Author settings
    allow_physical_requests: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    auto_approve: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    max_requests_per_person: Mapped[int] = mapped_column(
        Integer, default=lambda: settings.workflow.default_max_requests_per_person, nullable=False
    )
    approval_message: Mapped[str | None] = mapped_column(Text)

    # Aggregate counters (cache of the ledger, reconciled by jobs.reconcile)
    total_requests: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    pending_requests: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    approved_requests: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    rejected_requests: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    completed_requests: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    cancelled_requests: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Embedded ledger for the "recipient" workflow mode
    recipient_entries: Mapped[list[dict[str, Any]]] = mapped_column(JSONB, default=list, nullable=False)

    @property
    def display_title(self) -> str:
        return self.og_title or self.title

    def __repr__(self) -> str:
        return f"<Letter id={self.id} title={self.title!r} total_requests={self.total_requests}>"
