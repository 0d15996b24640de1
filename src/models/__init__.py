"""SQLAlchemy ORM models for the physical-letter request service.

Import all models here so Alembic and Base.metadata.create_all() discover them.
"""

from __future__ import annotations

from src.models.audit import AuditLog
from src.models.base import Base
from src.models.enums import (
    ActorRole,
    ApprovalAction,
    LetterType,
    RequesterKind,
    RequestStatus,
    ShippingTier,
)
from src.models.letter import Letter
from src.models.physical_request import PhysicalRequest

__all__ = [
    # Base
    "Base",
    # Models
    "Letter",
    "PhysicalRequest",
    "AuditLog",
    # Enums
    "RequestStatus",
    "RequesterKind",
    "ActorRole",
    "ApprovalAction",
    "LetterType",
    "ShippingTier",
]
