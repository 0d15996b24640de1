"""Domain enums used across SQLAlchemy models and Pydantic schemas.

All enums use str mixin for JSON serialization; stored as plain strings.
"""

from __future__ import annotations

from enum import Enum


class RequestStatus(str, Enum):
    """Lifecycle of a physical-letter request."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    WRITING = "writing"
    SENT = "sent"
    DELIVERED = "delivered"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @classmethod
    def parse(cls, value: str) -> RequestStatus:
        """Accept the legacy ``requested`` spelling for ``pending``."""
        if value == "requested":
            return cls.PENDING
        return cls(value)


class RequesterKind(str, Enum):
    """Who submitted a request: signed-in account or anonymous browser session."""

    ACCOUNT = "account"
    ANONYMOUS = "anonymous"


class ActorRole(str, Enum):
    """Roles allowed to drive transitions."""

    SYSTEM = "system"
    REQUESTER = "requester"
    AUTHOR = "author"
    ADMIN = "admin"


class ApprovalAction(str, Enum):
    """Author/admin decision on a pending request."""

    APPROVE = "approve"
    REJECT = "reject"


class LetterType(str, Enum):
    """Kind of parent letter."""

    STORY = "story"
    FRIEND = "friend"


class ShippingTier(str, Enum):
    """Postal-code shipping tiers."""

    METRO = "metro"
    STANDARD = "standard"
    REMOTE = "remote"
