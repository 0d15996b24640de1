"""SystemEvent schema: the core event type that flows through the entire system.

Every workflow action emits a SystemEvent. Subscribers (AuditLogger, AlertEngine)
consume these events asynchronously.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """All event types emitted by the system."""

    # Request lifecycle
    REQUEST_SUBMITTED = "request.submitted"
    REQUEST_BATCH_SUBMITTED = "request.batch_submitted"
    REQUEST_DUPLICATE = "request.duplicate"
    REQUEST_APPROVED = "request.approved"
    REQUEST_REJECTED = "request.rejected"
    REQUEST_STATUS_CHANGED = "request.status_changed"
    REQUEST_CANCELLED = "request.cancelled"
    REQUEST_FAILED = "request.failed"
    REQUEST_NOTE_ADDED = "request.note_added"

    # Policy
    RATE_LIMIT_EXCEEDED = "policy.rate_limit_exceeded"
    SUBMISSION_THROTTLED = "policy.submission_throttled"

    # Letter
    LETTER_SETTINGS_UPDATED = "letter.settings_updated"
    COUNTERS_RECONCILED = "letter.counters_reconciled"

    # Admin
    ADMIN_ACCESS = "admin.access"

    # System
    SYSTEM_STARTUP = "system.startup"
    SYSTEM_SHUTDOWN = "system.shutdown"
    SYSTEM_ERROR = "system.error"
    SYSTEM_MAINTENANCE = "system.maintenance"


class SystemEvent(BaseModel):
    """Core event that flows through the request workflow.

    Immutable once created. Consumed by:
    - AuditLogger → writes to audit_log table
    - AlertEngine → formats and pushes admin notifications
    """

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    event_type: EventType
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    # Context (optional, not every event has a letter or request)
    letter_id: uuid.UUID | None = None
    request_id: uuid.UUID | None = None
    actor_id: str | None = None
    actor_role: str | None = None

    # Flexible payload
    data: dict[str, Any] = Field(default_factory=dict)

    # Metadata
    source_module: str | None = Field(default=None, description="Module that emitted this event")

    model_config = {"frozen": True}
