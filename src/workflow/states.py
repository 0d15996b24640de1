"""Request state definitions, transition map, and counter buckets.

The transition map is the single source of truth for legal moves and for
which actor may trigger each one. Counter deltas are derived from bucket
membership so cached letter counters always equal a recount of the ledger.
"""

from __future__ import annotations

from dataclasses import dataclass

from src.models.enums import ActorRole, RequestStatus
from src.schemas.requests import LetterCounters


@dataclass(frozen=True)
class Transition:
    target: RequestStatus
    actors: frozenset[ActorRole]


_REVIEWERS = frozenset({ActorRole.AUTHOR, ActorRole.ADMIN})
_ADMIN = frozenset({ActorRole.ADMIN})
_REQUESTER = frozenset({ActorRole.REQUESTER})

# Transition map: {current_state: {trigger_name: Transition}}
TRANSITIONS: dict[RequestStatus, dict[str, Transition]] = {
    RequestStatus.PENDING: {
        "approve": Transition(RequestStatus.APPROVED, _REVIEWERS),
        "reject": Transition(RequestStatus.REJECTED, _REVIEWERS),
        "cancel": Transition(RequestStatus.CANCELLED, _REQUESTER),
    },
    RequestStatus.APPROVED: {
        "mark_writing": Transition(RequestStatus.WRITING, _ADMIN),
        "cancel": Transition(RequestStatus.CANCELLED, _REQUESTER),
    },
    RequestStatus.WRITING: {
        "mark_sent": Transition(RequestStatus.SENT, _ADMIN),
        "mark_failed": Transition(RequestStatus.FAILED, _ADMIN),
        "cancel": Transition(RequestStatus.CANCELLED, _REQUESTER),
    },
    RequestStatus.SENT: {
        "mark_delivered": Transition(RequestStatus.DELIVERED, _ADMIN),
        "mark_failed": Transition(RequestStatus.FAILED, _ADMIN),
    },
    RequestStatus.REJECTED: {},
    RequestStatus.DELIVERED: {},
    RequestStatus.FAILED: {},
    RequestStatus.CANCELLED: {},
}

# Admin shipment updates name a target status; this maps it to the trigger.
TRIGGER_FOR_TARGET: dict[RequestStatus, str] = {
    RequestStatus.APPROVED: "approve",
    RequestStatus.REJECTED: "reject",
    RequestStatus.WRITING: "mark_writing",
    RequestStatus.SENT: "mark_sent",
    RequestStatus.DELIVERED: "mark_delivered",
    RequestStatus.FAILED: "mark_failed",
    RequestStatus.CANCELLED: "cancel",
}

TERMINAL_STATES: frozenset[RequestStatus] = frozenset(s for s, t in TRANSITIONS.items() if not t)

# Live requests count against the per-person limit
NON_LIVE_STATES: frozenset[RequestStatus] = frozenset({RequestStatus.CANCELLED, RequestStatus.REJECTED})
LIVE_STATES: frozenset[RequestStatus] = frozenset(s for s in RequestStatus if s not in NON_LIVE_STATES)

APPROVED_PHASE: frozenset[RequestStatus] = frozenset({
    RequestStatus.APPROVED,
    RequestStatus.WRITING,
    RequestStatus.SENT,
    RequestStatus.DELIVERED,
    RequestStatus.FAILED,
})

# counter name -> statuses counted by it
COUNTER_BUCKETS: dict[str, frozenset[RequestStatus]] = {
    "total_requests": frozenset(RequestStatus),
    "pending_requests": frozenset({RequestStatus.PENDING}),
    "approved_requests": APPROVED_PHASE,
    "rejected_requests": frozenset({RequestStatus.REJECTED}),
    "completed_requests": frozenset({RequestStatus.DELIVERED}),
    "cancelled_requests": frozenset({RequestStatus.CANCELLED}),
}


def counter_deltas(old: RequestStatus | None, new: RequestStatus) -> dict[str, int]:
    """Return the non-zero +1/-1 counter changes for moving ``old`` -> ``new``.

    ``old=None`` means a fresh submission.
    """
    deltas: dict[str, int] = {}
    for counter, bucket in COUNTER_BUCKETS.items():
        delta = int(new in bucket) - int(old is not None and old in bucket)
        if delta:
            deltas[counter] = delta
    return deltas


def recount(status_counts: dict[RequestStatus, int]) -> LetterCounters:
    """Rebuild letter counters from a status -> count grouping of the ledger."""
    values = {
        counter: sum(count for status, count in status_counts.items() if status in bucket)
        for counter, bucket in COUNTER_BUCKETS.items()
    }
    return LetterCounters(**values)
