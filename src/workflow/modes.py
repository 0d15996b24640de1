"""Workflow modes: one engine, four deployment flavours.

Each mode is a combination of three knobs:
  storage           own table vs. embedded in the parent letter row
  approval          follow the letter's auto-approve setting, or always review
  max_recipients    recipients accepted in one submission
plus whether a repeat recipient is answered with the existing request.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from src.config import settings


class StorageKind(str, Enum):
    COLLECTION = "collection"
    EMBEDDED = "embedded"


class ApprovalPolicy(str, Enum):
    LETTER_SETTING = "letter_setting"
    ALWAYS_REVIEW = "always_review"


@dataclass(frozen=True)
class WorkflowMode:
    name: str
    storage: StorageKind
    approval: ApprovalPolicy
    max_recipients: int = 1
    dedup_recipients: bool = False

    @property
    def allows_batch(self) -> bool:
        return self.max_recipients > 1

    def auto_approves(self, letter_auto_approve: bool) -> bool:
        return self.approval == ApprovalPolicy.LETTER_SETTING and letter_auto_approve


AUTHOR_APPROVAL = WorkflowMode(
    name="author_approval",
    storage=StorageKind.COLLECTION,
    approval=ApprovalPolicy.LETTER_SETTING,
)
CUMULATIVE = WorkflowMode(
    name="cumulative",
    storage=StorageKind.COLLECTION,
    approval=ApprovalPolicy.ALWAYS_REVIEW,
)
MULTI_RECIPIENT = WorkflowMode(
    name="multi_recipient",
    storage=StorageKind.COLLECTION,
    approval=ApprovalPolicy.LETTER_SETTING,
    max_recipients=settings.workflow.max_recipients_per_submission,
)
RECIPIENT = WorkflowMode(
    name="recipient",
    storage=StorageKind.EMBEDDED,
    approval=ApprovalPolicy.LETTER_SETTING,
    dedup_recipients=True,
)

MODES: dict[str, WorkflowMode] = {
    mode.name: mode for mode in (AUTHOR_APPROVAL, CUMULATIVE, MULTI_RECIPIENT, RECIPIENT)
}


def get_mode(name: str) -> WorkflowMode:
    try:
        return MODES[name]
    except KeyError:
        msg = f"Unknown workflow mode: {name}. Must be one of {sorted(MODES)}"
        raise ValueError(msg) from None
