"""Error taxonomy for the request workflow.

Every error carries a stable machine-readable ``code``, a human-readable
message, the HTTP status the API layer maps it to, and a ``details`` dict
with enough context to correct the input (field name, limits, statuses).
"""

from __future__ import annotations

from typing import Any


class WorkflowError(Exception):
    """Base class for all workflow errors."""

    code: str = "WORKFLOW_ERROR"
    status_code: int = 400

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details: dict[str, Any] = details

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class ValidationError(WorkflowError):
    """Malformed input. Detected before any write; never persisted."""

    code = "VALIDATION_ERROR"
    status_code = 400

    def __init__(self, field: str, message: str, **details: Any) -> None:
        super().__init__(message, field=field, **details)
        self.field = field


class RateLimitExceeded(WorkflowError):
    code = "RATE_LIMIT_EXCEEDED"
    status_code = 429

    def __init__(self, limit: int, current: int, requested: int = 1) -> None:
        super().__init__(
            f"1인당 최대 {limit}개까지만 신청할 수 있습니다. (현재 {current}개)",
            limit=limit,
            current=current,
            requested=requested,
        )


class SubmissionThrottled(WorkflowError):
    code = "SUBMISSION_THROTTLED"
    status_code = 429

    def __init__(self, retry_after: int) -> None:
        super().__init__("요청이 너무 많습니다. 잠시 후 다시 시도해주세요.", retry_after=retry_after)


class LetterNotFound(WorkflowError):
    code = "LETTER_NOT_FOUND"
    status_code = 404

    def __init__(self, letter_id: Any) -> None:
        super().__init__("편지를 찾을 수 없습니다.", letter_id=str(letter_id))


class RequestNotFound(WorkflowError):
    code = "REQUEST_NOT_FOUND"
    status_code = 404

    def __init__(self, request_id: Any) -> None:
        super().__init__("신청을 찾을 수 없습니다.", request_id=str(request_id))


class AccessDenied(WorkflowError):
    code = "ACCESS_DENIED"
    status_code = 403

    def __init__(self, message: str = "접근 권한이 없습니다.") -> None:
        super().__init__(message)


class NotAuthor(AccessDenied):
    code = "NOT_AUTHOR"

    def __init__(self) -> None:
        super().__init__("편지 작성자만 접근할 수 있습니다.")


class RequestsNotAllowed(WorkflowError):
    code = "REQUESTS_NOT_ALLOWED"
    status_code = 403

    def __init__(self, letter_id: Any) -> None:
        super().__init__("이 편지는 실물 편지 신청이 허용되지 않습니다.", letter_id=str(letter_id))


class InvalidTransition(WorkflowError):
    code = "INVALID_TRANSITION"
    status_code = 409

    def __init__(self, current: str, requested: str, message: str | None = None) -> None:
        super().__init__(
            message or f"'{current}' 상태에서 '{requested}' 상태로 변경할 수 없습니다.",
            current_status=current,
            requested_status=requested,
        )


class AlreadyTerminal(InvalidTransition):
    code = "ALREADY_TERMINAL"

    def __init__(self, current: str, requested: str) -> None:
        super().__init__(current, requested, f"이미 종료된 신청입니다. 현재 상태: {current}")


class AlreadyProcessed(WorkflowError):
    code = "ALREADY_PROCESSED"
    status_code = 409

    def __init__(self, current: str) -> None:
        super().__init__("이미 처리된 신청입니다.", current_status=current)


class InternalError(WorkflowError):
    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str = "일시적인 오류가 발생했습니다.") -> None:
        super().__init__(message)
