"""Exception handlers: every error leaves the API as {"error": {code, message, details}}."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from src.admin.events import emit_safely
from src.schemas.events import EventType, SystemEvent
from src.workflow.errors import InternalError, SubmissionThrottled, ValidationError, WorkflowError

logger = logging.getLogger(__name__)


def error_response(exc: WorkflowError) -> JSONResponse:
    headers = None
    if isinstance(exc, SubmissionThrottled):
        headers = {"Retry-After": str(exc.details["retry_after"])}
    return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()}, headers=headers)


async def workflow_error_handler(request: Request, exc: WorkflowError) -> JSONResponse:
    logger.info("%s %s -> %s (%s)", request.method, request.url.path, exc.code, exc.message)
    return error_response(exc)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Map FastAPI/pydantic input errors onto VALIDATION_ERROR."""
    first = exc.errors()[0] if exc.errors() else {}
    loc = [str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path")]
    field = ".".join(loc) or "body"
    return error_response(ValidationError(field, first.get("msg", "잘못된 요청입니다.")))


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    await emit_safely(SystemEvent(
        event_type=EventType.SYSTEM_ERROR,
        data={"error": type(exc).__name__, "path": request.url.path},
        source_module="api.errors",
    ))
    return error_response(InternalError())


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(WorkflowError, workflow_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, request_validation_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, unhandled_error_handler)
