"""Public, requester and author endpoints for physical-letter requests.

NotFound vs. AccessDenied per endpoint:
- GET  /physical-requests/{id}            owner view: REQUEST_NOT_FOUND or ACCESS_DENIED
- GET  /physical-requests/{id}/tracking   public, masked: REQUEST_NOT_FOUND only
- POST /physical-requests/{id}/cancel     REQUEST_NOT_FOUND or ACCESS_DENIED
- author endpoints answer REQUEST_NOT_FOUND for a request of another letter
"""
# ruff: noqa: B008

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query, status

from src.api.deps import get_author, get_requester, get_workflow, parse_status, throttle_submissions
from src.schemas.requests import (
    AddressInput,
    ApprovalDecision,
    BatchSubmission,
    BatchSubmitResult,
    LetterRequestList,
    LetterSettings,
    LetterSettingsUpdate,
    LetterSummaryReport,
    PopularLetter,
    PublicRequests,
    RequestFilters,
    RequestLimitStatus,
    RequestView,
    SubmitResult,
    TrackingView,
)
from src.workflow.engine import PhysicalLetterWorkflow
from src.workflow.identity import Actor, RequesterIdentity

router = APIRouter(prefix="/api/v1", tags=["physical-requests"])


# ── Readers ──────────────────────────────────────────────────────────


@router.post(
    "/letters/{letter_id}/physical-requests",
    response_model=SubmitResult,
    status_code=status.HTTP_201_CREATED,
)
async def submit_request(
    letter_id: uuid.UUID,
    address: AddressInput,
    identity: RequesterIdentity = Depends(throttle_submissions),
    workflow: PhysicalLetterWorkflow = Depends(get_workflow),
) -> SubmitResult:
    return await workflow.submit_request(letter_id, identity, address)


@router.post(
    "/letters/{letter_id}/physical-requests/batch",
    response_model=BatchSubmitResult,
    status_code=status.HTTP_201_CREATED,
)
async def submit_batch(
    letter_id: uuid.UUID,
    body: BatchSubmission,
    identity: RequesterIdentity = Depends(throttle_submissions),
    workflow: PhysicalLetterWorkflow = Depends(get_workflow),
) -> BatchSubmitResult:
    return await workflow.submit_batch(letter_id, identity, body.recipients)


@router.get("/letters/{letter_id}/physical-requests/limit", response_model=RequestLimitStatus)
async def check_request_limit(
    letter_id: uuid.UUID,
    identity: RequesterIdentity = Depends(get_requester),
    workflow: PhysicalLetterWorkflow = Depends(get_workflow),
) -> RequestLimitStatus:
    return await workflow.check_request_limit(letter_id, identity)


@router.get("/letters/{letter_id}/physical-requests/public", response_model=PublicRequests)
async def public_requests(
    letter_id: uuid.UUID,
    limit: int | None = Query(default=None, ge=1, le=100),
    workflow: PhysicalLetterWorkflow = Depends(get_workflow),
) -> PublicRequests:
    return await workflow.get_public_requests(letter_id, limit)


@router.get("/physical-requests/popular", response_model=list[PopularLetter])
async def popular_letters(
    limit: int | None = Query(default=None, ge=1, le=100),
    workflow: PhysicalLetterWorkflow = Depends(get_workflow),
) -> list[PopularLetter]:
    return await workflow.get_popular_letters(limit)


@router.get("/physical-requests/{request_id}", response_model=RequestView)
async def get_request_status(
    request_id: uuid.UUID,
    identity: RequesterIdentity = Depends(get_requester),
    workflow: PhysicalLetterWorkflow = Depends(get_workflow),
) -> RequestView:
    return await workflow.get_request_status(request_id, identity)


@router.get("/physical-requests/{request_id}/tracking", response_model=TrackingView)
async def get_request_tracking(
    request_id: uuid.UUID,
    workflow: PhysicalLetterWorkflow = Depends(get_workflow),
) -> TrackingView:
    return await workflow.get_request_tracking(request_id)


@router.post("/physical-requests/{request_id}/cancel", response_model=RequestView)
async def cancel_request(
    request_id: uuid.UUID,
    identity: RequesterIdentity = Depends(get_requester),
    workflow: PhysicalLetterWorkflow = Depends(get_workflow),
) -> RequestView:
    return await workflow.cancel_request(request_id, identity)


# ── Authors ──────────────────────────────────────────────────────────


@router.get("/letters/{letter_id}/physical-requests", response_model=LetterRequestList)
async def list_letter_requests(
    letter_id: uuid.UUID,
    status_filter: str | None = Query(default=None, alias="status"),
    page: int = Query(default=1, ge=1),
    per_page: int = Query(default=20, ge=1, le=100),
    author: Actor = Depends(get_author),
    workflow: PhysicalLetterWorkflow = Depends(get_workflow),
) -> LetterRequestList:
    filters = RequestFilters(status=parse_status(status_filter))
    return await workflow.list_requests_for_letter(letter_id, author, filters, page, per_page)


@router.get("/letters/{letter_id}/physical-requests/summary", response_model=LetterSummaryReport)
async def letter_summary(
    letter_id: uuid.UUID,
    author: Actor = Depends(get_author),
    workflow: PhysicalLetterWorkflow = Depends(get_workflow),
) -> LetterSummaryReport:
    return await workflow.get_letter_summary(letter_id, author)


@router.post("/letters/{letter_id}/physical-requests/{request_id}/decision", response_model=RequestView)
async def decide_approval(
    letter_id: uuid.UUID,
    request_id: uuid.UUID,
    decision: ApprovalDecision,
    author: Actor = Depends(get_author),
    workflow: PhysicalLetterWorkflow = Depends(get_workflow),
) -> RequestView:
    return await workflow.decide_approval(letter_id, request_id, author, decision.action, decision.reason)


@router.patch("/letters/{letter_id}/physical-request-settings", response_model=LetterSettings)
async def update_letter_settings(
    letter_id: uuid.UUID,
    update: LetterSettingsUpdate,
    author: Actor = Depends(get_author),
    workflow: PhysicalLetterWorkflow = Depends(get_workflow),
) -> LetterSettings:
    return await workflow.update_letter_settings(letter_id, author, update)
