"""Admin endpoints: request list, shipment lifecycle, notes, reconciliation.

All routes require HTTP Basic Auth via verify_admin. Admin views are the
only projections that include hashed IPs, user agents and admin notes.
"""
# ruff: noqa: B008

from __future__ import annotations

import uuid
from datetime import datetime

from fastapi import APIRouter, Depends, Query

from src.admin.auth import verify_admin
from src.admin.events import emit_safely
from src.api.deps import get_workflow, parse_status
from src.schemas.events import EventType, SystemEvent
from src.schemas.requests import (
    AdminRequestList,
    AdminRequestView,
    LetterCounters,
    LetterSummaryReport,
    RequestFilters,
    ShipmentUpdate,
)
from src.workflow.engine import PhysicalLetterWorkflow
from src.workflow.identity import Actor

router = APIRouter(prefix="/api/v1/admin", tags=["admin"])


async def _emit_access(admin: Actor, page: str, **data: object) -> None:
    """Emit ADMIN_ACCESS audit event for each admin read."""
    await emit_safely(SystemEvent(
        event_type=EventType.ADMIN_ACCESS,
        actor_id=admin.actor_id,
        actor_role=admin.role.value,
        data={"page": page, **data},
        source_module="api.admin",
    ))


@router.get("/physical-requests", response_model=AdminRequestList)
async def list_requests(
    status_filter: str | None = Query(default=None, alias="status"),
    letter_id: uuid.UUID | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    page: int = Query(default=1, ge=1),
    per_page: int = Query(default=20, ge=1, le=100),
    admin: Actor = Depends(verify_admin),
    workflow: PhysicalLetterWorkflow = Depends(get_workflow),
) -> AdminRequestList:
    filters = RequestFilters(
        status=parse_status(status_filter),
        letter_id=letter_id,
        date_from=date_from,
        date_to=date_to,
    )
    await _emit_access(admin, "physical_requests", page_number=page)
    return await workflow.list_all_requests(admin, filters, page, per_page)


@router.get("/physical-requests/{request_id}", response_model=AdminRequestView)
async def get_request(
    request_id: uuid.UUID,
    admin: Actor = Depends(verify_admin),
    workflow: PhysicalLetterWorkflow = Depends(get_workflow),
) -> AdminRequestView:
    await _emit_access(admin, "physical_request_detail", request_id=str(request_id))
    return await workflow.get_admin_request(request_id, admin)


@router.patch("/physical-requests/{request_id}", response_model=AdminRequestView)
async def update_shipment_status(
    request_id: uuid.UUID,
    update: ShipmentUpdate,
    admin: Actor = Depends(verify_admin),
    workflow: PhysicalLetterWorkflow = Depends(get_workflow),
) -> AdminRequestView:
    return await workflow.update_shipment_status(request_id, admin, update)


@router.get("/letters/{letter_id}/summary", response_model=LetterSummaryReport)
async def letter_summary(
    letter_id: uuid.UUID,
    admin: Actor = Depends(verify_admin),
    workflow: PhysicalLetterWorkflow = Depends(get_workflow),
) -> LetterSummaryReport:
    return await workflow.get_letter_summary(letter_id, admin)


@router.post("/letters/{letter_id}/reconcile", response_model=LetterCounters)
async def reconcile_letter(
    letter_id: uuid.UUID,
    admin: Actor = Depends(verify_admin),
    workflow: PhysicalLetterWorkflow = Depends(get_workflow),
) -> LetterCounters:
    return await workflow.reconcile_counters(letter_id)
