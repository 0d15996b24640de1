"""Counter reconciliation: daily sweep that recomputes letter counters from the ledger.

The per-letter counters are a cache maintained with +1/-1 deltas; the
ledger is authoritative. This job regroups the ledger by status for every
letter that has requests and overwrites any counter that drifted (for
example after a crash between a ledger write and its counter update).

Idempotent: running twice in a row corrects nothing the second time.
Wired into the FastAPI lifespan via APScheduler.
"""

from __future__ import annotations

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from src.admin.events import emit, publish_deferred
from src.config import settings
from src.db.engine import async_session_factory
from src.schemas.events import EventType, SystemEvent
from src.workflow.engine import build_workflow

logger = logging.getLogger(__name__)

JOB_ID = "reconcile_counters"


async def reconcile_all_letters() -> dict[str, int]:
    """Reconcile every letter in one transaction. Returns a summary dict."""
    summary = {"letters_checked": 0, "letters_corrected": 0}

    try:
        async with async_session_factory() as db:
            workflow = build_workflow(db)
            summary = await workflow.reconcile_all()
            await db.commit()
            await publish_deferred(db)
    except Exception:
        logger.exception("Counter reconciliation job failed")
        return summary

    await emit(SystemEvent(
        event_type=EventType.SYSTEM_MAINTENANCE,
        data={"action": "reconcile_counters", **summary},
        source_module="jobs.reconcile",
    ))

    logger.info(
        "Reconciliation complete: checked=%d corrected=%d",
        summary["letters_checked"],
        summary["letters_corrected"],
    )
    return summary


def create_scheduler() -> AsyncIOScheduler:
    """Scheduler with the daily reconciliation job registered (not started)."""
    scheduler = AsyncIOScheduler(timezone="UTC")
    scheduler.add_job(
        reconcile_all_letters,
        trigger=CronTrigger(hour=settings.workflow.reconcile_hour, minute=0),
        id=JOB_ID,
        replace_existing=True,
        coalesce=True,
        max_instances=1,
    )
    return scheduler
