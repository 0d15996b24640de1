"""Letter request service: FastAPI app and process wiring.

Run locally with ``python -m src.main``. Startup brings up storage, the event
worker with its audit and alert subscribers, and the nightly counter sweep;
shutdown tears them down in reverse.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
import uvicorn
from fastapi import FastAPI

from src.admin.alerts import alert_engine
from src.admin.events import emit_safely, start_event_system, stop_event_system, subscribe
from src.admin.sinks import SlackWebhookSink
from src.api import admin as admin_api
from src.api import routes
from src.api.errors import register_error_handlers
from src.config import settings
from src.db.engine import db_lifespan
from src.jobs.reconcile import create_scheduler
from src.schemas.events import EventType, SystemEvent
from src.security.audit import audit_on_event


def configure_logging() -> None:
    """stdlib logging to stdout; structlog on top, JSON lines in production."""
    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
        stream=sys.stdout,
    )
    renderer = (
        structlog.processors.JSONRenderer() if settings.is_production else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
    )


configure_logging()
logger = logging.getLogger(__name__)


def register_subscribers() -> None:
    """Attach the audit log to every event and the alert engine to the ones it watches."""
    subscribe(audit_on_event)

    sink = SlackWebhookSink()
    alert_engine.set_send_fn(sink)
    subscribe(alert_engine.on_event, event_types=alert_engine.watched_types)
    if not sink.enabled:
        logger.warning("No Slack webhook configured, admin alerts are logged only")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    logger.info(
        "Letter request service starting (env=%s, mode=%s, storage=%s)",
        settings.environment,
        settings.workflow.mode,
        settings.workflow.storage_backend,
    )

    async with db_lifespan():
        register_subscribers()
        await start_event_system()

        scheduler = create_scheduler()
        scheduler.start()
        logger.info("Counter sweep scheduled daily at %02d:00 UTC", settings.workflow.reconcile_hour)
        await emit_safely(SystemEvent(
            event_type=EventType.SYSTEM_STARTUP,
            data={"mode": settings.workflow.mode, "storage": settings.workflow.storage_backend},
            source_module="main",
        ))

        try:
            yield
        finally:
            scheduler.shutdown(wait=False)
            await emit_safely(SystemEvent(event_type=EventType.SYSTEM_SHUTDOWN, source_module="main"))
            # flushes queued events so the audit log sees the last transitions
            await stop_event_system()

    logger.info("Letter request service stopped")


app = FastAPI(
    title="Physical Letter Request API",
    description="Request printed copies of digital letters: approval, pricing and shipment tracking",
    version="0.1.0",
    lifespan=lifespan,
)
register_error_handlers(app)
app.include_router(routes.router)
app.include_router(admin_api.router)


@app.get("/health")
async def health() -> dict[str, str]:
    return {
        "status": "ok",
        "mode": settings.workflow.mode,
        "storage": settings.workflow.storage_backend,
    }


if __name__ == "__main__":
    uvicorn.run(
        "src.main:app",
        host=settings.host,
        port=settings.port,
        reload=not settings.is_production,
        log_level=settings.log_level.lower(),
    )
