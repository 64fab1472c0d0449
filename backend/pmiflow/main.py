"""pmiflow API — FastAPI application entry point and workflow worker.

Invariants:
    - Routes registered explicitly (no auto-discovery)
    - Global error handlers map PmiflowError → structured JSON responses
    - Database, computation client, runtime, and scheduler built once in the lifespan
      and torn down in reverse order
    - The scheduler is stopped before the HTTP client and the engine are closed

Design Decisions:
    - Lifespan over @app.on_event: FastAPI recommended pattern, cleaner cleanup
    - Ingestion API and scheduler share one process: one deployable, and
      scheduler_enabled=False turns a replica into an API-only node
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from pmiflow.api.error_handlers import register_error_handlers
from pmiflow.api.routes import cases, events, health, workflows
from pmiflow.config import get_settings
from pmiflow.infrastructure.computation_client import ResilientComputationClient
from pmiflow.infrastructure.database import init_db
from pmiflow.infrastructure.observability import setup_logging
from pmiflow.infrastructure.status_store import SqlStatusStore
from pmiflow.infrastructure.step_log import SqlStepLog
from pmiflow.services.scheduler import WorkflowScheduler
from pmiflow.services.workflow_registry import build_runtime

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle."""
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_format)
    db = init_db(
        settings.database_url,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
    )
    computation = ResilientComputationClient(
        settings.computation_service_url,
        settings.computation_service_api_key,
        timeout_seconds=settings.computation_timeout_seconds,
        detect_max_attempts=settings.detect_max_attempts,
    )
    status_store = SqlStatusStore(db)
    step_log = SqlStepLog(db)
    runtime = build_runtime(settings, status_store, step_log, computation)
    scheduler = WorkflowScheduler(
        runtime, step_log,
        poll_interval_seconds=settings.scheduler_poll_interval_seconds,
        concurrency=settings.scheduler_concurrency,
        lease_ttl_seconds=settings.lease_ttl_seconds,
    )

    app.state.status_store = status_store
    app.state.step_log = step_log
    app.state.runtime = runtime
    if settings.scheduler_enabled:
        scheduler.start()
    logger.info("pmiflow started")
    yield
    logger.info("pmiflow shutting down")
    await scheduler.stop()
    await computation.aclose()
    await db.dispose()


app = FastAPI(title="pmiflow", version="1.0.0", lifespan=lifespan)

# Routes: explicit registration
app.include_router(health.router)
app.include_router(events.router)
app.include_router(workflows.router)
app.include_router(cases.router)

register_error_handlers(app)
