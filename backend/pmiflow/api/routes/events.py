"""Event Ingestion — accepts workflow trigger events and queues workflow instances.

Invariants:
    - Malformed envelopes are rejected with 400 before any instance is created
    - A redelivered event (same id) returns the existing instance, never a second run
    - The route only queues: workflows are driven by the scheduler
"""

from typing import Any

from fastapi import APIRouter, Body, Depends, status

from pmiflow.api.dependencies import get_runtime
from pmiflow.schemas.events import parse_event
from pmiflow.schemas.workflow import EventAccepted
from pmiflow.services.workflow_runtime import WorkflowRuntime

router = APIRouter(prefix="/api/v1/events", tags=["events"])


@router.post(
    "", status_code=status.HTTP_202_ACCEPTED, response_model=EventAccepted,
)
async def ingest_event(
    payload: Any = Body(...),
    runtime: WorkflowRuntime = Depends(get_runtime),
):
    """Validate an event envelope and queue the workflow it triggers."""
    event = parse_event(payload)
    instance, created = await runtime.ingest(event)
    return EventAccepted(
        workflow_id=instance["id"],
        workflow_name=instance["workflow_name"],
        status=instance["status"],
        duplicate=not created,
    )
