"""Response Schemas — public shapes for workflow instances and analysis results."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel


class EventAccepted(BaseModel):
    """202 body for POST /events."""
    workflow_id: UUID
    workflow_name: str
    status: str
    duplicate: bool = False


class StepResponse(BaseModel):
    step_name: str
    kind: str
    output: Any = None
    wake_at: datetime | None = None
    completed_at: datetime | None = None


class WorkflowInstanceResponse(BaseModel):
    """Workflow instance with its step log, oldest step first."""
    id: UUID
    workflow_name: str
    event_name: str
    event_id: str
    case_id: str
    status: str
    attempt: int
    resume_at: datetime | None = None
    last_error: str | None = None
    result: dict | None = None
    created_at: datetime
    updated_at: datetime
    steps: list[StepResponse] = []


class AnalysisResultResponse(BaseModel):
    """Current analysis state of a case."""
    case_id: str
    status: str
    total_counts: dict | None = None
    oldest_stage_detected: str | None = None
    stage_used_for_calculation: str | None = None
    pmi_days: float | None = None
    pmi_hours: float | None = None
    pmi_minutes: float | None = None
    pmi_source_image_key: str | None = None
    temperature_provided: float | None = None
    calculated_adh: float | None = None
    ldt_used: float | None = None
    explanation: str | None = None
    updated_at: datetime | None = None
