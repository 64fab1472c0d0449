"""Domain Types — rich types that replace bare primitives across the codebase.

Invariants:
    - CaseId wraps the case identifier string: never pass bare str in domain logic
    - WorkflowId wraps the workflow instance identifier
    - All valid states encoded as Enums: no raw string matching

Design Decisions:
    - NewType over dataclass wrappers: zero runtime cost, full type-checker support
    - str Enums: serialize to JSON and compare equal to the persisted column values
"""

from enum import Enum
from typing import NewType


# ─── Identity Types ──────────────────────────────────────────────

CaseId = NewType("CaseId", str)
WorkflowId = NewType("WorkflowId", str)
BatchId = NewType("BatchId", str)


# ─── Enums ───────────────────────────────────────────────────────

class AnalysisStatus(str, Enum):
    """AnalysisResult lifecycle: maps to analysis_results.status."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class WorkflowStatus(str, Enum):
    """Workflow instance lifecycle: maps to workflow_instances.status."""
    QUEUED = "queued"
    RUNNING = "running"
    SLEEPING = "sleeping"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_WORKFLOW_STATUSES


_TERMINAL_WORKFLOW_STATUSES = frozenset({
    WorkflowStatus.COMPLETED, WorkflowStatus.FAILED, WorkflowStatus.CANCELLED,
})


class EventName(str, Enum):
    """Inbound event names that trigger workflows."""
    ANALYSIS_REQUESTED = "analysis/request.sent"
    RECALCULATION_REQUESTED = "recalculation/case.requested"


class StepKind(str, Enum):
    """Step log entry kinds."""
    RUN = "run"
    SLEEP = "sleep"


# Audit field written by the recalculation workflow
PMI_RECALCULATION_FIELD = "pmiRecalculation"
