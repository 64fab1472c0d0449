"""Boundary Protocols — contracts between workflows and the IO shell.

Invariants:
    - Workflow definitions depend on these Protocols, never on SQLAlchemy or httpx
    - All IO operations accessed through Protocol types
    - Implementations provided by infrastructure/ via dependency injection

Design Decisions:
    - Protocol over ABC: structural subtyping, tests pass plain fakes
    - Records cross the boundary as dicts: step outputs are replayed from JSON,
      so workflows only ever see JSON-shaped data
"""

from datetime import datetime
from typing import Protocol

from pmiflow.core.domain_types import (
    AnalysisStatus, CaseId, StepKind, WorkflowId, WorkflowStatus,
)


class StatusStore(Protocol):
    """Contract for AnalysisResult / Case / audit persistence."""
    async def get_analysis_result(self, case_id: CaseId) -> dict | None: ...
    async def analysis_result_exists(self, case_id: CaseId) -> bool: ...
    async def set_status(
        self, case_id: CaseId, status: AnalysisStatus, **fields: object,
    ) -> bool: ...
    async def set_explanation(self, case_id: CaseId, text: str) -> bool: ...
    async def get_case(self, case_id: CaseId) -> dict | None: ...
    async def clear_recalculation_needed(self, case_id: CaseId) -> bool: ...
    async def insert_audit_log(self, entry: dict) -> bool: ...


class StepLog(Protocol):
    """Contract for the durable workflow instance + step log."""
    async def create_instance(self, instance: dict) -> tuple[dict, bool]: ...
    async def get_instance(self, workflow_id: WorkflowId) -> dict | None: ...
    async def find_by_event_id(self, event_id: str) -> dict | None: ...
    async def update_instance(
        self, workflow_id: WorkflowId, **fields: object,
    ) -> None: ...
    async def claim(
        self, workflow_id: WorkflowId, expected_status: WorkflowStatus,
        lease_expires_at: datetime,
    ) -> bool: ...
    async def list_active_instances(self) -> list[dict]: ...
    async def get_step(
        self, workflow_id: WorkflowId, step_name: str,
    ) -> dict | None: ...
    async def save_step(
        self, workflow_id: WorkflowId, step_name: str, kind: StepKind,
        output: object = None, wake_at: datetime | None = None,
        completed: bool = True,
    ) -> None: ...
    async def list_steps(self, workflow_id: WorkflowId) -> list[dict]: ...


class ComputationService(Protocol):
    """Contract for the detection / PMI computation service."""
    async def detect(self, case_id: CaseId) -> dict: ...
    async def recalculate(self, case_id: CaseId) -> dict: ...
