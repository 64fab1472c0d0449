"""Recalculation Workflow — PMI recomputation for `recalculation/case.requested`.

Invariants:
    - The old PMI snapshot is captured (and memoized) before the status changes
    - recalculationNeeded is cleared before the row is marked completed
    - At most one pmiRecalculation audit entry per workflow instance: batch_id is
      derived from the instance id, so a replayed audit step is a no-op
    - Missing old/new data or a missing case skips the audit without failing
    - on_failure sets failed with "Recalculation failed: <message>"
"""

import logging
import uuid

from pmiflow.core.detection_result import pmi_changed, pmi_snapshot
from pmiflow.core.domain_types import (
    PMI_RECALCULATION_FIELD, AnalysisStatus, BatchId, CaseId, EventName, WorkflowId,
)
from pmiflow.core.errors import describe_error
from pmiflow.core.repository_protocols import ComputationService, StatusStore
from pmiflow.schemas.events import RecalculationRequested
from pmiflow.services.workflow_runtime import StepContext, WorkflowDefinition

logger = logging.getLogger(__name__)

RECALCULATION_WORKFLOW_NAME = "fastapi-recalculation-event"

_AUDIT_BATCH_NAMESPACE = uuid.uuid5(uuid.NAMESPACE_URL, "pmiflow/audit-batch")


def audit_batch_id(workflow_id: WorkflowId) -> BatchId:
    """Stable batch id for the audit entries written by one workflow instance."""
    return BatchId(str(uuid.uuid5(_AUDIT_BATCH_NAMESPACE, str(workflow_id))))


class RecalculationWorkflow:
    """Snapshot old PMI, recompute, finalize, and audit-log the change."""

    def __init__(self, store: StatusStore, computation: ComputationService):
        self._store = store
        self._computation = computation

    def definition(self, retries: int = 2) -> WorkflowDefinition:
        return WorkflowDefinition(
            name=RECALCULATION_WORKFLOW_NAME,
            event_name=EventName.RECALCULATION_REQUESTED.value,
            handler=self.run,
            on_failure=self.on_failure,
            retries=retries,
        )

    async def run(self, event: RecalculationRequested, step: StepContext) -> dict:
        case_id = CaseId(event.data.case_id)

        old_pmi = await step.run(
            "capture-old-pmi-values", lambda: self._capture_pmi(case_id),
        )
        await step.run(
            "update-status-to-processing",
            lambda: self._store.set_status(case_id, AnalysisStatus.PROCESSING),
        )
        await step.run(
            "run-fastapi-recalculation",
            lambda: self._computation.recalculate(case_id),
        )
        await step.run(
            "finalize-recalculation-status", lambda: self._finalize(case_id),
        )
        await step.run(
            "create-pmi-audit-log",
            lambda: self._audit_pmi_change(
                case_id, old_pmi, audit_batch_id(step.workflow_id),
            ),
        )
        logger.info(
            "Recalculation completed",
            extra={"case_id": case_id, "workflow_id": step.workflow_id},
        )
        return {"message": f"Successfully completed recalculation for case: {case_id}"}

    async def on_failure(self, event: RecalculationRequested, error: Exception) -> None:
        case_id = CaseId(event.data.case_id)
        message = describe_error(error)
        logger.error(
            f"Recalculation process failed: {message}",
            extra={"case_id": case_id, "error_code": getattr(error, "code", None)},
        )
        await self._store.set_status(
            case_id, AnalysisStatus.FAILED,
            explanation=f"Recalculation failed: {message}",
        )

    async def _capture_pmi(self, case_id: CaseId) -> dict | None:
        return pmi_snapshot(await self._store.get_analysis_result(case_id))

    async def _finalize(self, case_id: CaseId) -> bool:
        await self._store.clear_recalculation_needed(case_id)
        return await self._store.set_status(case_id, AnalysisStatus.COMPLETED)

    async def _audit_pmi_change(
        self, case_id: CaseId, old_pmi: dict | None, batch_id: BatchId,
    ) -> dict:
        new_pmi = pmi_snapshot(await self._store.get_analysis_result(case_id))
        if old_pmi is None or new_pmi is None:
            logger.warning(
                "Missing old or new analysis data, skipping PMI audit",
                extra={"case_id": case_id},
            )
            return {"written": False, "reason": "missing_data"}
        if not pmi_changed(old_pmi, new_pmi):
            return {"written": False, "reason": "unchanged"}

        case = await self._store.get_case(case_id)
        if case is None:
            logger.warning(
                "Case not found, skipping PMI audit", extra={"case_id": case_id},
            )
            return {"written": False, "reason": "missing_case"}

        written = await self._store.insert_audit_log({
            "case_id": case_id,
            "user_id": case["user_id"],
            "batch_id": batch_id,
            "field": PMI_RECALCULATION_FIELD,
            "old_value": old_pmi,
            "new_value": new_pmi,
        })
        if written:
            logger.info(
                f"PMI changed {old_pmi['minutes']} -> {new_pmi['minutes']} minutes, "
                f"audit entry written",
                extra={"case_id": case_id},
            )
        return {"written": written, "batch_id": batch_id}
