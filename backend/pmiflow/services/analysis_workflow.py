"""Analysis Workflow — first-run pipeline for `analysis/request.sent`.

Invariants:
    - Step order: wait-for-uploads → update-status-to-processing → run-full-analysis
      → (save-no-detection-result | check-if-cancelled → save-analysis-results)
    - No detections: completed with NO_DETECTION_EXPLANATION; cancellation check
      and full persistence are skipped
    - Row deleted before check-if-cancelled: instance ends cancelled, nothing written
    - on_failure sets failed with "Analysis failed: <message>"

Design Decisions:
    - Handler class with explicit store + computation dependencies (no globals),
      wired by workflow_registry.py
    - Every side effect lives inside step.run so replays never repeat it
"""

import logging
from datetime import timedelta

from pmiflow.core.detection_result import (
    NO_DETECTION_EXPLANATION, extract_result_fields, has_detections,
    summarize_detection,
)
from pmiflow.core.domain_types import AnalysisStatus, CaseId, EventName
from pmiflow.core.errors import describe_error
from pmiflow.core.repository_protocols import ComputationService, StatusStore
from pmiflow.schemas.events import AnalysisRequested
from pmiflow.services.cancellation import CancellationChecker
from pmiflow.services.workflow_runtime import (
    StepContext, WorkflowDefinition, cancelled_result,
)

logger = logging.getLogger(__name__)

ANALYSIS_WORKFLOW_NAME = "fastapi-analysis-event"


class AnalysisWorkflow:
    """Delay for uploads, detect, then persist the result (or the lack of one)."""

    def __init__(
        self, store: StatusStore, computation: ComputationService,
        upload_grace_period: timedelta = timedelta(minutes=1),
    ):
        self._store = store
        self._computation = computation
        self._cancellation = CancellationChecker(store)
        self._upload_grace_period = upload_grace_period

    def definition(self, retries: int = 2) -> WorkflowDefinition:
        return WorkflowDefinition(
            name=ANALYSIS_WORKFLOW_NAME,
            event_name=EventName.ANALYSIS_REQUESTED.value,
            handler=self.run,
            on_failure=self.on_failure,
            retries=retries,
        )

    async def run(self, event: AnalysisRequested, step: StepContext) -> dict:
        case_id = CaseId(event.data.case_id)
        log_extra = {"case_id": case_id, "workflow_id": step.workflow_id}

        await step.sleep("wait-for-uploads", self._upload_grace_period)

        await step.run(
            "update-status-to-processing",
            lambda: self._store.set_status(case_id, AnalysisStatus.PROCESSING),
        )

        detection = await step.run(
            "run-full-analysis", lambda: self._computation.detect(case_id),
        )

        if not has_detections(detection):
            logger.info("No objects detected, ending workflow early", extra=log_extra)
            await step.run(
                "save-no-detection-result",
                lambda: self._store.set_status(
                    case_id, AnalysisStatus.COMPLETED,
                    explanation=NO_DETECTION_EXPLANATION,
                ),
            )
            return {"message": "Workflow ended early: No objects detected."}

        cancelled = await step.run(
            "check-if-cancelled", lambda: self._cancellation.is_cancelled(case_id),
        )
        if cancelled:
            logger.info("Analysis cancelled by user, skipping save", extra=log_extra)
            return cancelled_result(f"Analysis cancelled for case: {case_id}")

        await step.run(
            "save-analysis-results",
            lambda: self._store.set_status(
                case_id, AnalysisStatus.COMPLETED, **extract_result_fields(detection),
            ),
        )
        summary = summarize_detection(detection)
        logger.info(
            f"Analysis completed: totalCounts={summary['total_counts']} "
            f"oldestStage={summary['oldest_stage']} pmiDays={summary['pmi_days']}",
            extra=log_extra,
        )
        return {"message": f"Successfully completed analysis for case: {case_id}"}

    async def on_failure(self, event: AnalysisRequested, error: Exception) -> None:
        case_id = CaseId(event.data.case_id)
        message = describe_error(error)
        logger.error(
            f"Analysis process failed: {message}",
            extra={"case_id": case_id, "error_code": getattr(error, "code", None)},
        )
        await self._store.set_status(
            case_id, AnalysisStatus.FAILED, explanation=f"Analysis failed: {message}",
        )
