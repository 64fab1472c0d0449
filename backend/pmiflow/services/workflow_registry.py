"""Workflow Registry — explicit event -> workflow wiring.

Invariants:
    - Every event the API accepts has exactly one registered workflow
    - Adding a workflow requires editing build_runtime() (no auto-discovery)
"""

from datetime import timedelta

from pmiflow.config import Settings
from pmiflow.core.clock import Clock, utcnow
from pmiflow.core.repository_protocols import ComputationService, StatusStore, StepLog
from pmiflow.services.analysis_workflow import AnalysisWorkflow
from pmiflow.services.recalculation_workflow import RecalculationWorkflow
from pmiflow.services.workflow_runtime import WorkflowRuntime


def build_runtime(
    settings: Settings,
    store: StatusStore,
    step_log: StepLog,
    computation: ComputationService,
    clock: Clock = utcnow,
) -> WorkflowRuntime:
    runtime = WorkflowRuntime(
        step_log, clock=clock, lease_ttl_seconds=settings.lease_ttl_seconds,
    )
    analysis = AnalysisWorkflow(
        store, computation,
        upload_grace_period=timedelta(seconds=settings.upload_grace_period_seconds),
    )
    recalculation = RecalculationWorkflow(store, computation)

    runtime.register(analysis.definition(retries=settings.workflow_retries))
    runtime.register(recalculation.definition(retries=settings.workflow_retries))
    return runtime
