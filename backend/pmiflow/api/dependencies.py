"""API Dependencies — services built in the lifespan, exposed to routes via app.state.

Tests override these with app.dependency_overrides instead of running the lifespan.
"""

from fastapi import Request

from pmiflow.core.repository_protocols import StatusStore, StepLog
from pmiflow.services.workflow_runtime import WorkflowRuntime


def get_runtime(request: Request) -> WorkflowRuntime:
    return request.app.state.runtime


def get_step_log(request: Request) -> StepLog:
    return request.app.state.step_log


def get_status_store(request: Request) -> StatusStore:
    return request.app.state.status_store
