"""Workflow Inspection — instance status plus its step log."""

from uuid import UUID

from fastapi import APIRouter, Depends

from pmiflow.api.dependencies import get_step_log
from pmiflow.core.domain_types import WorkflowId
from pmiflow.core.errors import ResourceNotFoundError
from pmiflow.core.repository_protocols import StepLog
from pmiflow.schemas.workflow import StepResponse, WorkflowInstanceResponse

router = APIRouter(prefix="/api/v1/workflows", tags=["workflows"])


@router.get("/{workflow_id}", response_model=WorkflowInstanceResponse)
async def get_workflow(
    workflow_id: UUID, step_log: StepLog = Depends(get_step_log),
):
    instance = await step_log.get_instance(WorkflowId(str(workflow_id)))
    if instance is None:
        raise ResourceNotFoundError("WorkflowInstance", str(workflow_id))
    steps = await step_log.list_steps(WorkflowId(str(workflow_id)))
    return WorkflowInstanceResponse(
        **instance, steps=[StepResponse(**step) for step in steps],
    )
