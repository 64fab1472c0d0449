"""Case Analysis Status — the persisted AnalysisResult polled by clients."""

from fastapi import APIRouter, Depends

from pmiflow.api.dependencies import get_status_store
from pmiflow.core.domain_types import CaseId
from pmiflow.core.errors import ErrorContext, ResourceNotFoundError
from pmiflow.core.repository_protocols import StatusStore
from pmiflow.schemas.workflow import AnalysisResultResponse

router = APIRouter(prefix="/api/v1/cases", tags=["cases"])


@router.get("/{case_id}/analysis", response_model=AnalysisResultResponse)
async def get_case_analysis(
    case_id: str, store: StatusStore = Depends(get_status_store),
):
    record = await store.get_analysis_result(CaseId(case_id))
    if record is None:
        raise ResourceNotFoundError(
            "AnalysisResult", case_id, context=ErrorContext(case_id=case_id),
        )
    return AnalysisResultResponse(**record)
