"""Event Schemas — the two inbound events that trigger workflows.

Invariants:
    - Events are a tagged union on `name`; unknown names are rejected
    - data.caseId is a non-empty, non-blank string (no coercion from numbers)
    - `id` is optional; when present it is the idempotency key for ingestion
    - parse_event() is the single validation boundary: failures become InvalidEventError

Design Decisions:
    - Wire names camelCase (caseId) via alias, Python names snake_case
    - Literal names duplicated from EventName so pydantic can discriminate natively;
      tests pin them to the enum values
"""

from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from pmiflow.core.errors import InvalidEventError, field_error_details


class CasePayload(BaseModel):
    """Event data: the case the workflow operates on."""
    model_config = ConfigDict(populate_by_name=True)

    case_id: str = Field(alias="caseId", min_length=1, max_length=255, strict=True)

    @field_validator("case_id")
    @classmethod
    def reject_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("caseId cannot be empty or whitespace")
        return v


class AnalysisRequested(BaseModel):
    """Fresh analysis of a case's uploaded images."""
    id: str | None = Field(None, min_length=1, max_length=255)
    name: Literal["analysis/request.sent"]
    data: CasePayload


class RecalculationRequested(BaseModel):
    """PMI recomputation after case parameters changed."""
    id: str | None = Field(None, min_length=1, max_length=255)
    name: Literal["recalculation/case.requested"]
    data: CasePayload


WorkflowEventModel = AnalysisRequested | RecalculationRequested

WorkflowEvent = Annotated[
    Union[AnalysisRequested, RecalculationRequested],
    Field(discriminator="name"),
]

_event_adapter: TypeAdapter[WorkflowEventModel] = TypeAdapter(WorkflowEvent)


def parse_event(raw: object) -> WorkflowEventModel:
    """Validate an inbound event envelope."""
    try:
        return _event_adapter.validate_python(raw)
    except ValidationError as e:
        raise InvalidEventError(
            "Malformed workflow event", details=field_error_details(e.errors()),
        ) from e
