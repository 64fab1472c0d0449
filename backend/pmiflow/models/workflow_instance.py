"""WorkflowInstance ORM — one durable run of a workflow definition for one event.

Invariants:
    - event_id is unique: redelivered events map to the existing instance
    - status transitions: queued -> running -> (sleeping -> running)* ->
      completed | failed | cancelled; running -> queued on a retried failure
    - attempt counts failed invocations; attempt > retries means terminal failure
    - resume_at gates when a queued/sleeping instance may be driven again
    - lease_expires_at bounds how long a running instance is owned by one driver

Design Decisions:
    - payload stored as JSON: the validated event data replayed on every invocation
    - steps cascade-deleted with the instance: the step log has no meaning without it
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, DateTime, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pmiflow.db.base import Base


class WorkflowInstance(Base):
    """Workflow instance: the unit the scheduler claims and drives."""
    __tablename__ = "workflow_instances"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    workflow_name: Mapped[str] = mapped_column(String(100), nullable=False)
    event_name: Mapped[str] = mapped_column(String(100), nullable=False)
    event_id: Mapped[str] = mapped_column(
        String(255), nullable=False, unique=True,
    )
    case_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="queued", index=True,
    )
    attempt: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    resume_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    lease_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    result: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    steps: Mapped[list["WorkflowStep"]] = relationship(
        "WorkflowStep", back_populates="instance",
        cascade="all, delete-orphan", order_by="WorkflowStep.id",
    )
