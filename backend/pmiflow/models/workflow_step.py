"""WorkflowStep ORM — the event-sourced step log of a workflow instance.

Invariants:
    - (instance_id, step_name) is unique: a step resolves at most once per instance
    - kind=run rows exist only after the step function returned; output is its result
    - kind=sleep rows are written before suspending; wake_at is when the sleep resolves

Design Decisions:
    - JSON output column: any JSON-serializable step result replays verbatim
    - Autoincrement id doubles as the execution order of steps
"""

import uuid
from typing import Any
from datetime import datetime, timezone

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pmiflow.db.base import Base


class WorkflowStep(Base):
    """Persisted step result, keyed by (instance_id, step_name)."""
    __tablename__ = "workflow_steps"
    __table_args__ = (
        UniqueConstraint(
            "instance_id", "step_name", name="uq_workflow_steps_instance_step",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    instance_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("workflow_instances.id", ondelete="CASCADE"),
        nullable=False,
    )
    step_name: Mapped[str] = mapped_column(String(100), nullable=False)
    kind: Mapped[str] = mapped_column(String(10), nullable=False, default="run")
    output: Mapped[Any] = mapped_column(
        JSON, nullable=True,
    )
    wake_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    instance: Mapped["WorkflowInstance"] = relationship(
        "WorkflowInstance", back_populates="steps",
    )
