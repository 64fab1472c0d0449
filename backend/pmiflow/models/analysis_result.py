"""AnalysisResult ORM — per-case analysis status and computed PMI values.

Invariants:
    - Exactly one row per case (case_id unique)
    - status in {pending, processing, completed, failed}; writes guarded by
      core/status_transitions.py
    - Result columns are populated only when status becomes completed
    - updated_at refreshed on every mutation
    - Row absence while a workflow runs means the user cancelled (case deleted)

Design Decisions:
    - JSON for total_counts: per-life-stage counts vary by detection model
    - PMI stored split into days/hours/minutes as the computation service returns it
"""

from datetime import datetime, timezone

from sqlalchemy import JSON, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pmiflow.db.base import Base


class AnalysisResult(Base):
    """Analysis result entity: the row polled by clients for progress."""
    __tablename__ = "analysis_results"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    case_id: Mapped[str] = mapped_column(
        String(255), ForeignKey("cases.id", ondelete="CASCADE"),
        nullable=False, unique=True,
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="pending",
    )
    total_counts: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    oldest_stage_detected: Mapped[str | None] = mapped_column(
        String(50), nullable=True,
    )
    stage_used_for_calculation: Mapped[str | None] = mapped_column(
        String(50), nullable=True,
    )
    pmi_days: Mapped[float | None] = mapped_column(Float, nullable=True)
    pmi_hours: Mapped[float | None] = mapped_column(Float, nullable=True)
    pmi_minutes: Mapped[float | None] = mapped_column(Float, nullable=True)
    pmi_source_image_key: Mapped[str | None] = mapped_column(
        Text, nullable=True,
    )
    temperature_provided: Mapped[float | None] = mapped_column(
        Float, nullable=True,
    )
    calculated_adh: Mapped[float | None] = mapped_column(Float, nullable=True)
    ldt_used: Mapped[float | None] = mapped_column(Float, nullable=True)
    explanation: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    case: Mapped["Case"] = relationship("Case", back_populates="analysis_result")
