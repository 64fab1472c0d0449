"""Case ORM — the forensic case record, as far as the workflows need it.

Invariants:
    - id is the case identifier shared with analysis_results.case_id
    - recalculation_needed is cleared only by a successful recalculation workflow
    - user_id attributes audit log entries to the case owner

Design Decisions:
    - Only the referenced columns are mapped: the rest of the case schema belongs
      to the web application, not to this service
"""

from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pmiflow.db.base import Base


class Case(Base):
    """Case aggregate root: owns one AnalysisResult."""
    __tablename__ = "cases"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    recalculation_needed: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    analysis_result: Mapped["AnalysisResult | None"] = relationship(
        "AnalysisResult", back_populates="case",
        cascade="all, delete-orphan", uselist=False, lazy="selectin",
    )
