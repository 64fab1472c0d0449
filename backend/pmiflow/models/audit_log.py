"""AuditLogEntry ORM — append-only history of value changes on a case.

Invariants:
    - Rows are only ever inserted: no UPDATE or DELETE (enforced at application level)
    - Written only when old and new values differ
    - batch_id groups entries produced by the same logical change
    - (batch_id, field) is unique: replaying an audit step cannot duplicate an entry

Design Decisions:
    - JSON old/new values: structured snapshots ({minutes, hours, days}) rather than strings
    - case_id is not a foreign key: history outlives the case it describes
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, DateTime, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from pmiflow.db.base import Base


class AuditLogEntry(Base):
    """Audit log entry: one changed field within a batch."""
    __tablename__ = "audit_logs"
    __table_args__ = (
        UniqueConstraint("batch_id", "field", name="uq_audit_logs_batch_field"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    case_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    batch_id: Mapped[str] = mapped_column(String(64), nullable=False)
    field: Mapped[str] = mapped_column(String(100), nullable=False)
    old_value: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    new_value: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
