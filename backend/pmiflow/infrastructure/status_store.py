"""Status Store — SQLAlchemy adapter for AnalysisResult, Case, and audit log persistence.

Invariants:
    - Every write is a single-row statement scoped by case_id, committed immediately
    - set_status only applies from statuses allowed by core/status_transitions.py;
      an illegal transition on an existing row raises InvalidStatusTransitionError
    - Writes against a missing row return False (the case was deleted): never raise
    - updated_at is refreshed on every AnalysisResult mutation
    - Audit log entries are insert-only; a (batch_id, field) pair is written once

Design Decisions:
    - Guarded UPDATE (WHERE status IN allowed sources): check and write are one
      atomic statement, no row lock held across the workflow
    - Records returned as dicts: workflows persist them as step outputs (JSON)
    - clock injectable so tests can assert timestamps deterministically
"""

import logging
from datetime import datetime

from sqlalchemy import select, update

from pmiflow.core.clock import Clock, utcnow
from pmiflow.core.domain_types import AnalysisStatus, CaseId
from pmiflow.core.status_transitions import allowed_sources, check_transition
from pmiflow.infrastructure.database import DatabaseSessionManager
from pmiflow.models.analysis_result import AnalysisResult
from pmiflow.models.audit_log import AuditLogEntry
from pmiflow.models.case import Case

logger = logging.getLogger(__name__)

RESULT_FIELDS: frozenset[str] = frozenset({
    "total_counts", "oldest_stage_detected", "stage_used_for_calculation",
    "pmi_days", "pmi_hours", "pmi_minutes", "pmi_source_image_key",
    "temperature_provided", "calculated_adh", "ldt_used", "explanation",
})


def _analysis_to_dict(row: AnalysisResult) -> dict:
    record = {"case_id": row.case_id, "status": row.status}
    for name in sorted(RESULT_FIELDS):
        record[name] = getattr(row, name)
    record["updated_at"] = row.updated_at.isoformat() if row.updated_at else None
    return record


class SqlStatusStore:
    """StatusStore implementation over the shared DatabaseSessionManager."""

    def __init__(
        self, db: DatabaseSessionManager,
        clock: Clock = utcnow,
    ):
        self._db = db
        self._clock = clock

    # ─── AnalysisResult ────────────────────────────────────────

    async def get_analysis_result(self, case_id: CaseId) -> dict | None:
        async with self._db.session() as db:
            result = await db.execute(
                select(AnalysisResult).where(AnalysisResult.case_id == case_id),
            )
            row = result.scalar_one_or_none()
            return _analysis_to_dict(row) if row else None

    async def analysis_result_exists(self, case_id: CaseId) -> bool:
        async with self._db.session() as db:
            result = await db.execute(
                select(AnalysisResult.case_id).where(
                    AnalysisResult.case_id == case_id,
                ),
            )
            return result.scalar_one_or_none() is not None

    async def set_status(
        self, case_id: CaseId, status: AnalysisStatus, **fields: object,
    ) -> bool:
        """Write status (plus result fields) if the transition is allowed."""
        target = AnalysisStatus(status)
        unknown = set(fields) - RESULT_FIELDS
        if unknown:
            raise ValueError(f"Unknown AnalysisResult fields: {sorted(unknown)}")
        sources = [s.value for s in allowed_sources(target)]

        async with self._db.session() as db:
            result = await db.execute(
                update(AnalysisResult)
                .where(
                    AnalysisResult.case_id == case_id,
                    AnalysisResult.status.in_(sources),
                )
                .values(status=target.value, updated_at=self._clock(), **fields)
                .execution_options(synchronize_session=False),
            )
            await db.commit()
            if result.rowcount:
                return True

            current = (await db.execute(
                select(AnalysisResult.status).where(
                    AnalysisResult.case_id == case_id,
                ),
            )).scalar_one_or_none()

        if current is None:
            logger.warning(
                f"AnalysisResult missing, status '{target.value}' not written",
                extra={"case_id": case_id, "status": target.value},
            )
            return False
        check_transition(current, target)
        # Row changed between the guarded update and the re-read
        logger.warning(
            f"AnalysisResult status changed concurrently to '{current}'",
            extra={"case_id": case_id, "status": target.value},
        )
        return False

    async def set_explanation(self, case_id: CaseId, text: str) -> bool:
        async with self._db.session() as db:
            result = await db.execute(
                update(AnalysisResult)
                .where(AnalysisResult.case_id == case_id)
                .values(explanation=text, updated_at=self._clock())
                .execution_options(synchronize_session=False),
            )
            await db.commit()
            return bool(result.rowcount)

    # ─── Case ──────────────────────────────────────────────────

    async def get_case(self, case_id: CaseId) -> dict | None:
        async with self._db.session() as db:
            result = await db.execute(
                select(Case.id, Case.user_id, Case.recalculation_needed)
                .where(Case.id == case_id),
            )
            row = result.one_or_none()
            if row is None:
                return None
            return {
                "id": row.id,
                "user_id": row.user_id,
                "recalculation_needed": row.recalculation_needed,
            }

    async def clear_recalculation_needed(self, case_id: CaseId) -> bool:
        async with self._db.session() as db:
            result = await db.execute(
                update(Case)
                .where(Case.id == case_id)
                .values(recalculation_needed=False)
                .execution_options(synchronize_session=False),
            )
            await db.commit()
            return bool(result.rowcount)

    # ─── Audit log ─────────────────────────────────────────────

    async def insert_audit_log(self, entry: dict) -> bool:
        """Append one audit entry. Returns False if the (batch_id, field) pair exists."""
        async with self._db.session() as db:
            existing = await db.execute(
                select(AuditLogEntry.id).where(
                    AuditLogEntry.batch_id == entry["batch_id"],
                    AuditLogEntry.field == entry["field"],
                ),
            )
            if existing.scalar_one_or_none() is not None:
                logger.info(
                    "Audit entry already written for batch, skipping",
                    extra={"case_id": entry["case_id"]},
                )
                return False
            db.add(AuditLogEntry(
                case_id=entry["case_id"],
                user_id=entry["user_id"],
                batch_id=entry["batch_id"],
                field=entry["field"],
                old_value=entry.get("old_value"),
                new_value=entry.get("new_value"),
                timestamp=self._clock(),
            ))
            await db.commit()
            return True
