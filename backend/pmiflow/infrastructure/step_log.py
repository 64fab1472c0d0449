"""Step Log — SQLAlchemy adapter for durable workflow instances and their memoized steps.

Invariants:
    - A step row exists for (instance_id, step_name) at most once
    - One instance per event_id: create_instance() returns the existing row when
      a concurrent insert of the same event wins the unique constraint
    - claim() is compare-and-set: it succeeds only if the instance is still in the
      expected status AND due (resume_at passed, or lease expired for running)
    - Datetimes leave this module timezone-aware (UTC), whatever the driver returns
    - Instances and steps cross the boundary as dicts with string ids

Design Decisions:
    - Event-sourced step log in the primary database: no extra infrastructure
      for durability, one transaction per write
    - Per-statement sessions: no transaction spans a step function or an HTTP call
"""

import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError

from pmiflow.core.clock import Clock, utcnow
from pmiflow.core.domain_types import StepKind, WorkflowId, WorkflowStatus
from pmiflow.infrastructure.database import DatabaseSessionManager
from pmiflow.models.workflow_instance import WorkflowInstance
from pmiflow.models.workflow_step import WorkflowStep

logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = frozenset({
    "status", "attempt", "resume_at", "lease_expires_at", "last_error", "result",
})
_ACTIVE_STATUSES = (
    WorkflowStatus.QUEUED.value,
    WorkflowStatus.RUNNING.value,
    WorkflowStatus.SLEEPING.value,
)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on round-trip)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _instance_to_dict(row: WorkflowInstance) -> dict:
    return {
        "id": str(row.id),
        "workflow_name": row.workflow_name,
        "event_name": row.event_name,
        "event_id": row.event_id,
        "case_id": row.case_id,
        "payload": row.payload,
        "status": row.status,
        "attempt": row.attempt,
        "resume_at": as_utc(row.resume_at),
        "lease_expires_at": as_utc(row.lease_expires_at),
        "last_error": row.last_error,
        "result": row.result,
        "created_at": as_utc(row.created_at),
        "updated_at": as_utc(row.updated_at),
    }


def _step_to_dict(row: WorkflowStep) -> dict:
    return {
        "step_name": row.step_name,
        "kind": row.kind,
        "output": row.output,
        "wake_at": as_utc(row.wake_at),
        "completed_at": as_utc(row.completed_at),
    }


class SqlStepLog:
    """StepLog implementation over the shared DatabaseSessionManager."""

    def __init__(
        self, db: DatabaseSessionManager,
        clock: Clock = utcnow,
    ):
        self._db = db
        self._clock = clock

    # ─── Instances ─────────────────────────────────────────────

    async def create_instance(self, instance: dict) -> tuple[dict, bool]:
        """Insert a queued instance. Returns (instance, created).

        A concurrent insert of the same event_id loses on the unique constraint
        and gets the winner's row back with created=False.
        """
        now = self._clock()
        row = WorkflowInstance(
            workflow_name=instance["workflow_name"],
            event_name=instance["event_name"],
            event_id=instance["event_id"],
            case_id=instance["case_id"],
            payload=instance.get("payload") or {},
            status=instance.get("status", WorkflowStatus.QUEUED.value),
            attempt=0,
            resume_at=instance.get("resume_at", now),
            created_at=now,
            updated_at=now,
        )
        async with self._db.session() as db:
            db.add(row)
            try:
                await db.commit()
            except IntegrityError:
                await db.rollback()
                result = await db.execute(
                    select(WorkflowInstance).where(
                        WorkflowInstance.event_id == instance["event_id"],
                    ),
                )
                existing = result.scalar_one_or_none()
                if existing is None:
                    raise
                logger.info(
                    "Lost insert race for event, returning existing instance",
                    extra={"workflow_id": str(existing.id), "case_id": existing.case_id},
                )
                return _instance_to_dict(existing), False
            return _instance_to_dict(row), True

    async def get_instance(self, workflow_id: WorkflowId) -> dict | None:
        async with self._db.session() as db:
            row = await db.get(WorkflowInstance, uuid.UUID(str(workflow_id)))
            return _instance_to_dict(row) if row else None

    async def find_by_event_id(self, event_id: str) -> dict | None:
        async with self._db.session() as db:
            result = await db.execute(
                select(WorkflowInstance).where(WorkflowInstance.event_id == event_id),
            )
            row = result.scalar_one_or_none()
            return _instance_to_dict(row) if row else None

    async def update_instance(self, workflow_id: WorkflowId, **fields: object) -> None:
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown WorkflowInstance fields: {sorted(unknown)}")
        async with self._db.session() as db:
            await db.execute(
                update(WorkflowInstance)
                .where(WorkflowInstance.id == uuid.UUID(str(workflow_id)))
                .values(updated_at=self._clock(), **fields)
                .execution_options(synchronize_session=False),
            )
            await db.commit()

    async def claim(
        self, workflow_id: WorkflowId, expected_status: WorkflowStatus,
        lease_expires_at: datetime,
    ) -> bool:
        """Atomically move a due instance to running under a fresh lease."""
        now = self._clock()
        expected = WorkflowStatus(expected_status)
        conditions = [
            WorkflowInstance.id == uuid.UUID(str(workflow_id)),
            WorkflowInstance.status == expected.value,
        ]
        if expected is WorkflowStatus.RUNNING:
            conditions.append(WorkflowInstance.lease_expires_at <= now)
        else:
            conditions.append(or_(
                WorkflowInstance.resume_at.is_(None),
                WorkflowInstance.resume_at <= now,
            ))
        async with self._db.session() as db:
            result = await db.execute(
                update(WorkflowInstance)
                .where(*conditions)
                .values(
                    status=WorkflowStatus.RUNNING.value,
                    lease_expires_at=lease_expires_at,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False),
            )
            await db.commit()
            return bool(result.rowcount)

    async def list_active_instances(self) -> list[dict]:
        """Non-terminal instances, oldest first."""
        async with self._db.session() as db:
            result = await db.execute(
                select(WorkflowInstance)
                .where(WorkflowInstance.status.in_(_ACTIVE_STATUSES))
                .order_by(WorkflowInstance.created_at, WorkflowInstance.id),
            )
            return [_instance_to_dict(row) for row in result.scalars().all()]

    # ─── Steps ─────────────────────────────────────────────────

    async def get_step(self, workflow_id: WorkflowId, step_name: str) -> dict | None:
        async with self._db.session() as db:
            result = await db.execute(
                select(WorkflowStep).where(
                    WorkflowStep.instance_id == uuid.UUID(str(workflow_id)),
                    WorkflowStep.step_name == step_name,
                ),
            )
            row = result.scalar_one_or_none()
            return _step_to_dict(row) if row else None

    async def save_step(
        self, workflow_id: WorkflowId, step_name: str, kind: StepKind,
        output: object = None, wake_at: datetime | None = None,
        completed: bool = True,
    ) -> None:
        instance_id = uuid.UUID(str(workflow_id))
        completed_at = self._clock() if completed else None
        async with self._db.session() as db:
            result = await db.execute(
                select(WorkflowStep).where(
                    WorkflowStep.instance_id == instance_id,
                    WorkflowStep.step_name == step_name,
                ),
            )
            row = result.scalar_one_or_none()
            if row is None:
                db.add(WorkflowStep(
                    instance_id=instance_id,
                    step_name=step_name,
                    kind=StepKind(kind).value,
                    output=output,
                    wake_at=wake_at,
                    completed_at=completed_at,
                ))
            else:
                row.output = output
                row.wake_at = wake_at
                row.completed_at = completed_at
            await db.commit()

    async def list_steps(self, workflow_id: WorkflowId) -> list[dict]:
        async with self._db.session() as db:
            result = await db.execute(
                select(WorkflowStep)
                .where(WorkflowStep.instance_id == uuid.UUID(str(workflow_id)))
                .order_by(WorkflowStep.id),
            )
            return [_step_to_dict(row) for row in result.scalars().all()]
