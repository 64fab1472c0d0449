"""Workflow Runtime — durable, event-triggered workflows built from memoized steps.

Invariants:
    - A completed step's output is persisted before the next step starts; on re-drive
      the stored output is returned and the step function is NOT re-executed
    - Step names are unique within one workflow run (a repeat raises ValueError)
    - sleep() persists its wake-up time once; re-drives never push it further out
    - A workflow is retried `retries` times after the first failure, spaced by
      backoff_delay_ms(attempt); only then does on_failure run and the instance fail
    - Exceptions from on_failure are logged, never re-raised into the runtime
    - Every completed step extends the instance lease (heartbeat)
    - One event_id produces at most one workflow instance

Design Decisions:
    - Explicit registration (register()) over decorators: every event->workflow
      mapping visible in workflow_registry.py (ADR: no auto-discovery)
    - Suspension by exception: sleep() unwinds the handler, the scheduler re-drives
      it after wake_at and completed steps replay from the log
    - Handlers receive the typed event model, rehydrated from the stored payload
"""

import asyncio
import inspect
import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from pmiflow.core.backoff import backoff_delay_ms
from pmiflow.core.clock import Clock, utcnow
from pmiflow.core.domain_types import StepKind, WorkflowId, WorkflowStatus
from pmiflow.core.errors import (
    ResourceNotFoundError, WorkflowNotRegisteredError, describe_error,
)
from pmiflow.core.repository_protocols import StepLog
from pmiflow.schemas.events import WorkflowEventModel, parse_event

logger = logging.getLogger(__name__)

WorkflowHandler = Callable[[WorkflowEventModel, "StepContext"], Awaitable[dict | None]]
FailureHook = Callable[[WorkflowEventModel, Exception], Awaitable[None]]


def cancelled_result(message: str) -> dict:
    """Handler return value that ends the instance as cancelled instead of completed."""
    return {"message": message, "cancelled": True}


class WorkflowSuspended(Exception):
    """Raised by StepContext.sleep() to unwind a handler until wake_at."""

    def __init__(self, step_name: str, wake_at: datetime):
        super().__init__(f"Workflow suspended at '{step_name}' until {wake_at.isoformat()}")
        self.step_name = step_name
        self.wake_at = wake_at


@dataclass(frozen=True)
class WorkflowDefinition:
    """A named workflow bound to the event that triggers it."""
    name: str
    event_name: str
    handler: WorkflowHandler
    on_failure: FailureHook | None = None
    retries: int = 2


class StepContext:
    """Step API handed to workflow handlers for a single drive of one instance."""

    def __init__(
        self, step_log: StepLog, instance: dict,
        clock: Clock, lease_ttl: timedelta,
    ):
        self._log = step_log
        self._instance = instance
        self._clock = clock
        self._lease_ttl = lease_ttl
        self._seen: set[str] = set()

    @property
    def workflow_id(self) -> WorkflowId:
        return WorkflowId(self._instance["id"])

    @property
    def attempt(self) -> int:
        return self._instance["attempt"]

    def _claim_name(self, name: str) -> None:
        if name in self._seen:
            raise ValueError(f"Step name '{name}' used twice in one workflow run")
        self._seen.add(name)

    async def run(self, name: str, fn: Callable[[], Any]) -> Any:
        """Execute fn once per instance; later drives return the stored output."""
        self._claim_name(name)
        record = await self._log.get_step(self.workflow_id, name)
        if record is not None and record["completed_at"] is not None:
            logger.debug(
                f"Replaying step '{name}' from log",
                extra={
                    "workflow_id": self.workflow_id,
                    "step_name": name,
                    "replay": True,
                },
            )
            return record["output"]

        output = fn()
        if inspect.isawaitable(output):
            output = await output

        await self._log.save_step(self.workflow_id, name, StepKind.RUN, output=output)
        await self._log.update_instance(
            self.workflow_id, lease_expires_at=self._clock() + self._lease_ttl,
        )
        logger.info(
            f"Step '{name}' completed",
            extra={"workflow_id": self.workflow_id, "step_name": name},
        )
        return output

    async def sleep(self, name: str, duration: timedelta) -> None:
        """Durable sleep: suspends the workflow until the persisted wake-up time."""
        self._claim_name(name)
        now = self._clock()
        record = await self._log.get_step(self.workflow_id, name)
        if record is not None and record["completed_at"] is not None:
            return

        if record is None:
            wake_at = now + duration
            await self._log.save_step(
                self.workflow_id, name, StepKind.SLEEP,
                wake_at=wake_at, completed=False,
            )
        else:
            wake_at = record["wake_at"]

        if now < wake_at:
            raise WorkflowSuspended(name, wake_at)
        await self._log.save_step(
            self.workflow_id, name, StepKind.SLEEP, wake_at=wake_at,
        )


class WorkflowRuntime:
    """Registry of workflow definitions plus the drive loop for one instance."""

    def __init__(
        self,
        step_log: StepLog,
        clock: Clock = utcnow,
        lease_ttl_seconds: float = 2 * 60 * 60,
    ):
        self._log = step_log
        self._clock = clock
        self._lease_ttl = timedelta(seconds=lease_ttl_seconds)
        self._by_name: dict[str, WorkflowDefinition] = {}
        self._by_event: dict[str, WorkflowDefinition] = {}

    @property
    def step_log(self) -> StepLog:
        return self._log

    def register(self, definition: WorkflowDefinition) -> None:
        if definition.name in self._by_name:
            raise ValueError(f"Workflow '{definition.name}' already registered")
        if definition.event_name in self._by_event:
            raise ValueError(
                f"Event '{definition.event_name}' already triggers "
                f"'{self._by_event[definition.event_name].name}'",
            )
        self._by_name[definition.name] = definition
        self._by_event[definition.event_name] = definition

    def definition_for_event(self, event_name: str) -> WorkflowDefinition:
        definition = self._by_event.get(event_name)
        if definition is None:
            raise WorkflowNotRegisteredError(event_name)
        return definition

    def definition_named(self, workflow_name: str) -> WorkflowDefinition:
        definition = self._by_name.get(workflow_name)
        if definition is None:
            raise WorkflowNotRegisteredError(workflow_name)
        return definition

    # ─── Ingestion ─────────────────────────────────────────────

    async def ingest(self, event: WorkflowEventModel) -> tuple[dict, bool]:
        """Create the instance for an event. Returns (instance, created)."""
        definition = self.definition_for_event(event.name)
        event_id = event.id or str(uuid.uuid4())

        existing = await self._log.find_by_event_id(event_id)
        if existing is not None:
            self._log_duplicate(existing, event_id, event)
            return existing, False

        payload = event.model_dump(by_alias=True, mode="json")
        payload["id"] = event_id
        instance, created = await self._log.create_instance({
            "workflow_name": definition.name,
            "event_name": event.name,
            "event_id": event_id,
            "case_id": event.data.case_id,
            "payload": payload,
        })
        if not created:
            self._log_duplicate(instance, event_id, event)
            return instance, False

        logger.info(
            f"Workflow '{definition.name}' queued",
            extra={
                "workflow_id": instance["id"],
                "workflow_name": definition.name,
                "event_name": event.name,
                "case_id": event.data.case_id,
            },
        )
        return instance, True

    @staticmethod
    def _log_duplicate(instance: dict, event_id: str, event: WorkflowEventModel) -> None:
        logger.info(
            f"Duplicate event '{event_id}', returning existing workflow",
            extra={
                "workflow_id": instance["id"],
                "event_name": event.name,
                "case_id": event.data.case_id,
            },
        )

    # ─── Driving ───────────────────────────────────────────────

    async def drive(self, workflow_id: WorkflowId) -> dict:
        """Run one instance from its log until it completes, suspends, or fails."""
        instance = await self._log.get_instance(workflow_id)
        if instance is None:
            raise ResourceNotFoundError("WorkflowInstance", str(workflow_id))
        if WorkflowStatus(instance["status"]).is_terminal:
            return instance

        definition = self.definition_named(instance["workflow_name"])
        event = parse_event(instance["payload"])
        await self._log.update_instance(
            workflow_id,
            status=WorkflowStatus.RUNNING.value,
            lease_expires_at=self._clock() + self._lease_ttl,
        )
        step = StepContext(self._log, instance, self._clock, self._lease_ttl)
        log_extra = {
            "workflow_id": instance["id"],
            "workflow_name": definition.name,
            "case_id": instance["case_id"],
            "attempt": instance["attempt"],
        }

        try:
            result = await definition.handler(event, step)
        except WorkflowSuspended as suspended:
            await self._log.update_instance(
                workflow_id,
                status=WorkflowStatus.SLEEPING.value,
                resume_at=suspended.wake_at,
                lease_expires_at=None,
            )
            logger.info(str(suspended), extra=log_extra)
        except asyncio.CancelledError:
            # Shutdown: hand the instance back so another worker resumes it now
            await self._log.update_instance(
                workflow_id,
                status=WorkflowStatus.QUEUED.value,
                resume_at=self._clock(),
                lease_expires_at=None,
            )
            raise
        except Exception as e:
            await self._handle_failure(definition, instance, event, e, log_extra)
        else:
            await self._complete(workflow_id, result or {}, log_extra)

        return await self._log.get_instance(workflow_id)

    async def _complete(
        self, workflow_id: WorkflowId, result: dict, log_extra: dict,
    ) -> None:
        status = (
            WorkflowStatus.CANCELLED if result.get("cancelled")
            else WorkflowStatus.COMPLETED
        )
        await self._log.update_instance(
            workflow_id,
            status=status.value,
            result=result,
            resume_at=None,
            lease_expires_at=None,
        )
        logger.info(
            f"Workflow {status.value}: {result.get('message', '')}",
            extra={**log_extra, "status": status.value},
        )

    async def _handle_failure(
        self, definition: WorkflowDefinition, instance: dict,
        event: WorkflowEventModel, error: Exception, log_extra: dict,
    ) -> None:
        workflow_id = WorkflowId(instance["id"])
        attempt = instance["attempt"] + 1
        message = describe_error(error)

        if attempt <= definition.retries:
            delay = backoff_delay_ms(attempt)
            await self._log.update_instance(
                workflow_id,
                status=WorkflowStatus.QUEUED.value,
                attempt=attempt,
                last_error=message,
                resume_at=self._clock() + timedelta(milliseconds=delay),
                lease_expires_at=None,
            )
            logger.warning(
                f"Workflow attempt failed, retry {attempt}/{definition.retries} "
                f"in {delay}ms: {message}",
                extra={**log_extra, "max_attempts": definition.retries + 1, "delay_ms": delay},
            )
            return

        logger.error(
            f"Workflow failed after {attempt} attempts: {message}",
            extra={**log_extra, "error_code": getattr(error, "code", None)},
            exc_info=error,
        )
        if definition.on_failure is not None:
            try:
                await definition.on_failure(event, error)
            except Exception:
                logger.error(
                    "Failure hook raised", extra=log_extra, exc_info=True,
                )
        await self._log.update_instance(
            workflow_id,
            status=WorkflowStatus.FAILED.value,
            attempt=attempt,
            last_error=message,
            resume_at=None,
            lease_expires_at=None,
        )
