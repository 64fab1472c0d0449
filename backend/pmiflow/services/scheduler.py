"""Workflow Scheduler — polls the step log and drives due instances as asyncio tasks.

Invariants:
    - An instance is driven only after a successful compare-and-set claim, so two
      schedulers (or two ticks) never drive the same instance concurrently
    - Only the oldest non-terminal instance of a case is eligible (core/scheduling.py)
    - At most `concurrency` drives in flight per scheduler
    - A crashing drive is logged; the instance lease expires and it is re-claimed
    - stop() cancels in-flight drives; the runtime hands them back as queued

Design Decisions:
    - Polling over LISTEN/NOTIFY: works on any SQL backend, sleep wake-ups are
      just rows whose resume_at passed
    - tick() and drain() are public so tests step the scheduler deterministically
"""

import asyncio
import logging
from datetime import timedelta

from pmiflow.core.clock import Clock, utcnow
from pmiflow.core.domain_types import WorkflowId, WorkflowStatus
from pmiflow.core.repository_protocols import StepLog
from pmiflow.core.scheduling import select_due_instances
from pmiflow.services.workflow_runtime import WorkflowRuntime

logger = logging.getLogger(__name__)


class WorkflowScheduler:
    """Background loop: claim due workflow instances and drive them."""

    def __init__(
        self,
        runtime: WorkflowRuntime,
        step_log: StepLog,
        poll_interval_seconds: float = 1.0,
        concurrency: int = 10,
        lease_ttl_seconds: float = 2 * 60 * 60,
        clock: Clock = utcnow,
    ):
        self._runtime = runtime
        self._log = step_log
        self.poll_interval_seconds = poll_interval_seconds
        self.concurrency = concurrency
        self._lease_ttl = timedelta(seconds=lease_ttl_seconds)
        self._clock = clock
        self._active: dict[str, asyncio.Task] = {}
        self._loop_task: asyncio.Task | None = None
        self._stopping: asyncio.Event | None = None

    @property
    def active_count(self) -> int:
        return len(self._active)

    async def tick(self) -> list[asyncio.Task]:
        """Claim and start every due instance that fits in the concurrency budget."""
        capacity = self.concurrency - len(self._active)
        if capacity <= 0:
            return []

        now = self._clock()
        candidates = select_due_instances(await self._log.list_active_instances(), now)
        started: list[asyncio.Task] = []
        for instance in candidates:
            if len(started) >= capacity:
                break
            workflow_id = instance["id"]
            if workflow_id in self._active:
                continue
            claimed = await self._log.claim(
                WorkflowId(workflow_id),
                WorkflowStatus(instance["status"]),
                now + self._lease_ttl,
            )
            if not claimed:
                continue
            if instance["status"] == WorkflowStatus.RUNNING.value:
                logger.warning(
                    "Re-claimed instance with expired lease",
                    extra={"workflow_id": workflow_id, "case_id": instance["case_id"]},
                )
            task = asyncio.create_task(
                self._drive(instance), name=f"workflow-{workflow_id}",
            )
            self._active[workflow_id] = task
            task.add_done_callback(
                lambda _t, wid=workflow_id: self._active.pop(wid, None),
            )
            started.append(task)
        return started

    async def drain(self) -> None:
        """Wait for every in-flight drive to finish."""
        while self._active:
            await asyncio.gather(*list(self._active.values()), return_exceptions=True)

    async def run_until_idle(self, max_ticks: int = 100) -> None:
        """Tick and drain until nothing is due. Instances sleeping into the future stay put."""
        for _ in range(max_ticks):
            started = await self.tick()
            if not started:
                return
            await self.drain()

    async def _drive(self, instance: dict) -> None:
        try:
            await self._runtime.drive(WorkflowId(instance["id"]))
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.error(
                "Workflow drive crashed, instance will be re-claimed after lease expiry",
                extra={"workflow_id": instance["id"], "case_id": instance["case_id"]},
                exc_info=True,
            )

    # ─── Lifecycle ─────────────────────────────────────────────

    def start(self) -> None:
        if self._loop_task is not None:
            return
        self._stopping = asyncio.Event()
        self._loop_task = asyncio.create_task(self._run_forever(), name="workflow-scheduler")
        logger.info(
            f"Scheduler started (poll={self.poll_interval_seconds}s, "
            f"concurrency={self.concurrency})",
        )

    async def stop(self) -> None:
        if self._loop_task is None:
            return
        self._stopping.set()
        await self._loop_task
        self._loop_task = None
        for task in list(self._active.values()):
            task.cancel()
        await asyncio.gather(*list(self._active.values()), return_exceptions=True)
        logger.info("Scheduler stopped")

    async def _run_forever(self) -> None:
        while not self._stopping.is_set():
            try:
                await self.tick()
            except Exception:
                logger.error("Scheduler tick failed", exc_info=True)
            try:
                await asyncio.wait_for(
                    self._stopping.wait(), timeout=self.poll_interval_seconds,
                )
            except asyncio.TimeoutError:
                pass
