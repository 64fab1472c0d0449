"""Service test fixtures — runtime wired to a real SQLite step log and a fake computation service.

Invariants:
    - FakeComputation never touches the network; scripts decide every response
    - drive_until_settled advances the FakeClock past sleeps and retry backoff
"""

import pytest

from pmiflow.config import Settings
from pmiflow.core.domain_types import WorkflowStatus
from pmiflow.services.workflow_registry import build_runtime


class FakeComputation:
    """Scripted ComputationService: each call pops the next item (the last one repeats).

    Items are a response dict, an Exception to raise, or an async callable
    taking case_id (for side effects such as deleting the row mid-flight).
    """

    def __init__(self):
        self.detect_script: list = []
        self.recalculate_script: list = []
        self.detect_calls: list[str] = []
        self.recalculate_calls: list[str] = []

    async def detect(self, case_id):
        self.detect_calls.append(case_id)
        return await self._next(self.detect_script, case_id)

    async def recalculate(self, case_id):
        self.recalculate_calls.append(case_id)
        return await self._next(self.recalculate_script, case_id)

    async def _next(self, script, case_id):
        item = script.pop(0) if len(script) > 1 else script[0]
        if callable(item):
            item = await item(case_id)
        if isinstance(item, Exception):
            raise item
        return item


@pytest.fixture
def computation():
    return FakeComputation()


@pytest.fixture
def settings():
    return Settings(
        upload_grace_period_seconds=60, workflow_retries=2, lease_ttl_seconds=7200,
    )


@pytest.fixture
def runtime(settings, status_store, step_log, computation, clock):
    return build_runtime(settings, status_store, step_log, computation, clock=clock)


@pytest.fixture
def drive_until_settled(clock):
    """Re-drive an instance, jumping the clock to each resume_at, until it is terminal."""

    async def _drive(runtime, workflow_id, max_drives: int = 10) -> dict:
        instance = None
        for _ in range(max_drives):
            instance = await runtime.drive(workflow_id)
            if WorkflowStatus(instance["status"]).is_terminal:
                return instance
            if instance["resume_at"] and instance["resume_at"] > clock.now:
                clock.now = instance["resume_at"]
        return instance

    return _drive
