"""API test fixtures — FastAPI app over the test database, lifespan not run.

Invariants:
    - Route dependencies overridden to the SQLite-backed store, step log, and runtime
    - db_manager patched so readiness probes hit the test database
"""

import pytest
from httpx import ASGITransport, AsyncClient

import pmiflow.infrastructure.database as db_module
from pmiflow.api.dependencies import get_runtime, get_status_store, get_step_log
from pmiflow.config import Settings
from pmiflow.main import app
from pmiflow.services.workflow_registry import build_runtime


class _UnusedComputation:
    async def detect(self, case_id):
        raise AssertionError("routes must not call the computation service")

    async def recalculate(self, case_id):
        raise AssertionError("routes must not call the computation service")


@pytest.fixture
def api_runtime(status_store, step_log, clock):
    return build_runtime(
        Settings(), status_store, step_log, _UnusedComputation(), clock=clock,
    )


@pytest.fixture
async def client(db, status_store, step_log, api_runtime):
    app.dependency_overrides[get_runtime] = lambda: api_runtime
    app.dependency_overrides[get_step_log] = lambda: step_log
    app.dependency_overrides[get_status_store] = lambda: status_store

    original_manager = db_module.db_manager
    db_module.db_manager = db

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test",
    ) as c:
        yield c

    app.dependency_overrides.clear()
    db_module.db_manager = original_manager
