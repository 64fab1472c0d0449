"""Root conftest — shared test configuration and database fixtures.

Invariants:
    - Every test gets a fresh file-backed SQLite database under tmp_path
    - Time is a FakeClock: tests advance it explicitly, nothing waits on the wall clock

Design Decisions:
    - File SQLite over :memory:: concurrent drives use separate pooled connections,
      which an in-memory database cannot share
"""

import os
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.ext.asyncio import create_async_engine

# Ensure tests never reach a real computation service or database
os.environ.setdefault("COMPUTATION_SERVICE_URL", "http://computation.test")
os.environ.setdefault("COMPUTATION_SERVICE_API_KEY", "test-api-key")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///test.db")
os.environ.setdefault("SCHEDULER_ENABLED", "false")

import pmiflow.models  # noqa: E402,F401
from pmiflow.db.base import Base  # noqa: E402
from pmiflow.infrastructure.database import DatabaseSessionManager  # noqa: E402
from pmiflow.infrastructure.status_store import SqlStatusStore  # noqa: E402
from pmiflow.infrastructure.step_log import SqlStepLog  # noqa: E402
from pmiflow.models.analysis_result import AnalysisResult  # noqa: E402
from pmiflow.models.case import Case  # noqa: E402


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
async def test_engine(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'pmiflow.db'}", echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def db(test_engine):
    return DatabaseSessionManager.from_engine(test_engine)


@pytest.fixture
def status_store(db, clock):
    return SqlStatusStore(db, clock=clock)


@pytest.fixture
def step_log(db, clock):
    return SqlStepLog(db, clock=clock)


@pytest.fixture
def seed_case(db):
    """Insert a Case plus its AnalysisResult row (created pending by the web app)."""

    async def _seed(
        case_id: str = "c1", user_id: str = "u1", status: str = "pending",
        recalculation_needed: bool = False, **result_fields,
    ) -> None:
        async with db.session() as session:
            session.add(Case(
                id=case_id, user_id=user_id,
                recalculation_needed=recalculation_needed,
            ))
            session.add(AnalysisResult(case_id=case_id, status=status, **result_fields))
            await session.commit()

    return _seed
