"""Status Store — guarded AnalysisResult writes, Case updates, audit inserts.

Tests:
    - set_status applies allowed transitions with result fields and updated_at
    - Illegal transitions raise InvalidStatusTransitionError, row untouched
    - Writes against a missing row return False
    - insert_audit_log writes a (batch_id, field) pair once
"""

import pytest
from sqlalchemy import delete, func, select

from pmiflow.core.domain_types import AnalysisStatus
from pmiflow.core.errors import InvalidStatusTransitionError
from pmiflow.models.analysis_result import AnalysisResult
from pmiflow.models.audit_log import AuditLogEntry


async def test_set_status_writes_status_and_fields(status_store, seed_case, clock):
    await seed_case("c1")
    assert await status_store.set_status("c1", AnalysisStatus.PROCESSING)

    clock.advance(30)
    assert await status_store.set_status(
        "c1", AnalysisStatus.COMPLETED,
        total_counts={"adult": 3}, oldest_stage_detected="adult", pmi_minutes=3600.0,
    )

    record = await status_store.get_analysis_result("c1")
    assert record["status"] == "completed"
    assert record["total_counts"] == {"adult": 3}
    assert record["oldest_stage_detected"] == "adult"
    assert record["pmi_minutes"] == 3600.0
    assert record["updated_at"].startswith("2026-03-01T12:00:30")


async def test_illegal_transition_raises_and_leaves_row(status_store, seed_case):
    await seed_case("c1", status="completed")
    with pytest.raises(InvalidStatusTransitionError):
        await status_store.set_status("c1", AnalysisStatus.FAILED, explanation="nope")

    record = await status_store.get_analysis_result("c1")
    assert record["status"] == "completed"
    assert record["explanation"] is None


async def test_completed_requires_processing(status_store, seed_case):
    await seed_case("c1", status="pending")
    with pytest.raises(InvalidStatusTransitionError):
        await status_store.set_status("c1", AnalysisStatus.COMPLETED)


async def test_recalculation_may_reopen_completed_row(status_store, seed_case):
    await seed_case("c1", status="completed")
    assert await status_store.set_status("c1", AnalysisStatus.PROCESSING)


async def test_set_status_on_missing_row_returns_false(status_store):
    assert await status_store.set_status("ghost", AnalysisStatus.PROCESSING) is False


async def test_unknown_field_rejected(status_store, seed_case):
    await seed_case("c1")
    with pytest.raises(ValueError):
        await status_store.set_status("c1", AnalysisStatus.PROCESSING, user_id="x")


async def test_exists_reflects_deletion(status_store, seed_case, db):
    await seed_case("c1")
    assert await status_store.analysis_result_exists("c1")

    async with db.session() as session:
        await session.execute(delete(AnalysisResult).where(AnalysisResult.case_id == "c1"))
        await session.commit()

    assert not await status_store.analysis_result_exists("c1")
    assert await status_store.get_analysis_result("c1") is None


async def test_set_explanation(status_store, seed_case):
    await seed_case("c1")
    assert await status_store.set_explanation("c1", "Waiting for images")
    assert (await status_store.get_analysis_result("c1"))["explanation"] == "Waiting for images"
    assert not await status_store.set_explanation("ghost", "x")


async def test_case_read_and_clear_recalculation_flag(status_store, seed_case):
    await seed_case("c1", user_id="owner-1", recalculation_needed=True)
    assert await status_store.get_case("c1") == {
        "id": "c1", "user_id": "owner-1", "recalculation_needed": True,
    }

    assert await status_store.clear_recalculation_needed("c1")
    assert (await status_store.get_case("c1"))["recalculation_needed"] is False
    assert await status_store.get_case("ghost") is None


async def test_audit_entry_written_once_per_batch_and_field(status_store, seed_case, db):
    await seed_case("c1")
    entry = {
        "case_id": "c1", "user_id": "u1", "batch_id": "batch-1",
        "field": "pmiRecalculation",
        "old_value": {"minutes": 60.0, "hours": 1.0, "days": 0.04},
        "new_value": {"minutes": 90.0, "hours": 1.5, "days": 0.06},
    }
    assert await status_store.insert_audit_log(entry) is True
    assert await status_store.insert_audit_log(entry) is False

    async with db.session() as session:
        rows = (await session.execute(select(AuditLogEntry))).scalars().all()
        assert len(rows) == 1
        assert rows[0].new_value == {"minutes": 90.0, "hours": 1.5, "days": 0.06}
        count = await session.scalar(select(func.count()).select_from(AuditLogEntry))
        assert count == 1
