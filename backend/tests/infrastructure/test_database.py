"""Database Session Manager — rollback and error mapping."""

import pytest
from sqlalchemy import text

from pmiflow.core.errors import DatabaseError
from pmiflow.models.case import Case


async def test_integrity_error_maps_to_commit_failure(db, seed_case):
    await seed_case("c1")
    with pytest.raises(DatabaseError) as exc:
        async with db.session() as session:
            session.add(Case(id="c1", user_id="someone-else"))
            await session.commit()
    assert exc.value.operation == "commit"
    assert exc.value.http_status == 503


async def test_operational_error_maps_to_execute_failure(db):
    with pytest.raises(DatabaseError) as exc:
        async with db.session() as session:
            await session.execute(text("SELECT * FROM no_such_table"))
    assert exc.value.operation == "execute"


async def test_health_check_reports_reachable_database(db):
    assert await db.health_check() is True
