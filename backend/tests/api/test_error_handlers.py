"""Error Handlers — one envelope for domain, validation, and unexpected failures."""

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from pmiflow.api.error_handlers import register_error_handlers
from pmiflow.core.errors import ErrorContext, InvalidEventError, ResourceNotFoundError


def _build_app() -> FastAPI:
    app = FastAPI()
    register_error_handlers(app)

    @app.get("/missing")
    async def missing():
        raise ResourceNotFoundError(
            "AnalysisResult", "c9", context=ErrorContext(case_id="c9"),
        )

    @app.get("/bad-event")
    async def bad_event():
        raise InvalidEventError("Malformed workflow event", details=[{"field": "name"}])

    @app.get("/typed/{count}")
    async def typed(count: int):
        return {"count": count}

    @app.get("/crash")
    async def crash():
        raise RuntimeError("secret connection string")

    return app


@pytest.fixture
async def error_client():
    transport = ASGITransport(app=_build_app(), raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


async def test_domain_error_keeps_status_and_context(error_client):
    response = await error_client.get("/missing")
    assert response.status_code == 404
    error = response.json()["error"]
    assert error["category"] == "resource_not_found"
    assert error["context"]["case_id"] == "c9"
    assert "details" not in error


async def test_invalid_event_carries_details(error_client):
    response = await error_client.get("/bad-event")
    assert response.status_code == 400
    assert response.json()["error"]["details"] == [{"field": "name"}]


async def test_request_validation_uses_the_same_envelope(error_client):
    response = await error_client.get("/typed/not-a-number")
    assert response.status_code == 400
    error = response.json()["error"]
    assert error["code"] == "VALIDATION_ERROR"
    assert error["category"] == "validation"
    assert "timestamp" in error
    assert error["details"][0]["field"] == "path.count"


async def test_unexpected_error_hides_its_message(error_client):
    response = await error_client.get("/crash")
    assert response.status_code == 500
    error = response.json()["error"]
    assert error["code"] == "INTERNAL_ERROR"
    assert error["severity"] == "critical"
    assert "secret" not in response.text
