"""Analysis Workflow over the real ResilientComputationClient and an httpx.MockTransport.

Invariants:
    - Scenario B: two "Database connection error" 500s then success → completed,
      exactly 3 HTTP requests, all inside one workflow attempt
    - Scenario C: the service never answers in time → every workflow attempt
      times out once (no client-level retry), then failed with "timed out"
"""

import httpx
import pytest

from pmiflow.infrastructure.computation_client import ResilientComputationClient
from pmiflow.schemas.events import parse_event
from pmiflow.services.workflow_registry import build_runtime

DETECTION = {
    "aggregated_results": {"total_counts": {"adult": 3}, "oldest_stage_detected": "adult"},
}


class _DetectService:
    """MockTransport handler: pops one response (or exception) per request, last one repeats."""

    def __init__(self, script):
        self.script = list(script)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        item = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(item, Exception):
            raise item
        return item


@pytest.fixture
def delays():
    return []


@pytest.fixture
async def wire(settings, status_store, step_log, clock, delays):
    clients = []

    def _wire(service: _DetectService):
        async def fake_sleep(seconds):
            delays.append(seconds)

        client = ResilientComputationClient(
            "http://computation.test", "secret-key",
            transport=httpx.MockTransport(service), sleep=fake_sleep,
        )
        clients.append(client)
        return build_runtime(settings, status_store, step_log, client, clock=clock)

    yield _wire
    for client in clients:
        await client.aclose()


async def _start(runtime, case_id="c1"):
    instance, _ = await runtime.ingest(parse_event({
        "name": "analysis/request.sent", "data": {"caseId": case_id},
    }))
    return instance


async def test_scenario_b_transient_failures_absorbed_by_client(
    wire, status_store, seed_case, drive_until_settled, delays,
):
    await seed_case("c1")
    service = _DetectService([
        httpx.Response(500, text="Database connection error"),
        httpx.Response(500, text="Database connection error"),
        httpx.Response(200, json=DETECTION),
    ])
    runtime = wire(service)
    instance = await _start(runtime)

    final = await drive_until_settled(runtime, instance["id"])

    assert final["status"] == "completed"
    assert final["attempt"] == 0
    assert len(service.requests) == 3
    assert all(r.url.path == "/v1/detect" for r in service.requests)
    assert delays == [2.0, 4.0]
    record = await status_store.get_analysis_result("c1")
    assert record["status"] == "completed"
    assert record["total_counts"] == {"adult": 3}


async def test_scenario_c_deadline_fails_the_case(
    wire, status_store, seed_case, drive_until_settled, delays,
):
    await seed_case("c1")
    service = _DetectService([httpx.ReadTimeout("no response")])
    runtime = wire(service)
    instance = await _start(runtime)

    final = await drive_until_settled(runtime, instance["id"])

    assert final["status"] == "failed"
    assert final["attempt"] == 3
    assert len(service.requests) == 3
    assert delays == []
    record = await status_store.get_analysis_result("c1")
    assert record["status"] == "failed"
    assert record["explanation"].startswith("Analysis failed: ")
    assert "timed out" in record["explanation"]
