"""Workflow and Case Inspection API."""

import uuid

from pmiflow.core.domain_types import StepKind


async def test_get_workflow_with_steps(client, step_log):
    created = (await client.post("/api/v1/events", json={
        "name": "analysis/request.sent", "data": {"caseId": "c1"},
    })).json()
    await step_log.save_step(
        created["workflow_id"], "update-status-to-processing", StepKind.RUN, output=True,
    )

    response = await client.get(f"/api/v1/workflows/{created['workflow_id']}")

    assert response.status_code == 200
    body = response.json()
    assert body["id"] == created["workflow_id"]
    assert body["status"] == "queued"
    assert body["event_name"] == "analysis/request.sent"
    assert [s["step_name"] for s in body["steps"]] == ["update-status-to-processing"]
    assert body["steps"][0]["output"] is True


async def test_unknown_workflow_is_404(client):
    response = await client.get(f"/api/v1/workflows/{uuid.uuid4()}")
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "RESOURCE_NOT_FOUND"


async def test_malformed_workflow_id_is_400(client):
    response = await client.get("/api/v1/workflows/not-a-uuid")
    assert response.status_code == 400


async def test_case_analysis_status(client, seed_case):
    await seed_case("c1", status="completed", total_counts={"adult": 3}, pmi_days=2.0)

    response = await client.get("/api/v1/cases/c1/analysis")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "completed"
    assert body["total_counts"] == {"adult": 3}
    assert body["pmi_days"] == 2.0


async def test_unknown_case_analysis_is_404(client):
    response = await client.get("/api/v1/cases/ghost/analysis")
    assert response.status_code == 404
    assert response.json()["error"]["context"]["case_id"] == "ghost"
