"""Analysis Workflow — end-to-end over the runtime, SQLite store, and a fake computation service.

Invariants:
    - Scenario A: detections → completed with counts, stage, PMI fields
    - Scenario C: timeout → failed, explanation mentions "timed out"
    - No detections → completed with the no-evidence explanation, no cancellation check
    - Row deleted before the cancellation check → cancelled, row stays absent
    - Replays after a crash never call the computation service twice
"""

from sqlalchemy import delete

from pmiflow.core.detection_result import NO_DETECTION_EXPLANATION
from pmiflow.core.errors import ComputationServiceError, ComputationTimeoutError
from pmiflow.models.analysis_result import AnalysisResult
from pmiflow.schemas.events import parse_event

DETECTION = {
    "aggregated_results": {"total_counts": {"adult": 3}, "oldest_stage_detected": "adult"},
    "pmi_estimation": {
        "pmi_days": 2.0, "pmi_hours": 48.0, "pmi_minutes": 2880.0,
        "stage_used_for_calculation": "adult", "temperature_provided": 22.5,
        "calculated_adh": 1080.0, "ldt_used": 10.0, "source_image_key": "c1/img-2.jpg",
    },
}


async def _start(runtime, case_id="c1"):
    instance, _ = await runtime.ingest(parse_event({
        "name": "analysis/request.sent", "data": {"caseId": case_id},
    }))
    return instance


async def _steps(step_log, workflow_id):
    return [s["step_name"] for s in await step_log.list_steps(workflow_id)]


async def test_waits_for_uploads_before_touching_the_case(
    runtime, status_store, seed_case, computation, clock,
):
    await seed_case("c1")
    computation.detect_script = [DETECTION]
    instance = await _start(runtime)

    suspended = await runtime.drive(instance["id"])

    assert suspended["status"] == "sleeping"
    assert (suspended["resume_at"] - clock.now).total_seconds() == 60
    assert computation.detect_calls == []
    assert (await status_store.get_analysis_result("c1"))["status"] == "pending"


async def test_scenario_a_detections_completed(
    runtime, status_store, step_log, seed_case, computation, drive_until_settled,
):
    await seed_case("c1")
    computation.detect_script = [DETECTION]
    instance = await _start(runtime)

    final = await drive_until_settled(runtime, instance["id"])

    assert final["status"] == "completed"
    assert final["result"]["message"] == "Successfully completed analysis for case: c1"
    record = await status_store.get_analysis_result("c1")
    assert record["status"] == "completed"
    assert record["total_counts"] == {"adult": 3}
    assert record["oldest_stage_detected"] == "adult"
    assert record["pmi_minutes"] == 2880.0
    assert record["pmi_source_image_key"] == "c1/img-2.jpg"
    assert record["ldt_used"] == 10.0
    assert await _steps(step_log, instance["id"]) == [
        "wait-for-uploads", "update-status-to-processing", "run-full-analysis",
        "check-if-cancelled", "save-analysis-results",
    ]


async def test_service_explanation_persisted(
    runtime, status_store, seed_case, computation, drive_until_settled,
):
    await seed_case("c1")
    computation.detect_script = [{**DETECTION, "explanation": "Three adult flies."}]
    instance = await _start(runtime)
    await drive_until_settled(runtime, instance["id"])

    assert (await status_store.get_analysis_result("c1"))["explanation"] == "Three adult flies."


async def test_no_detections_completes_early(
    runtime, status_store, step_log, seed_case, computation, drive_until_settled,
):
    await seed_case("c1")
    computation.detect_script = [
        {"aggregated_results": {"total_counts": {}, "oldest_stage_detected": None}},
    ]
    instance = await _start(runtime)

    final = await drive_until_settled(runtime, instance["id"])

    assert final["status"] == "completed"
    assert final["result"]["message"] == "Workflow ended early: No objects detected."
    record = await status_store.get_analysis_result("c1")
    assert record["status"] == "completed"
    assert record["explanation"] == NO_DETECTION_EXPLANATION
    assert record["total_counts"] is None
    steps = await _steps(step_log, instance["id"])
    assert "check-if-cancelled" not in steps
    assert "save-analysis-results" not in steps
    assert steps[-1] == "save-no-detection-result"


async def test_row_deleted_mid_flight_cancels_without_writing(
    runtime, status_store, seed_case, computation, db, drive_until_settled,
):
    await seed_case("c1")

    async def detect_then_user_deletes(case_id):
        async with db.session() as session:
            await session.execute(delete(AnalysisResult).where(AnalysisResult.case_id == case_id))
            await session.commit()
        return DETECTION

    computation.detect_script = [detect_then_user_deletes]
    instance = await _start(runtime)

    final = await drive_until_settled(runtime, instance["id"])

    assert final["status"] == "cancelled"
    assert final["result"]["message"] == "Analysis cancelled for case: c1"
    assert await status_store.get_analysis_result("c1") is None


async def test_scenario_c_timeout_marks_failed(
    runtime, status_store, seed_case, computation, drive_until_settled,
):
    await seed_case("c1")
    computation.detect_script = [
        ComputationTimeoutError("Analysis request timed out after 30 minutes"),
    ]
    instance = await _start(runtime)

    final = await drive_until_settled(runtime, instance["id"])

    assert final["status"] == "failed"
    assert final["attempt"] == 3
    assert len(computation.detect_calls) == 3
    record = await status_store.get_analysis_result("c1")
    assert record["status"] == "failed"
    assert record["explanation"].startswith("Analysis failed: ")
    assert "timed out" in record["explanation"]


async def test_workflow_retry_recovers_from_failed_detection(
    runtime, status_store, seed_case, computation, drive_until_settled,
):
    await seed_case("c1")
    computation.detect_script = [
        ComputationServiceError("endpoint failed with HTTP 502", "http_error", status_code=502),
        DETECTION,
    ]
    instance = await _start(runtime)

    final = await drive_until_settled(runtime, instance["id"])

    assert final["status"] == "completed"
    assert final["attempt"] == 1
    assert (await status_store.get_analysis_result("c1"))["status"] == "completed"


async def test_replay_never_repeats_detection(
    runtime, step_log, seed_case, computation, clock,
):
    await seed_case("c1")
    calls = []

    async def detect_once(case_id):
        calls.append(case_id)
        return DETECTION

    computation.detect_script = [detect_once]
    instance = await _start(runtime)
    await runtime.drive(instance["id"])
    clock.advance(60)
    await runtime.drive(instance["id"])

    # Simulate a worker that crashed after the detection step: re-open the instance
    await step_log.update_instance(instance["id"], status="queued")
    await runtime.drive(instance["id"])

    assert calls == ["c1"]
