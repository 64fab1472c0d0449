"""Detection Result — pure interpretation of computation service responses.

Invariants:
    - has_detections() needs total_counts present (an empty object counts) AND a
      non-empty oldest_stage_detected
    - extract_result_fields() only returns AnalysisResult column names (snake_case ORM attrs)
    - pmi_snapshot() always yields {minutes, hours, days}: the audit log value shape
    - Inputs are plain dicts (step outputs are replayed from JSON), never ORM objects

Design Decisions:
    - Missing pmi_estimation maps every PMI column to None instead of raising:
      detection can succeed without a PMI estimate (no temperature data)
    - Audit diff keyed on minutes: hours/days are derived from the same interval
"""

NO_DETECTION_EXPLANATION = (
    "Analysis complete. No insect evidence was detected in the provided images."
)

# pmi_estimation key -> AnalysisResult attribute
_PMI_FIELD_MAP: dict[str, str] = {
    "source_image_key": "pmi_source_image_key",
    "pmi_days": "pmi_days",
    "pmi_hours": "pmi_hours",
    "pmi_minutes": "pmi_minutes",
    "stage_used_for_calculation": "stage_used_for_calculation",
    "temperature_provided": "temperature_provided",
    "calculated_adh": "calculated_adh",
    "ldt_used": "ldt_used",
}


def _aggregated(response: dict | None) -> dict:
    if not isinstance(response, dict):
        return {}
    aggregated = response.get("aggregated_results")
    return aggregated if isinstance(aggregated, dict) else {}


def has_detections(response: dict | None) -> bool:
    """True when the service reported counts and an oldest life stage."""
    aggregated = _aggregated(response)
    counts = aggregated.get("total_counts")
    # An empty counts object is still a report; only a missing one is not
    counts_reported = isinstance(counts, dict) or bool(counts)
    return counts_reported and bool(aggregated.get("oldest_stage_detected"))


def extract_result_fields(response: dict) -> dict:
    """Map a successful detection response onto AnalysisResult columns."""
    aggregated = _aggregated(response)
    pmi = response.get("pmi_estimation") or {}
    fields = {
        "total_counts": aggregated.get("total_counts"),
        "oldest_stage_detected": aggregated.get("oldest_stage_detected"),
        "explanation": response.get("explanation"),
    }
    for source_key, column in _PMI_FIELD_MAP.items():
        fields[column] = pmi.get(source_key)
    return fields


def summarize_detection(response: dict) -> dict:
    """Log-friendly summary of a detection result."""
    aggregated = _aggregated(response)
    pmi = response.get("pmi_estimation") or {}
    return {
        "total_counts": aggregated.get("total_counts"),
        "oldest_stage": aggregated.get("oldest_stage_detected"),
        "pmi_days": pmi.get("pmi_days"),
    }


def pmi_snapshot(record: dict | None) -> dict | None:
    """Structured PMI value for auditing, or None when there is no record."""
    if record is None:
        return None
    return {
        "minutes": record.get("pmi_minutes"),
        "hours": record.get("pmi_hours"),
        "days": record.get("pmi_days"),
    }


def pmi_changed(old: dict | None, new: dict | None) -> bool:
    """True only when both snapshots exist and the PMI minutes differ."""
    if old is None or new is None:
        return False
    return old.get("minutes") != new.get("minutes")
