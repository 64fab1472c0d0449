"""Scheduling — pure selection of workflow instances that may be driven now.

Invariants:
    - At most one instance per case_id is ever selected: the oldest non-terminal one
      (per-case exclusive lease: a recalculation waits for an in-flight analysis)
    - queued/sleeping instances are due once resume_at has passed (or is unset)
    - running instances are due only when their lease expired (driver crashed)
    - Output preserves the input order (oldest first)

Design Decisions:
    - Pure function over instance dicts: the scheduler does the IO, this decides
"""

from datetime import datetime

from pmiflow.core.domain_types import WorkflowStatus


def is_due(instance: dict, now: datetime) -> bool:
    status = WorkflowStatus(instance["status"])
    if status.is_terminal:
        return False
    if status is WorkflowStatus.RUNNING:
        lease = instance.get("lease_expires_at")
        return lease is None or lease <= now
    resume_at = instance.get("resume_at")
    return resume_at is None or resume_at <= now


def select_due_instances(instances: list[dict], now: datetime) -> list[dict]:
    """Pick the drivable instances from an oldest-first list of active instances."""
    seen_cases: set[str] = set()
    due: list[dict] = []
    for instance in instances:
        if WorkflowStatus(instance["status"]).is_terminal:
            continue
        case_id = instance["case_id"]
        if case_id in seen_cases:
            continue
        seen_cases.add(case_id)
        if is_due(instance, now):
            due.append(instance)
    return due
