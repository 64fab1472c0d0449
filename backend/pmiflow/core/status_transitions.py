"""Status Transitions — which AnalysisResult status changes a workflow may make.

Invariants:
    - failed is reachable only from pending/processing, and nothing inside a run leaves it
    - completed is terminal within a run; writing completed again is an idempotent replay
    - processing opens a new run and may follow any status (recalculation after
      completed, re-analysis after failed)

Design Decisions:
    - Table of allowed source statuses per target: the status store turns it into
      a guarded UPDATE (WHERE status IN sources), so the check and the write are
      one atomic statement
"""

from pmiflow.core.domain_types import AnalysisStatus
from pmiflow.core.errors import InvalidStatusTransitionError

_ALLOWED_SOURCES: dict[AnalysisStatus, frozenset[AnalysisStatus]] = {
    AnalysisStatus.PENDING: frozenset({AnalysisStatus.PENDING}),
    AnalysisStatus.PROCESSING: frozenset(AnalysisStatus),
    AnalysisStatus.COMPLETED: frozenset({
        AnalysisStatus.PROCESSING, AnalysisStatus.COMPLETED,
    }),
    AnalysisStatus.FAILED: frozenset({
        AnalysisStatus.PENDING, AnalysisStatus.PROCESSING,
    }),
}


def allowed_sources(target: AnalysisStatus) -> frozenset[AnalysisStatus]:
    """Statuses from which `target` may be written."""
    return _ALLOWED_SOURCES[AnalysisStatus(target)]


def can_transition(current: AnalysisStatus, target: AnalysisStatus) -> bool:
    return AnalysisStatus(current) in allowed_sources(target)


def check_transition(current: AnalysisStatus, target: AnalysisStatus) -> None:
    """Raise InvalidStatusTransitionError when current -> target is not allowed."""
    if not can_transition(current, target):
        raise InvalidStatusTransitionError(
            AnalysisStatus(current).value, AnalysisStatus(target).value,
        )
