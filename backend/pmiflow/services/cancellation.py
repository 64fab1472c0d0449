"""Cancellation Checker — a deleted AnalysisResult row means the user cancelled.

Invariants:
    - Point-in-time check: a delete after it returns is not observed
    - Only guards the final persistence step; side effects before it are not undone
"""

import logging

from pmiflow.core.domain_types import CaseId
from pmiflow.core.repository_protocols import StatusStore

logger = logging.getLogger(__name__)


class CancellationChecker:
    """Answers whether the analysis for a case was cancelled mid-flight."""

    def __init__(self, store: StatusStore):
        self._store = store

    async def is_cancelled(self, case_id: CaseId) -> bool:
        if await self._store.analysis_result_exists(case_id):
            return False
        logger.warning(
            "AnalysisResult record not found, treating analysis as cancelled",
            extra={"case_id": case_id},
        )
        return True
