"""Resilient Computation Client — detection / PMI service calls with retry, backoff, and error mapping.

Invariants:
    - One httpx.AsyncClient per ResilientComputationClient, configured once at construction;
      no global transport state is ever read or mutated
    - Every attempt has a hard deadline (asyncio.wait_for) on top of httpx timeouts
    - Timeouts raise ComputationTimeoutError immediately: never retried here
    - detect(): every non-timeout failure (transient body signature, other non-2xx,
      connection error, unreadable body) is retried up to max_attempts with
      exponential backoff; the last error is raised once attempts run out
    - Transient signatures only change how a failure is classified and logged
    - recalculate(): single attempt, any failure propagates to the workflow retry budget
    - All failures mapped to ComputationServiceError (core/errors.py)

Design Decisions:
    - Wrapper over raw client: isolates retry logic from workflow definitions
    - No jitter: one workflow instance per case, so no thundering herd on retries
    - sleep injectable: tests exercise backoff without waiting
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable

import httpx

from pmiflow.core.backoff import (
    DEFAULT_BASE_DELAY_MS, DEFAULT_CAP_DELAY_MS, backoff_delay_ms,
)
from pmiflow.core.domain_types import CaseId
from pmiflow.core.errors import (
    ComputationServiceError, ComputationTimeoutError, ErrorContext,
)
from pmiflow.core.transient_errors import is_transient_failure

logger = logging.getLogger(__name__)


class ResilientComputationClient:
    """Wraps the computation service HTTP API with retry logic, timeouts, and error mapping."""

    DETECT_PATH = "/v1/detect"
    RECALCULATE_PATH = "/v1/computation/recalculate"

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout_seconds: float = 30 * 60,
        detect_max_attempts: int = 3,
        base_delay_ms: int = DEFAULT_BASE_DELAY_MS,
        max_delay_ms: int = DEFAULT_CAP_DELAY_MS,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.timeout_seconds = timeout_seconds
        self.detect_max_attempts = detect_max_attempts
        self.base_delay_ms = base_delay_ms
        self.max_delay_ms = max_delay_ms
        self._sleep = sleep
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers={"X-Api-Key": api_key},
            timeout=httpx.Timeout(timeout_seconds),
            limits=httpx.Limits(keepalive_expiry=timeout_seconds),
            transport=transport,
        )

    async def __aenter__(self) -> "ResilientComputationClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def detect(self, case_id: CaseId) -> dict:
        """Run detection + PMI estimation for a case, retrying any non-timeout failure."""
        last_error: ComputationServiceError | None = None

        for attempt in range(1, self.detect_max_attempts + 1):
            context = ErrorContext(case_id=case_id, attempt=attempt)
            try:
                result = await self._post(
                    self.DETECT_PATH, case_id, "Analysis", context,
                )
            except ComputationTimeoutError:
                raise
            except ComputationServiceError as e:
                last_error = e
                if attempt >= self.detect_max_attempts:
                    break
                await self._wait_before_retry(e, case_id, attempt)
                continue

            if attempt > 1:
                logger.info(
                    f"Analysis succeeded on attempt {attempt} after earlier failures",
                    extra={"case_id": case_id, "attempt": attempt},
                )
            return result

        logger.error(
            "Analysis request failed after all retry attempts",
            extra={
                "case_id": case_id,
                "attempt": self.detect_max_attempts,
                "error_code": last_error.code if last_error else None,
            },
        )
        raise last_error or ComputationServiceError(
            "Analysis failed after all retry attempts", "unknown",
            context=ErrorContext(case_id=case_id),
        )

    async def recalculate(self, case_id: CaseId) -> dict:
        """Recompute PMI for an already analyzed case. Single attempt."""
        return await self._post(
            self.RECALCULATE_PATH, case_id, "Recalculation",
            ErrorContext(case_id=case_id, attempt=1),
        )

    async def _post(
        self, path: str, case_id: CaseId, label: str, context: ErrorContext,
    ) -> dict:
        """Issue one POST with a hard deadline and map every failure mode."""
        try:
            response = await asyncio.wait_for(
                self._client.post(path, json={"case_id": case_id}),
                timeout=self.timeout_seconds,
            )
        except (httpx.TimeoutException, asyncio.TimeoutError) as e:
            raise ComputationTimeoutError(
                f"{label} request timed out after "
                f"{self.timeout_seconds / 60:g} minutes",
                context=context,
            ) from e
        except httpx.TransportError as e:
            raise ComputationServiceError(
                f"{label} request could not reach the service: "
                f"{e.__class__.__name__}: {e}",
                "connection_error", context=context,
            ) from e

        if not response.is_success:
            body = response.text
            error_type = "transient" if is_transient_failure(body) else "http_error"
            raise ComputationServiceError(
                f"{label} endpoint failed with HTTP {response.status_code}: {body}",
                error_type, status_code=response.status_code, context=context,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise ComputationServiceError(
                f"{label} endpoint returned a non-JSON body",
                "invalid_response", status_code=response.status_code,
                context=context,
            ) from e
        if not isinstance(data, dict):
            raise ComputationServiceError(
                f"{label} endpoint returned {type(data).__name__}, expected an object",
                "invalid_response", status_code=response.status_code,
                context=context,
            )
        return data

    async def _wait_before_retry(
        self, error: ComputationServiceError, case_id: CaseId, attempt: int,
    ) -> None:
        delay = backoff_delay_ms(attempt, self.base_delay_ms, self.max_delay_ms)
        logger.warning(
            f"Computation failure ({error.api_error_type}) on attempt "
            f"{attempt}/{self.detect_max_attempts}, retry after {delay}ms: {error}",
            extra={
                "case_id": case_id,
                "error_code": error.code,
                "attempt": attempt,
                "max_attempts": self.detect_max_attempts,
                "delay_ms": delay,
            },
        )
        await self._sleep(delay / 1000)
