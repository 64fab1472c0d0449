"""Backoff Policy — capped exponential delay for retries.

Invariants:
    - backoff_delay_ms(n) == min(base_ms * 2**n, cap_ms) for every n >= 0
    - Deterministic: no jitter, same input always yields the same delay

Design Decisions:
    - Milliseconds as int: matches how retry delays are logged and configured
    - Negative attempts clamp to 0 rather than raising: callers count from 0 or 1
"""

DEFAULT_BASE_DELAY_MS = 1000
DEFAULT_CAP_DELAY_MS = 30_000


def backoff_delay_ms(
    attempt: int,
    base_ms: int = DEFAULT_BASE_DELAY_MS,
    cap_ms: int = DEFAULT_CAP_DELAY_MS,
) -> int:
    """Exponential backoff: base * 2^attempt, capped."""
    attempt = max(attempt, 0)
    # Avoid computing huge powers once the cap is clearly reached
    if attempt >= 32:
        return cap_ms
    return min(base_ms * (2 ** attempt), cap_ms)