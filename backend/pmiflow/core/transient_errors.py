"""Transient Error Signatures — recognizes retry-worthy computation service failures.

Invariants:
    - Matching is substring-based on the raw response body (the service returns
      its own exception text, not a stable error code)
    - Empty/None bodies are never transient

Design Decisions:
    - Signatures kept as a tuple constant: adding one is a one-line change
"""

TRANSIENT_SIGNATURES: tuple[str, ...] = (
    "Database connection error",
    "SSL connection has been closed",
    "psycopg.OperationalError",
)


def is_transient_failure(body: str | None) -> bool:
    """True when a non-2xx response body matches a known transient signature."""
    if not body:
        return False
    return any(signature in body for signature in TRANSIENT_SIGNATURES)
