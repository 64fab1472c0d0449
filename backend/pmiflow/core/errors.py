"""Error Hierarchy — typed, categorized exceptions for all pmiflow failure modes.

Invariants:
    - Every error has a code (str), category (ErrorCategory), severity (ErrorSeverity)
    - Domain errors (400-level) are caller mistakes; infrastructure errors (500-level) are critical
    - to_response() produces the REST envelope used by the API error handlers
    - str(error) is the human message: workflow failure hooks persist it verbatim

Design Decisions:
    - Single hierarchy with PmiflowError base: FastAPI global handler catches all
    - ErrorContext as dataclass: rich observability without coupling to logging framework
    - ComputationTimeoutError subclasses ComputationServiceError so callers can
      catch the family while the client can refuse to retry the timeout case
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class ErrorSeverity(str, Enum):
    """Error severity for observability and client handling."""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorCategory(str, Enum):
    """High-level error categories for routing and handling."""
    VALIDATION = "validation"
    BUSINESS_RULE = "business_rule"
    RESOURCE_NOT_FOUND = "resource_not_found"
    DATABASE = "database"
    EXTERNAL_API = "external_api"
    INTERNAL = "internal"
    CONFLICT = "conflict"
    TIMEOUT = "timeout"


@dataclass
class ErrorContext:
    """Rich context for error observability and debugging."""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    case_id: str | None = None
    workflow_id: str | None = None
    step_name: str | None = None
    attempt: int | None = None
    debug_info: dict[str, Any] | None = None


class PmiflowError(Exception):
    """Base exception for all pmiflow errors."""

    def __init__(
        self,
        message: str,
        code: str,
        category: ErrorCategory,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        context: ErrorContext | None = None,
        http_status: int = 500,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.category = category
        self.severity = severity
        self.context = context or ErrorContext()
        self.http_status = http_status

    def to_response(self) -> dict:
        """Convert to standardized REST error response."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "category": self.category.value,
                "severity": self.severity.value,
                "timestamp": self.context.timestamp.isoformat(),
                "context": {
                    "case_id": self.context.case_id,
                    "workflow_id": self.context.workflow_id,
                    "step_name": self.context.step_name,
                },
            }
        }


# ─── Domain Errors (400-level) ──────────────────────────────────

class InvalidEventError(PmiflowError):
    """Inbound event envelope failed schema validation."""
    def __init__(
        self, message: str, details: list[dict] | None = None,
        context: ErrorContext | None = None,
    ):
        super().__init__(
            message, "INVALID_EVENT", ErrorCategory.VALIDATION,
            ErrorSeverity.ERROR, context, 400,
        )
        self.details = details or []


class ResourceNotFoundError(PmiflowError):
    """Requested resource does not exist."""
    def __init__(
        self, resource_type: str, resource_id: str, context: ErrorContext | None = None,
    ):
        super().__init__(
            f"{resource_type} '{resource_id}' not found",
            "RESOURCE_NOT_FOUND", ErrorCategory.RESOURCE_NOT_FOUND,
            ErrorSeverity.ERROR, context, 404,
        )


class InvalidStatusTransitionError(PmiflowError):
    """AnalysisResult status change not permitted by the transition table."""
    def __init__(
        self, current: str, target: str, context: ErrorContext | None = None,
    ):
        super().__init__(
            f"Cannot move analysis status from '{current}' to '{target}'",
            "INVALID_STATUS_TRANSITION", ErrorCategory.BUSINESS_RULE,
            ErrorSeverity.ERROR, context, 409,
        )
        self.current = current
        self.target = target


# ─── Infrastructure Errors (500-level) ──────────────────────────

class DatabaseError(PmiflowError):
    """Database operation failed."""
    def __init__(self, message: str, operation: str, context: ErrorContext | None = None):
        super().__init__(
            f"Database {operation} failed: {message}",
            "DATABASE_ERROR", ErrorCategory.DATABASE,
            ErrorSeverity.CRITICAL, context, 503,
        )
        self.operation = operation


class ComputationServiceError(PmiflowError):
    """Computation service (detection / PMI) call failed."""
    def __init__(
        self,
        message: str,
        api_error_type: str,
        status_code: int | None = None,
        context: ErrorContext | None = None,
    ):
        super().__init__(
            f"Computation service error ({api_error_type}): {message}",
            "COMPUTATION_SERVICE_ERROR", ErrorCategory.EXTERNAL_API,
            ErrorSeverity.CRITICAL, context, 503,
        )
        self.api_error_type = api_error_type
        self.status_code = status_code


class ComputationTimeoutError(ComputationServiceError):
    """Computation request exceeded its per-attempt deadline. Never retried by the client."""
    def __init__(self, message: str, context: ErrorContext | None = None):
        super().__init__(message, "timeout", context=context)
        self.code = "COMPUTATION_TIMEOUT"
        self.category = ErrorCategory.TIMEOUT
        self.http_status = 504


class WorkflowNotRegisteredError(PmiflowError):
    """No workflow definition is registered for an event or workflow name."""
    def __init__(self, name: str, context: ErrorContext | None = None):
        super().__init__(
            f"No workflow registered for '{name}'",
            "WORKFLOW_NOT_REGISTERED", ErrorCategory.INTERNAL,
            ErrorSeverity.CRITICAL, context, 500,
        )
        self.name = name


def describe_error(error: BaseException) -> str:
    """Human-readable message for persisting a failure (never empty)."""
    return str(error) or error.__class__.__name__


def field_error_details(errors: list[dict]) -> list[dict]:
    """Flatten pydantic-style error dicts (loc/msg/type) into API error details."""
    return [
        {
            "field": ".".join(str(loc) for loc in err["loc"]),
            "message": err["msg"],
            "type": err["type"],
        }
        for err in errors
    ]
