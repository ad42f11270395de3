"""
Error taxonomy for session orchestration.

Resolution-phase errors (conflict, not found, fatal resolution) propagate to
the caller of a batch run. Per-item and non-critical errors are absorbed and
logged. Feed start failures are surfaced as live view state.
"""

from typing import Any, Dict, Optional


class ErrorCategory:
    """Stable error codes used in API responses and logs."""
    CONFLICT = "CONFLICT"
    NOT_FOUND = "NOT_FOUND"
    RESOLUTION_FAILED = "RESOLUTION_FAILED"
    ITEM_FAILED = "ITEM_FAILED"
    NON_CRITICAL = "NON_CRITICAL"
    FEED_START_FAILED = "FEED_START_FAILED"
    RUN_ABORTED = "RUN_ABORTED"
    CIRCUIT_OPEN = "CIRCUIT_OPEN"
    UNKNOWN = "UNKNOWN_ERROR"


class OrbitError(Exception):
    """Base class for all engine errors."""

    code = ErrorCategory.UNKNOWN
    recoverable = False

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}


class ConflictError(OrbitError):
    """A run was requested for a kind that is already running."""
    code = ErrorCategory.CONFLICT


class NotFoundError(OrbitError):
    """A named resolution target does not exist."""
    code = ErrorCategory.NOT_FOUND


class FatalResolutionError(OrbitError):
    """A dependency required before work can begin could not be established."""
    code = ErrorCategory.RESOLUTION_FAILED


class RecoverablePerItemError(OrbitError):
    """Processing a single work item failed; the run continues."""
    code = ErrorCategory.ITEM_FAILED
    recoverable = True


class NonCriticalActionFailure(OrbitError):
    """A best-effort humanization signal failed."""
    code = ErrorCategory.NON_CRITICAL
    recoverable = True


class FeedStartError(OrbitError):
    """The telemetry transport could not start streaming a platform."""
    code = ErrorCategory.FEED_START_FAILED
    recoverable = True

    def __init__(self, platform: str, reason: Optional[str] = None):
        message = reason or f"Failed to start live view for {platform}"
        super().__init__(message, {"platform": platform})
        self.platform = platform


class RunAbortedError(OrbitError):
    """Infrastructure failure that must stop the whole batch run."""
    code = ErrorCategory.RUN_ABORTED


class CircuitOpenError(RunAbortedError):
    """Circuit breaker is open - requests are blocked."""
    code = ErrorCategory.CIRCUIT_OPEN

    def __init__(self, message: str = "Circuit breaker is open - requests are blocked",
                 context: Optional[Dict[str, Any]] = None):
        super().__init__(message, context)


def error_to_response(err: BaseException) -> Dict[str, Any]:
    """Serialize an error to a structured API response."""
    if isinstance(err, OrbitError):
        response: Dict[str, Any] = {
            "success": False,
            "error": err.message,
            "code": err.code,
        }
        if err.context:
            response["context"] = err.context
        return response

    return {
        "success": False,
        "error": str(err),
        "code": ErrorCategory.UNKNOWN,
    }
