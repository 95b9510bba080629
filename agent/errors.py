"""
Error taxonomy for the agent runtime.

Every failure that crosses a boundary (LLM, tools, run control) is expressed
as one of these types so callers can decide between retrying, reporting the
failure to the model, or aborting the run.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


class AgentError(Exception):
    """Base class for runtime errors"""

    def __init__(self, message: str, code: str = "agent_error", details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": type(self).__name__,
            "message": self.message,
            "code": self.code,
            "details": self.details,
        }


class FatalError(AgentError):
    """Unrecoverable; the run must abort"""

    def __init__(self, message: str, code: str = "fatal_error", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code, details)


class TransientError(AgentError):
    """Recoverable by retrying, optionally after `retry_after` seconds"""

    def __init__(
        self,
        message: str,
        retry_after: Optional[float] = None,
        code: str = "transient_error",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, code, details)
        self.retry_after = retry_after


class ToolError(AgentError):
    """A tool failed. Reported to the model as a tool failure, never retried."""

    def __init__(self, message: str, code: str = "tool_error", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code, details)


class ValidationError(AgentError):
    """One or more checks failed"""

    def __init__(self, message: str, violations: Optional[List[str]] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "validation_error", details)
        self.violations = list(violations or [])


class FileAlreadyExistsError(ToolError):
    def __init__(self, path: str):
        super().__init__(
            f"File already exists at {path}. Use the 'edit' tool to modify it instead.",
            code="file_exists",
            details={"path": path},
        )
        self.path = path


class FileOutdatedError(ToolError):
    def __init__(self, message: str, path: str):
        super().__init__(message, code="file_outdated", details={"path": path})
        self.path = path


class CircuitOpenError(TransientError):
    def __init__(self, name: str, retry_after: float):
        super().__init__(
            f"Circuit breaker is OPEN for {name}. Service temporarily unavailable. "
            f"Retry in {int(retry_after + 0.999)}s.",
            retry_after=retry_after,
            code="circuit_open",
            details={"breaker": name},
        )
        self.name = name


class AlreadyRunningError(AgentError):
    def __init__(self, message: str = "Agent is already running"):
        super().__init__(message, code="already_running")


class RunInterruptedError(AgentError):
    """Raised at a suspension point once the run's cancellation token is set"""

    def __init__(self, message: str = "Interrupted by user"):
        super().__init__(message, code="interrupted")


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

FATAL = "fatal"
TRANSIENT = "transient"
TOOL = "tool"
VALIDATION = "validation"

_RETRYABLE_MESSAGE = re.compile(
    r"timeout|timed out|rate limit|throttl|\b429\b|\b503\b|connection reset|econnreset|network error",
    re.IGNORECASE,
)


@dataclass
class ClassifiedError:
    kind: str
    message: str
    retry_after: Optional[float] = None
    details: Dict[str, Any] = field(default_factory=dict)


def is_retryable_error(exc: BaseException) -> bool:
    if isinstance(exc, TransientError):
        return True
    if isinstance(exc, AgentError):
        return False
    return bool(_RETRYABLE_MESSAGE.search(str(exc)))


def get_retry_delay(exc: BaseException) -> float:
    """Suggested wait in seconds before retrying `exc`"""
    retry_after = getattr(exc, "retry_after", None)
    if retry_after is not None:
        return float(retry_after)
    if re.search(r"rate limit", str(exc), re.IGNORECASE):
        return 60.0
    return 1.0


def classify_error(exc: BaseException) -> ClassifiedError:
    """Map any exception onto the taxonomy."""
    message = str(exc)
    if isinstance(exc, ValidationError):
        return ClassifiedError(VALIDATION, message, details={"violations": exc.violations, **exc.details})
    if isinstance(exc, ToolError):
        return ClassifiedError(TOOL, message, details=dict(exc.details))
    if isinstance(exc, TransientError):
        return ClassifiedError(TRANSIENT, message, retry_after=exc.retry_after, details=dict(exc.details))
    if isinstance(exc, AgentError):
        return ClassifiedError(FATAL, message, details=dict(exc.details))
    if is_retryable_error(exc):
        return ClassifiedError(TRANSIENT, message, retry_after=get_retry_delay(exc),
                               details={"type": type(exc).__name__})
    return ClassifiedError(FATAL, message, details={"type": type(exc).__name__})


def error_from_status(status_code: int, message: str, retry_after: Optional[float] = None) -> AgentError:
    """Build the right error for an HTTP status returned by an LLM provider."""
    if status_code == 401 or status_code == 403:
        return FatalError(f"Authentication failed: {message}", code="auth_error",
                          details={"status": status_code})
    if status_code == 429:
        return TransientError(f"Rate limit exceeded: {message}", retry_after=retry_after,
                              code="rate_limit", details={"status": status_code})
    if 400 <= status_code < 500:
        return FatalError(f"Invalid request: {message}", code="invalid_request",
                          details={"status": status_code})
    if status_code >= 500:
        return TransientError(f"Service error ({status_code}): {message}", retry_after=retry_after,
                              code="server_error", details={"status": status_code})
    return TransientError(f"Network error: {message}", retry_after=retry_after, code="network_error")
