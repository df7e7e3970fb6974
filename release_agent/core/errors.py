"""Exception taxonomy for tools, backends, jobs and the orchestration loop."""
from __future__ import annotations

from typing import Any, List, Optional


class ReleaseAgentError(Exception):
    """Base class for every error raised by this package."""

    kind = "error"
    retryable = False
    terminal = False
    status: Optional[int] = None

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ToolNotFound(ReleaseAgentError):
    kind = "unknown_tool"

    def __init__(self, name: str) -> None:
        super().__init__(f"Unknown tool: {name}")
        self.name = name


class ToolValidationError(ReleaseAgentError):
    """Tool arguments failed schema checks; no backend was called."""

    kind = "validation_error"

    def __init__(self, tool_name: str, errors: List[Any]) -> None:
        details = "; ".join(_describe(error) for error in errors) or "invalid arguments"
        super().__init__(f"Invalid arguments for {tool_name}: {details}")
        self.tool_name = tool_name
        self.errors = errors


def _describe(error: Any) -> str:
    if isinstance(error, dict):
        location = ".".join(str(part) for part in error.get("loc", ())) or "arguments"
        return f"{location}: {error.get('msg', 'invalid')}"
    return str(error)


class BackendError(ReleaseAgentError):
    """A backend call failed.

    ``message`` is a short summary safe to show to the reasoning engine;
    ``detail`` keeps the truncated raw body for logs only.
    """

    kind = "backend_error"

    def __init__(
        self,
        message: str,
        *,
        status: Optional[int] = None,
        retryable: bool = False,
        detail: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.retryable = retryable
        self.detail = detail

    @property
    def terminal(self) -> bool:  # type: ignore[override]
        return self.status in (401, 403)


class UnknownOperation(BackendError):
    kind = "unknown_operation"

    def __init__(self, backend: str, operation: str) -> None:
        super().__init__(f"{backend} has no operation named {operation!r}")
        self.operation = operation


class AuthenticationFailed(BackendError):
    """Every credential strategy rejected the configured credentials."""

    kind = "authentication_failed"

    def __init__(self, reasons: List[str]) -> None:
        super().__init__("Authentication failed. " + " ".join(reasons), status=401)
        self.reasons = reasons


class BackendNotConfigured(ReleaseAgentError):
    kind = "not_configured"
    terminal = True

    def __init__(self, backend: str, hint: str) -> None:
        super().__init__(f"{backend} is not configured. {hint}")
        self.backend = backend


class JobFailed(ReleaseAgentError):
    """The backend reported a terminal failure for an async job."""

    kind = "job_failed"

    def __init__(self, job_id: str, reason: str) -> None:
        super().__init__(f"Music generation failed: {reason}")
        self.job_id = job_id
        self.reason = reason


class JobTimedOut(ReleaseAgentError):
    """Polling ran past the deadline; the job may still finish later."""

    kind = "job_timed_out"
    retryable = True

    def __init__(self, job_id: str, waited: float) -> None:
        super().__init__(f"Music generation {job_id} timed out after {waited:.0f}s")
        self.job_id = job_id
        self.waited = waited


class JobPollingError(ReleaseAgentError):
    """Too many consecutive network-level polling errors."""

    kind = "job_polling_error"
    retryable = True

    def __init__(self, job_id: str, errors: int, last_error: Exception) -> None:
        super().__init__(f"Too many consecutive polling errors ({errors}) for {job_id}: {last_error}")
        self.job_id = job_id
        self.errors = errors
        self.last_error = last_error


class RateLimitExceeded(ReleaseAgentError):
    kind = "rate_limited"
    terminal = True

    def __init__(self, limit_kind: str, limit: int, reset_at: float) -> None:
        super().__init__(f"Rate limit for {limit_kind} reached ({limit} per window)")
        self.limit_kind = limit_kind
        self.limit = limit
        self.reset_at = reset_at


class IterationCapExceeded(ReleaseAgentError):
    kind = "iteration_cap_exceeded"

    def __init__(self, cap: int) -> None:
        super().__init__(f"Gave up after {cap} tool round-trips without a final answer")
        self.cap = cap


class ReasoningEngineError(ReleaseAgentError):
    """The reasoning engine itself could not be reached."""

    kind = "reasoning_engine_error"


class AccessDenied(ReleaseAgentError):
    """The caller tried to act on a release recorded as someone else's."""

    kind = "forbidden"
    terminal = True
    status = 403

    def __init__(self, release_id: str) -> None:
        super().__init__(f"Release {release_id} belongs to another user")
        self.release_id = release_id
