"""
Typed failures raised by the lifecycle services.

Each failure carries a stable ``code`` that survives all the way to the HTTP
response, so callers can tell a retryable VERSION_CONFLICT apart from an
INVALID_TRANSITION even when both map to 409.
"""
from typing import Any, Dict, Optional


class WorkflowError(Exception):
    """Base class for every refusal the engine or store can produce."""
    code = "WORKFLOW_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class NotFound(WorkflowError):
    code = "NOT_FOUND"


class InvalidTransition(WorkflowError):
    code = "INVALID_TRANSITION"


class Forbidden(WorkflowError):
    code = "FORBIDDEN"


class VersionConflict(WorkflowError):
    """The caller's copy is stale. Re-read and retry; nothing was written."""
    code = "VERSION_CONFLICT"

    def __init__(self, request_id: str, expected_version: int, current_version: Optional[int] = None):
        details = {"expected_version": expected_version}
        if current_version is not None:
            details["current_version"] = current_version
        super().__init__(
            f"Service request {request_id} has been modified by another user",
            details
        )


class ValidationFailed(WorkflowError):
    code = "VALIDATION_ERROR"
