"""Errors raised by the request workflow.

Callers can tell "not yours" (Forbidden) apart from "already decided"
(InvalidTransition). None of these are retried automatically.
"""

from typing import Any, Dict, List, Optional


class WorkflowError(Exception):
    """Base class for all workflow errors."""

    code = "workflow_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(WorkflowError):
    """Raised when a submission or decision payload is malformed."""

    code = "validation_error"

    def __init__(self, message: str, errors: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.errors = errors or []


class Forbidden(WorkflowError):
    """Raised when the actor may not act on the request."""

    code = "forbidden"


class InvalidTransition(WorkflowError):
    """Raised when the request is terminal or was decided by someone else first."""

    code = "invalid_transition"

    def __init__(self, message: str, status: Optional[str] = None, level: Optional[str] = None):
        super().__init__(message)
        self.status = status
        self.level = level


class NotFound(WorkflowError):
    """Raised when a request id does not exist."""

    code = "not_found"
