"""Custom exceptions for the workflow execution engine."""

from typing import Optional


class WorkflowEngineError(Exception):
    """Base exception for the workflow execution engine."""

    def __init__(self, message: str, status_code: int = 500):
        """Initialize exception with message and status code.

        Args:
            message: Exception message
            status_code: HTTP status code for the surrounding API layer
        """
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class NotFoundError(WorkflowEngineError):
    """Resource not found exception."""

    def __init__(self, message: str = "Resource not found"):
        """Initialize NotFoundError with 404 status code."""
        super().__init__(message, 404)


class ValidationError(WorkflowEngineError):
    """Validation error exception."""

    def __init__(self, message: str = "Validation failed"):
        """Initialize ValidationError with 422 status code."""
        super().__init__(message, 422)


class InvalidStateError(WorkflowEngineError):
    """Operation not allowed in the execution's current status."""

    def __init__(self, message: str = "Invalid execution state"):
        """Initialize InvalidStateError with 409 status code."""
        super().__init__(message, 409)


class TemplateValidationError(ValidationError):
    """Workflow template failed its integrity checks."""

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__("Invalid workflow template: " + "; ".join(self.errors))


class NodeExecutionError(WorkflowEngineError):
    """A node handler failed."""

    def __init__(
        self,
        message: str,
        node_id: Optional[str] = None,
        node_type: Optional[str] = None,
    ):
        self.node_id = node_id
        self.node_type = node_type
        super().__init__(message, 500)
