"""
Workflow engine exceptions.

Not-found is not an error here: lookups return None and deletes return
False. Exceptions are reserved for input the engine refuses to act on.
"""

from typing import Optional


class LabError(Exception):
    """Base class for workflow errors."""

    status_code = 400

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ValidationError(LabError):
    """Required caller-provided fields are missing or invalid."""

    status_code = 422

    def __init__(self, errors: dict[str, str], message: str = "Validation failed"):
        self.errors = errors
        super().__init__(message, details=errors)


class BusinessRuleError(LabError):
    """The request is well formed but breaks a lab rule (caps, duplicates)."""

    status_code = 409


class InvalidTransitionError(LabError):
    """A result status change that the pipeline does not allow."""

    status_code = 409
