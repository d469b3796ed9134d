"""Error taxonomy for the closeout and commission engine."""

from __future__ import annotations

from typing import Dict, List, Optional


class CommissionEngineError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.message}


class ValidationError(CommissionEngineError):
    """Raised when a request references invalid or missing data."""

    status_code = 400


class NotFoundError(ValidationError):
    """Raised when an event, booking or contract does not exist."""

    status_code = 404


class ContractValidationError(ValidationError):
    """Raised when a commission contract is rejected at write time."""

    def __init__(self, errors: Dict[str, List[str]]):
        super().__init__("Invalid commission contract.")
        self.errors = errors

    def to_dict(self) -> dict:
        return {"error": self.message, "errors": self.errors}


class AuthorizationError(CommissionEngineError):
    """Raised when the caller may not act on the event."""

    status_code = 403


class ConflictError(CommissionEngineError):
    """Raised when the event is already closed, locked or being closed."""

    status_code = 409


class DegradedInputError(CommissionEngineError):
    """Describes malformed stored data that is ignored instead of raised."""

    def __init__(self, message: str, *, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class PersistenceError(CommissionEngineError):
    """Raised when a single payout line cannot be written."""

    def __init__(self, message: str, *, promoter_id: Optional[int] = None):
        super().__init__(message)
        self.promoter_id = promoter_id


class BestEffortError(CommissionEngineError):
    """Wraps a failed side effect that must never reach the caller."""

    def __init__(self, message: str, *, collaborator: str):
        super().__init__(message)
        self.collaborator = collaborator
