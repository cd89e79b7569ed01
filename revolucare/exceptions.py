"""Domain error taxonomy.

Every error carries a stable ``code`` string that the API layer maps to a
status code. Messages only mention identifiers the caller supplied.
"""
from typing import Any, Dict, Optional


class RevolucareError(Exception):
    """Base class for all domain errors."""
    code = "internal_error"

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        code: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if code is not None:
            self.code = code

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class ValidationError(RevolucareError):
    """Malformed or missing input. Caller-fixable, not retryable."""
    code = "validation_error"


class NotFoundError(RevolucareError):
    """Requested entity does not exist."""
    code = "not_found"


class ConflictError(RevolucareError):
    """Concurrent mutation or duplicate in-flight analysis. Retry with fresh state."""
    code = "conflict"


class UnauthorizedError(RevolucareError):
    """Actor failed the access rule."""
    code = "unauthorized"


class InvalidStateError(RevolucareError):
    """Operation not valid for the entity's current lifecycle state."""
    code = "invalid_state"


class InsufficientDataError(RevolucareError):
    """No document produced usable data, or no option could be generated."""
    code = "insufficient_data_for_care_plan"


class UpstreamServiceError(RevolucareError):
    """AI capability or storage failure."""
    code = "upstream_service_error"

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        code: Optional[str] = None,
        retryable: bool = True,
    ):
        super().__init__(message, details=details, code=code)
        self.retryable = retryable
