"""Engine error taxonomy.

Every error the job engine or the distribution pipeline surfaces to a caller
is an ``EngineError`` carrying a stable ``code``. The HTTP layer maps codes to
status codes in one place (``HTTP_STATUS``); services never raise
``HTTPException`` themselves.
"""

from enum import Enum
from typing import Any, Optional


class ErrorCode(str, Enum):
    """Stable error codes exposed to API clients."""

    DUPLICATE_JOB = "DUPLICATE_JOB"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    INVALID_STATE = "INVALID_STATE"
    MODULE_DISABLED = "MODULE_DISABLED"
    # Delivery outcomes
    RATE_LIMITED = "RATE_LIMITED"
    CIRCUIT_OPEN = "CIRCUIT_OPEN"
    PLATFORM_REJECTED = "PLATFORM_REJECTED"
    TRANSIENT_NETWORK = "TRANSIENT_NETWORK"
    PERMANENT = "PERMANENT"
    INTERNAL_ERROR = "INTERNAL_ERROR"


HTTP_STATUS: dict[ErrorCode, int] = {
    ErrorCode.DUPLICATE_JOB: 409,
    ErrorCode.VALIDATION_ERROR: 400,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.INVALID_STATE: 409,
    ErrorCode.MODULE_DISABLED: 503,
    ErrorCode.RATE_LIMITED: 429,
    ErrorCode.CIRCUIT_OPEN: 503,
    ErrorCode.PLATFORM_REJECTED: 502,
    ErrorCode.TRANSIENT_NETWORK: 502,
    ErrorCode.PERMANENT: 502,
    ErrorCode.INTERNAL_ERROR: 500,
}

# Messages safe to show to end users. Anything not listed gets the generic text.
PUBLIC_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.DUPLICATE_JOB: "An identical job is already in progress",
    ErrorCode.MODULE_DISABLED: "Module disabled",
    ErrorCode.NOT_FOUND: "Resource not found",
    ErrorCode.RATE_LIMITED: "Rate limit reached, try again later",
    ErrorCode.CIRCUIT_OPEN: "Channel temporarily unavailable",
}

GENERIC_MESSAGE = "The request could not be completed"


class EngineError(Exception):
    """Base class for errors raised by the engine."""

    code: ErrorCode = ErrorCode.INTERNAL_ERROR
    retryable: bool = False

    def __init__(
        self,
        message: str,
        details: Optional[dict[str, Any]] = None,
        retryable: Optional[bool] = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if retryable is not None:
            self.retryable = retryable

    @property
    def status_code(self) -> int:
        return HTTP_STATUS.get(self.code, 500)

    def public_message(self) -> str:
        """Message suitable for an API response."""
        if self.code in (ErrorCode.VALIDATION_ERROR, ErrorCode.INVALID_STATE):
            return self.message
        return PUBLIC_MESSAGES.get(self.code, GENERIC_MESSAGE)

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code.value,
            "message": self.public_message(),
            "retryable": self.retryable,
            **self.details,
        }


class DuplicateJobError(EngineError):
    """An open job with the same fingerprint already exists."""

    code = ErrorCode.DUPLICATE_JOB

    def __init__(self, existing_job_id: str, fingerprint: str):
        super().__init__(
            f"Duplicate job: {existing_job_id} is already in progress",
            details={"existing_job_id": str(existing_job_id)},
        )
        self.existing_job_id = str(existing_job_id)
        self.fingerprint = fingerprint


class ValidationFailedError(EngineError):
    """Input failed validation."""

    code = ErrorCode.VALIDATION_ERROR

    def __init__(self, message: str, errors: Optional[list[Any]] = None):
        super().__init__(message, details={"errors": errors} if errors else None)


class NotFoundError(EngineError):
    """Requested record does not exist."""

    code = ErrorCode.NOT_FOUND

    def __init__(self, resource: str, resource_id: Any):
        super().__init__(f"{resource} {resource_id} not found")
        self.resource = resource
        self.resource_id = str(resource_id)


class InvalidStateError(EngineError):
    """Operation not allowed in the record's current status."""

    code = ErrorCode.INVALID_STATE

    def __init__(self, resource: str, resource_id: Any, status: str, action: str):
        super().__init__(
            f"Cannot {action} {resource} {resource_id} in status {status}",
            details={"status": status},
        )
        self.status = status
        self.action = action


class ModuleDisabledError(EngineError):
    """A kill switch has disabled the module."""

    code = ErrorCode.MODULE_DISABLED
    retryable = True

    def __init__(self, module: str = "distribution"):
        super().__init__(f"{module} module disabled", details={"module": module})
        self.module = module
