"""API error types.

Each error carries the HTTP status, the envelope message and, when there is
one, a structured ``errors`` map. A single exception handler in main.py turns
any of them into an error envelope.
"""
import logging
from contextlib import contextmanager

from fastapi import status

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """Base class for errors rendered as an error envelope."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Something went wrong."

    def __init__(self, message: str | None = None, errors: dict | None = None, status_code: int | None = None):
        self.message = message or self.default_message
        self.errors = errors or None
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)


class ValidationFailed(ApiError):
    """Field-level validation failure; errors maps field name to messages."""
    status_code = 422
    default_message = "Validation Error"


class AuthenticationError(ApiError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Unauthenticated."


class AuthorizationError(ApiError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Unauthorized"


class NotFoundError(ApiError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found"


class ConflictError(ApiError):
    """A delete or update blocked by existing associations."""
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Conflict"


class InternalError(ApiError):
    """Unexpected persistence/runtime failure; the raw cause goes under errors.error."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    @classmethod
    def from_exception(cls, message: str, exc: Exception):
        return cls(message, errors={"error": str(exc)})


@contextmanager
def internal_errors(message: str):
    """Let ApiErrors through; log anything else and raise it as an InternalError with message"""
    try:
        yield
    except ApiError:
        raise
    except Exception as e:
        logger.error(f"{message} {e}")
        raise InternalError.from_exception(message, e) from e
