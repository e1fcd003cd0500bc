"""
Service-level exceptions mapped to HTTP responses.

Each class carries the HTTP status code and the stable error code used in
the error envelope. Authentication failures use fixed messages so callers
cannot tell which check failed.
"""
from typing import Optional


class ServiceError(Exception):
    """Base exception for credential service errors"""

    status_code: int = 500
    error_code: str = "internal_error"
    default_message: str = "Unexpected server error"

    def __init__(self, message: Optional[str] = None, *, detail: Optional[dict] = None):
        self.message = message or self.default_message
        self.detail = detail or {}
        super().__init__(self.message)


class ValidationError(ServiceError):
    """Malformed input (400)"""
    status_code = 400
    error_code = "validation_error"
    default_message = "Request validation failed"


class EmailAlreadyUsedError(ServiceError):
    """Registration conflict (409)"""
    status_code = 409
    error_code = "email_already_exists"
    default_message = "Email is already registered"


class InvalidCredentialsError(ServiceError):
    """Unknown email or wrong password (401)"""
    status_code = 401
    error_code = "invalid_credentials"
    default_message = "Email or password is incorrect"


class InvalidTokenError(ServiceError):
    """Token failed verification or is no longer active (401)"""
    status_code = 401
    error_code = "invalid_token"
    default_message = "Token is invalid or expired"


class MissingTokenError(ServiceError):
    """No bearer token on a protected request (401)"""
    status_code = 401
    error_code = "missing_token"
    default_message = "Authorization token is required"


class ForbiddenError(ServiceError):
    """Authenticated but not allowed (403)"""
    status_code = 403
    error_code = "forbidden"
    default_message = "Insufficient permissions"


class NotFoundError(ServiceError):
    """Referenced entity does not exist (404)"""
    status_code = 404
    error_code = "not_found"
    default_message = "Resource not found"


class ServerError(ServiceError):
    """Wrapped storage or signing failure (500)"""


__all__ = [
    "ServiceError",
    "ValidationError",
    "EmailAlreadyUsedError",
    "InvalidCredentialsError",
    "InvalidTokenError",
    "MissingTokenError",
    "ForbiddenError",
    "NotFoundError",
    "ServerError",
]
