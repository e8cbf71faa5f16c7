"""Typed application errors.

Business rules raise these; the exception handler registered in ``main.py``
maps each one to its HTTP status and a ``{"success": false, "message": ...}``
body. Nothing else about the exception is sent to the client.
"""
from typing import Optional


class AppError(Exception):
    """Base class for errors that carry an HTTP status code."""

    status_code = 500
    default_message = "An unexpected error occurred"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(AppError):
    status_code = 400
    default_message = "Invalid request"


class Unauthorized(AppError):
    status_code = 401
    default_message = "Unauthorized"


class TokenExpired(Unauthorized):
    default_message = "Token expired"


class TokenInvalid(Unauthorized):
    default_message = "Invalid token"


class NotFound(AppError):
    status_code = 404
    default_message = "Not found"


class RateLimited(AppError):
    status_code = 429

    def __init__(self, retry_after: int, message: Optional[str] = None):
        self.retry_after = retry_after
        super().__init__(message or f"Too many requests. Please try again in {retry_after} seconds.")


class ConfigurationError(AppError):
    status_code = 500
    default_message = "Server misconfiguration"
