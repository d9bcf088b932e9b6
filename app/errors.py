"""Service error taxonomy mapped to HTTP responses by app.main."""

from typing import Optional


class ServiceError(Exception):
    """Base error with a status code and a message safe to show callers."""

    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(ServiceError):
    status_code = 400


class AuthError(ServiceError):
    status_code = 401


class ForbiddenError(ServiceError):
    status_code = 403


class NotFoundError(ServiceError):
    status_code = 404


class RateLimitError(ServiceError):
    status_code = 429

    def __init__(self, retry_after: int, headers: Optional[dict] = None):
        super().__init__("Too many requests. Please try again later.")
        self.retry_after = retry_after
        self.headers = headers or {}


class UpstreamTransientError(ServiceError):
    """AI gateway rate limit (429) or provider failure (502). Caller may retry."""

    status_code = 502


class UpstreamTerminalError(ServiceError):
    """AI gateway credits exhausted. Needs operator action."""

    status_code = 402


class OAuthStateError(ServiceError):
    """Connect flow cannot continue; the user must restart it."""

    status_code = 400

    def __init__(self, reason: str):
        super().__init__(f"OAuth flow failed: {reason}")
        self.reason = reason
