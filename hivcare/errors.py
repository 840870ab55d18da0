"""
Exception taxonomy shared by the authorization engine, services and jobs.

Each error carries the HTTP status the API boundary should answer with.
"""

from typing import Optional


class PortalError(Exception):
    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message or self.__class__.__name__


class AuthenticationRequired(PortalError):
    """No valid session could be resolved for the caller."""
    status_code = 401

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


class AuthorizationDenied(PortalError):
    """The caller is authenticated but holds no grant for the operation."""
    status_code = 403


class ValidationFailed(PortalError):
    status_code = 400

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.details = details or {}


class RecordNotFound(PortalError):
    status_code = 404


class Conflict(PortalError):
    status_code = 409


class RateLimitExceeded(PortalError):
    status_code = 429

    def __init__(self, reset_time: float, message: str = "Rate limit exceeded"):
        super().__init__(message)
        self.reset_time = reset_time


class TransactionFailure(PortalError):
    """A batch job transaction was rolled back; nothing was committed."""
    status_code = 500
