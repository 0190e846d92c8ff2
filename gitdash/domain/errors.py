"""Domain error taxonomy.

Every failure that crosses a layer boundary is one of these classes, so the
application service can decide per error kind whether to propagate, degrade
a sub-metric, or void a series.
"""
from typing import Optional


class GitDashError(Exception):
    """Base exception for all statistics core errors."""

    code = "GITDASH_ERROR"
    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(f"[{self.code}] {message}")


class ValidationError(GitDashError):
    """Raised for malformed repository identifiers or time-range literals."""

    code = "VALIDATION_ERROR"
    status_code = 400


class AuthenticationError(GitDashError):
    """Raised when the credential is rejected or expired."""

    code = "AUTHENTICATION_ERROR"
    status_code = 401


class NotFoundError(GitDashError):
    """Raised when a repository or collaborator does not exist or is inaccessible."""

    code = "NOT_FOUND"
    status_code = 404


class TransientError(GitDashError):
    """Raised on network failures, timeouts and rate limiting."""

    code = "TRANSIENT_ERROR"

    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


class UnexpectedError(GitDashError):
    """Raised for any upstream failure that fits no other category."""

    code = "UNEXPECTED_ERROR"


class CacheError(GitDashError):
    """Raised by cache backends; never surfaced past the cache layer."""

    code = "CACHE_ERROR"
