"""
Exception types for connector operations.
"""

from typing import Optional


class ConnectorException(Exception):
    """Base exception for all connector errors."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RateLimitException(ConnectorException):
    """Raised when API rate limit is exceeded."""

    pass


class AuthenticationException(ConnectorException):
    """Raised when authentication fails."""

    pass


class NotFoundException(ConnectorException):
    """Raised when a repository or resource does not exist."""

    pass


class APIException(ConnectorException):
    """Raised when API returns an error."""

    pass
