"""
GitHub connector for retrieving contributor activity.

This package provides the commit-statistics and pull-request feeds used by
the contributor stats sync, with typed records and connector exceptions.
"""

from .exceptions import (APIException, AuthenticationException,
                         ConnectorException, NotFoundException,
                         RateLimitException)
from .github import GitHubConnector, parse_github_url
from .models import (CommitSeries, PullRequestData, RepoIdentity, ReviewData,
                     WeeklyBucket)

__all__ = [
    # Connectors
    "GitHubConnector",
    "parse_github_url",
    # Models
    "RepoIdentity",
    "CommitSeries",
    "WeeklyBucket",
    "PullRequestData",
    "ReviewData",
    # Exceptions
    "ConnectorException",
    "RateLimitException",
    "AuthenticationException",
    "NotFoundException",
    "APIException",
]
