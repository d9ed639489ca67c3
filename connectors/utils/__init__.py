"""
Utility modules for connectors.
"""

from .graphql import GitHubGraphQLClient
from .rest import RESTClient, raise_for_status
from .retry import NO_DELAY, RetryPolicy

__all__ = [
    "GitHubGraphQLClient",
    "RESTClient",
    "raise_for_status",
    "RetryPolicy",
    "NO_DELAY",
]
