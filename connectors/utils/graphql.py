"""
GitHub GraphQL client.
"""

import logging
from typing import Any, Dict, Optional

import requests

from connectors.exceptions import APIException, AuthenticationException
from connectors.utils.rest import DEFAULT_USER_AGENT, raise_for_status

logger = logging.getLogger(__name__)

GITHUB_GRAPHQL_URL = "https://api.github.com/graphql"


class GitHubGraphQLClient:
    """Minimal GraphQL client; the endpoint always requires a bearer token."""

    def __init__(
        self,
        token: str,
        url: str = GITHUB_GRAPHQL_URL,
        timeout: int = 30,
        session: Optional[requests.Session] = None,
    ):
        if not token:
            raise AuthenticationException("GitHub GraphQL API requires a token")
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()
        self.headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "User-Agent": DEFAULT_USER_AGENT,
        }

    def query(self, query: str, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Execute a GraphQL query.

        :param query: GraphQL document.
        :param variables: Query variables.
        :return: The ``data`` member of the response (may be empty).
        :raises APIException: On a non-200 response or a GraphQL error payload.
        """
        logger.debug("POST %s", self.url)
        try:
            response = self.session.post(
                self.url,
                json={"query": query, "variables": variables or {}},
                headers=self.headers,
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout:
            raise APIException("GitHub GraphQL request timeout")
        except requests.exceptions.RequestException as e:
            raise APIException(f"GitHub GraphQL request failed: {e}")

        if response.status_code != 200:
            if response.status_code in (401, 403, 429):
                raise_for_status(response, "graphql")
            raise APIException(
                f"GitHub GraphQL error: {response.status_code} {response.reason or ''}".strip(),
                status_code=response.status_code,
            )

        payload = response.json()
        errors = payload.get("errors") or []
        if errors:
            message = errors[0].get("message", "unknown error")
            raise APIException(f"GitHub GraphQL: {message}")

        return payload.get("data") or {}
