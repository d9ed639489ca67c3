"""
REST API helper utilities.

Provides a small requests-based client for the GitHub REST API that
translates HTTP failures into connector exceptions.
"""

import logging
from typing import Any, Dict, Optional

import requests

from connectors.exceptions import (APIException, AuthenticationException,
                                   NotFoundException, RateLimitException)

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "contributor-stats-sync"


def raise_for_status(response: requests.Response, endpoint: str) -> None:
    """
    Raise the connector exception matching a non-success response.

    :param response: HTTP response.
    :param endpoint: Endpoint that was called (for the error message).
    :raises AuthenticationException: On 401.
    :raises RateLimitException: On 429, or 403 with an exhausted rate-limit budget.
    :raises NotFoundException: On 404.
    :raises APIException: On any other non-200 status.
    """
    status = response.status_code
    if status == 200:
        return

    detail = f"{status} {response.reason or ''}".strip()
    if status == 401:
        raise AuthenticationException(
            f"GitHub authentication failed: {detail}", status_code=status
        )
    if status == 429 or (
        status == 403 and response.headers.get("X-RateLimit-Remaining") == "0"
    ):
        raise RateLimitException(
            f"GitHub rate limit exceeded: {detail}", status_code=status
        )
    if status == 404:
        raise NotFoundException(
            f"GitHub API error: {detail} ({endpoint})", status_code=status
        )
    raise APIException(f"GitHub API error: {detail}", status_code=status)


class RESTClient:
    """
    Generic REST API client sharing one HTTP session.
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: int = 30,
        headers: Optional[Dict[str, str]] = None,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize REST client.

        :param base_url: Base URL for the API.
        :param token: Optional authentication token.
        :param timeout: Request timeout in seconds.
        :param headers: Optional additional headers.
        :param session: Optional pre-built session (owned by the caller).
        """
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.headers = {
            "Accept": "application/vnd.github.v3+json",
            "User-Agent": DEFAULT_USER_AGENT,
            **(headers or {}),
        }
        self.session = session or requests.Session()

        if token:
            self.headers["Authorization"] = f"Bearer {token}"

    def get_response(
        self,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> requests.Response:
        """
        Make a GET request and return the raw response, whatever its status.

        Use this for endpoints with non-error statuses other than 200
        (e.g. 202 Accepted); use :meth:`get` otherwise.

        :raises APIException: On timeout or transport failure.
        """
        url = f"{self.base_url}/{endpoint.lstrip('/')}"
        request_headers = {**self.headers, **(headers or {})}
        logger.debug("GET %s", url)

        try:
            return self.session.get(
                url,
                params=params,
                headers=request_headers,
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout:
            raise APIException(f"Request timeout: {endpoint}")
        except requests.exceptions.RequestException as e:
            raise APIException(f"Request failed: {e}")

    def get(
        self,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        """
        Make a GET request to the API.

        :param endpoint: API endpoint (relative to base_url).
        :param params: Optional query parameters.
        :param headers: Optional additional headers.
        :return: Decoded JSON body.
        """
        response = self.get_response(endpoint, params=params, headers=headers)
        raise_for_status(response, endpoint)
        return response.json()

    def close(self) -> None:
        self.session.close()
