"""
GitHub connector for contributor activity.

Retrieves per-contributor commit statistics from the REST API and the
pull request / review history from the GraphQL API.
"""

import logging
from typing import List, Optional
from urllib.parse import urlparse

import requests

from connectors.models import CommitSeries, PullRequestData, RepoIdentity
from connectors.utils import (GitHubGraphQLClient, RESTClient, RetryPolicy,
                              raise_for_status)

logger = logging.getLogger(__name__)

GITHUB_API_URL = "https://api.github.com"
GITHUB_HOST = "github.com"

PR_PAGE_SIZE = 100
REVIEWS_PER_PR = 50

PR_QUERY = f"""
query($owner: String!, $repo: String!, $cursor: String) {{
  repository(owner: $owner, name: $repo) {{
    pullRequests(first: {PR_PAGE_SIZE}, after: $cursor, orderBy: {{field: CREATED_AT, direction: DESC}}) {{
      pageInfo {{
        hasNextPage
        endCursor
      }}
      nodes {{
        author {{ login }}
        state
        merged
        mergedAt
        createdAt
        reviews(first: {REVIEWS_PER_PR}) {{
          nodes {{
            author {{ login }}
            createdAt
          }}
        }}
      }}
    }}
  }}
}}
"""


def parse_github_url(url: Optional[str]) -> Optional[RepoIdentity]:
    """
    Extract the owner and repository name from a GitHub repository URL.

    :param url: Repository URL (e.g. 'https://github.com/owner/repo.git').
    :return: RepoIdentity, or None if the URL is missing, malformed or not GitHub.

    Examples:
        - 'https://github.com/o/r' -> RepoIdentity('o', 'r')
        - 'https://github.com/o/r.git' -> RepoIdentity('o', 'r')
        - 'https://gitlab.com/o/r' -> None
    """
    if not url:
        return None
    try:
        parsed = urlparse(url)
        hostname = parsed.hostname
    except ValueError:
        return None

    if not parsed.scheme or hostname != GITHUB_HOST:
        return None

    parts = [part for part in parsed.path.split("/") if part]
    if len(parts) < 2:
        return None

    repo = parts[1]
    if repo.endswith(".git"):
        repo = repo[: -len(".git")]
    if not repo:
        return None
    return RepoIdentity(owner=parts[0], repo=repo)


class GitHubConnector:
    """
    GitHub connector for the two contributor-activity feeds.

    The connector owns one HTTP session; create it at the process entry
    point and call :meth:`close` (or use it as a context manager) when done.
    """

    def __init__(
        self,
        token: Optional[str] = None,
        base_url: str = GITHUB_API_URL,
        graphql_url: Optional[str] = None,
        timeout: int = 30,
        retry_policy: Optional[RetryPolicy] = None,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize GitHub connector.

        :param token: Optional GitHub token. Without it the PR feed is unavailable.
        :param base_url: REST API base URL (GitHub Enterprise installs differ).
        :param graphql_url: GraphQL endpoint; defaults to ``{base_url}/graphql``.
        :param timeout: Per-request timeout in seconds.
        :param retry_policy: Policy for "still computing" (202) responses.
        :param session: Optional shared requests session.
        """
        self.token = token or None
        self.retry_policy = retry_policy or RetryPolicy()
        self.session = session or requests.Session()
        self.rest = RESTClient(
            base_url, token=self.token, timeout=timeout, session=self.session
        )
        self.graphql: Optional[GitHubGraphQLClient] = None
        if self.token:
            self.graphql = GitHubGraphQLClient(
                self.token,
                url=graphql_url or f"{base_url.rstrip('/')}/graphql",
                timeout=timeout,
                session=self.session,
            )

    def __enter__(self) -> "GitHubConnector":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def get_contributor_commit_stats(self, owner: str, repo: str) -> List[CommitSeries]:
        """
        Get per-contributor commit statistics for a repository.

        GitHub computes these asynchronously and answers 202 until they are
        ready. The request is retried according to the retry policy; if the
        statistics are still being computed afterwards an empty list is
        returned, which callers must read as "temporarily unavailable".
        An empty repository (204 No Content) also yields an empty list.

        :param owner: Repository owner.
        :param repo: Repository name.
        :return: List of CommitSeries, one per contributor with a GitHub login.
        :raises ConnectorException: On any other non-success response.
        """
        endpoint = f"repos/{owner}/{repo}/stats/contributors"
        response = self.rest.get_response(endpoint)

        attempt = 0
        while response.status_code == 202 and attempt < self.retry_policy.max_retries:
            attempt += 1
            logger.info(
                "Commit stats for %s/%s are still being computed; retrying", owner, repo
            )
            self.retry_policy.wait(attempt)
            response = self.rest.get_response(endpoint)

        if response.status_code == 202:
            logger.warning(
                "Commit stats for %s/%s still being computed after %d retries",
                owner,
                repo,
                attempt,
            )
            return []

        if response.status_code == 204:
            logger.info("No commit stats for %s/%s (empty repository)", owner, repo)
            return []

        raise_for_status(response, endpoint)

        data = response.json()
        if not isinstance(data, list):
            logger.warning(f"Expected list response, got {type(data)}")
            return []

        series = []
        for entry in data:
            contributor = CommitSeries.from_api(entry)
            if contributor is not None:
                series.append(contributor)

        logger.info(
            f"Retrieved commit stats for {len(series)} contributors of {owner}/{repo}"
        )
        return series

    def get_pull_request_stats(self, owner: str, repo: str) -> List[PullRequestData]:
        """
        Get every pull request of a repository with its review events.

        Pages through the GraphQL API newest-first. Without a token the
        feed is unavailable and an empty list is returned.

        :param owner: Repository owner.
        :param repo: Repository name.
        :return: List of PullRequestData.
        :raises ConnectorException: If any page fails; no partial result is returned.
        """
        if self.graphql is None:
            logger.info(
                "No GitHub token configured; skipping pull request stats for %s/%s",
                owner,
                repo,
            )
            return []

        prs: List[PullRequestData] = []
        cursor: Optional[str] = None
        page = 0

        while True:
            page += 1
            data = self.graphql.query(
                PR_QUERY, {"owner": owner, "repo": repo, "cursor": cursor}
            )
            connection = (data.get("repository") or {}).get("pullRequests")
            if not connection:
                break

            for node in connection.get("nodes") or []:
                pr = PullRequestData.from_graphql(node)
                if pr is not None:
                    prs.append(pr)

            logger.debug(f"Fetched PR page {page} for {owner}/{repo} ({len(prs)} so far)")

            page_info = connection.get("pageInfo") or {}
            if not page_info.get("hasNextPage"):
                break
            cursor = page_info.get("endCursor")

        logger.info(f"Retrieved {len(prs)} pull requests for {owner}/{repo}")
        return prs

    def close(self) -> None:
        """Close the connector and cleanup resources."""
        self.session.close()
