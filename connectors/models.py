"""
Typed records returned by the connectors.

Payloads are decoded into these once, at the HTTP edge, so nothing past the
connector ever handles raw JSON.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

PR_STATES = ("OPEN", "CLOSED", "MERGED")


def parse_github_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp as returned by GitHub into an aware UTC datetime."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


@dataclass(frozen=True)
class RepoIdentity:
    owner: str
    repo: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"


@dataclass(frozen=True)
class WeeklyBucket:
    """One week of a contributor's commit activity.

    ``week_start`` is epoch seconds, aligned to the host's week epoch.
    """

    week_start: int
    additions: int = 0
    deletions: int = 0
    commits: int = 0


@dataclass
class CommitSeries:
    """Per-contributor commit statistics with their weekly history."""

    username: str
    total_commits: int
    total_additions: int = 0
    total_deletions: int = 0
    weekly_buckets: List[WeeklyBucket] = field(default_factory=list)

    @classmethod
    def from_api(cls, entry: Dict[str, Any]) -> Optional["CommitSeries"]:
        """
        Build a series from one element of the contributor statistics payload.

        :param entry: ``{author: {login}|null, total, weeks: [{w, a, d, c}]}``.
        :return: CommitSeries, or None when the entry has no author identity.
        """
        author = entry.get("author") or {}
        login = author.get("login")
        if not login:
            return None

        buckets = [
            WeeklyBucket(
                week_start=int(week.get("w", 0)),
                additions=int(week.get("a", 0) or 0),
                deletions=int(week.get("d", 0) or 0),
                commits=int(week.get("c", 0) or 0),
            )
            for week in entry.get("weeks") or []
        ]
        return cls(
            username=login,
            total_commits=int(entry.get("total", 0) or 0),
            total_additions=sum(b.additions for b in buckets),
            total_deletions=sum(b.deletions for b in buckets),
            weekly_buckets=buckets,
        )


@dataclass(frozen=True)
class ReviewData:
    reviewer: str
    created_at: datetime


@dataclass
class PullRequestData:
    """A pull request and the review events left on it."""

    author: str
    state: str
    merged: bool
    created_at: datetime
    merged_at: Optional[datetime] = None
    reviews: List[ReviewData] = field(default_factory=list)

    @classmethod
    def from_graphql(cls, node: Dict[str, Any]) -> Optional["PullRequestData"]:
        """
        Build a pull request from a GraphQL ``pullRequests.nodes`` element.

        Reviews without an author are dropped individually; a pull request
        without an author is dropped entirely (returns None).
        """
        author = (node.get("author") or {}).get("login")
        created_at = parse_github_timestamp(node.get("createdAt"))
        if not author or created_at is None:
            return None

        reviews = []
        for review in (node.get("reviews") or {}).get("nodes") or []:
            reviewer = (review.get("author") or {}).get("login")
            reviewed_at = parse_github_timestamp(review.get("createdAt"))
            if not reviewer or reviewed_at is None:
                continue
            reviews.append(ReviewData(reviewer=reviewer, created_at=reviewed_at))

        return cls(
            author=author,
            state=node.get("state") or "OPEN",
            merged=bool(node.get("merged")),
            created_at=created_at,
            merged_at=parse_github_timestamp(node.get("mergedAt")),
            reviews=reviews,
        )
