"""Shared test fixtures for the test suite."""
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import pytest
import pytest_asyncio

from connectors.models import CommitSeries, WeeklyBucket
from providers.roster import YamlProjectDirectory
from storage import SQLAlchemyStore

# A Sunday, 00:00 UTC.
BASE_WEEK = datetime(2023, 1, 1, tzinfo=timezone.utc)
WEEK = timedelta(weeks=1)

ROSTER_YAML = """\
projects:
  - id: platform
    name: Platform
    repo_url: https://github.com/acme/platform
    members:
      - github_username: alice
        email: alice@acme.io
        email_aliases:
          - alice@users.noreply.github.com
      - github_username: bob
        email: bob@acme.io
  - id: docs
    repo_url: https://gitlab.com/acme/docs
    members:
      - github_username: carol
  - id: internal
    repo_url:
    members:
      - github_username: dave
"""


def week_ts(index: int) -> int:
    """Epoch seconds of the `index`-th week after BASE_WEEK."""
    return int((BASE_WEEK + index * WEEK).timestamp())


def make_series(username, weekly_commits, total=None, start=0):
    """Build a CommitSeries with one bucket per entry of `weekly_commits`."""
    buckets = [
        WeeklyBucket(week_start=week_ts(start + i), additions=c * 10, deletions=c, commits=c)
        for i, c in enumerate(weekly_commits)
    ]
    return CommitSeries(
        username=username,
        total_commits=sum(weekly_commits) if total is None else total,
        total_additions=sum(b.additions for b in buckets),
        total_deletions=sum(b.deletions for b in buckets),
        weekly_buckets=buckets,
    )


def mock_response(status_code=200, json_data=None, headers=None, reason=""):
    """Return a Mock shaped like a requests.Response."""
    response = Mock()
    response.status_code = status_code
    response.reason = reason
    response.headers = headers or {}
    response.json.return_value = json_data
    return response


@pytest.fixture
def roster_path(tmp_path):
    """Write a small roster file and return its path."""
    path = tmp_path / "projects.yaml"
    path.write_text(ROSTER_YAML, encoding="utf-8")
    return path


@pytest.fixture
def directory(roster_path):
    return YamlProjectDirectory(roster_path)


@pytest.fixture
def test_db_url(tmp_path):
    """Return a file-backed SQLite URL; each store operation opens its own connection."""
    return f"sqlite+aiosqlite:///{tmp_path / 'stats.db'}"


@pytest_asyncio.fixture
async def store(test_db_url):
    """Create a SQLAlchemyStore with tables, disposed after the test."""
    async with SQLAlchemyStore(test_db_url) as s:
        yield s
