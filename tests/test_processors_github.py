"""
Tests for the GitHub contributor stats sync.
"""

import asyncio
import threading
import time
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, Mock

import pytest
from conftest import make_series

from connectors import APIException
from connectors.models import PullRequestData, ReviewData
from metrics.schemas import StatsPeriod
from models.stats import SyncStatus
from processors.github import (PARTIAL_SYNC_WARNING, SYNC_CANCELLED_MESSAGE,
                               SYNC_MODE_FULL, SYNC_MODE_PARTIAL,
                               GitHubStatsSync,
                               sync_all_projects, sync_project)
from providers.roster import YamlProjectDirectory

RECENT = datetime.now(timezone.utc) - timedelta(days=2)


def _prs():
    return [
        PullRequestData(
            author="bob",
            state="MERGED",
            merged=True,
            created_at=RECENT,
            merged_at=RECENT,
            reviews=[ReviewData(reviewer="alice", created_at=RECENT)],
        ),
        PullRequestData(author="outsider", state="OPEN", merged=False, created_at=RECENT),
    ]


def _connector(commits=None, prs=None):
    connector = Mock()
    connector.get_contributor_commit_stats.return_value = (
        [make_series("alice", [2] * 10), make_series("outsider", [9])]
        if commits is None
        else commits
    )
    connector.get_pull_request_stats.return_value = _prs() if prs is None else prs
    return connector


def _rows_by_key(rows):
    return {(r.username, r.period): r for r in rows}


@pytest.mark.asyncio
async def test_full_sync(store, directory):
    connector = _connector()

    outcome = await GitHubStatsSync(store, directory, connector).sync_project("platform")

    assert outcome.mode == SYNC_MODE_FULL
    assert outcome.warning is None
    assert outcome.contributors == 2
    connector.get_contributor_commit_stats.assert_called_once_with("acme", "platform")
    connector.get_pull_request_stats.assert_called_once_with("acme", "platform")

    rows = _rows_by_key(await store.get_contributor_stats("platform"))
    assert {u for u, _ in rows} == {"alice", "bob"}
    alice = rows[("alice", StatsPeriod.ALL_TIME)]
    assert alice.commits == 20
    assert alice.reviews_done == 1
    bob = rows[("bob", StatsPeriod.ALL_TIME)]
    assert (bob.prs_opened, bob.prs_merged, bob.commits) == (1, 1, 0)
    assert rows[("bob", StatsPeriod.YTD)].prs_opened == 1

    status = await store.get_sync_status("platform")
    assert status.sync_status == SyncStatus.IDLE
    assert status.sync_error is None
    assert status.last_sync_at is not None


@pytest.mark.asyncio
async def test_partial_sync_keeps_commit_stats(store, directory):
    await GitHubStatsSync(store, directory, _connector()).sync_project("platform")

    more_reviews = _prs() + [
        PullRequestData(
            author="alice",
            state="OPEN",
            merged=False,
            created_at=RECENT,
            reviews=[ReviewData(reviewer="bob", created_at=RECENT)],
        )
    ]
    outcome = await GitHubStatsSync(
        store, directory, _connector(commits=[], prs=more_reviews)
    ).sync_project("platform")

    assert outcome.mode == SYNC_MODE_PARTIAL
    assert outcome.warning == PARTIAL_SYNC_WARNING

    rows = _rows_by_key(await store.get_contributor_stats("platform"))
    alice = rows[("alice", StatsPeriod.ALL_TIME)]
    assert alice.commits == 20
    assert alice.prs_opened == 1
    assert rows[("bob", StatsPeriod.ALL_TIME)].reviews_done == 1

    status = await store.get_sync_status("platform")
    assert status.sync_status == SyncStatus.IDLE
    assert status.sync_error == PARTIAL_SYNC_WARNING


@pytest.mark.asyncio
async def test_partial_sync_with_no_activity_still_warns(store, directory):
    outcome = await GitHubStatsSync(
        store, directory, _connector(commits=[], prs=[])
    ).sync_project("platform")

    assert outcome.mode == SYNC_MODE_PARTIAL
    assert await store.get_contributor_stats("platform") == []
    status = await store.get_sync_status("platform")
    assert status.sync_error == PARTIAL_SYNC_WARNING


@pytest.mark.asyncio
async def test_full_sync_clears_previous_warning(store, directory):
    await GitHubStatsSync(store, directory, _connector(commits=[])).sync_project(
        "platform"
    )
    await GitHubStatsSync(store, directory, _connector()).sync_project("platform")

    status = await store.get_sync_status("platform")
    assert status.sync_error is None


@pytest.mark.asyncio
async def test_failure_is_recorded_and_raised(store, directory):
    await GitHubStatsSync(store, directory, _connector()).sync_project("platform")

    connector = _connector()
    connector.get_contributor_commit_stats.side_effect = APIException(
        "GitHub API error: 500 Internal Server Error", status_code=500
    )

    with pytest.raises(APIException):
        await GitHubStatsSync(store, directory, connector).sync_project("platform")

    status = await store.get_sync_status("platform")
    assert status.sync_status == SyncStatus.ERROR
    assert "500" in status.sync_error
    # stats from the last good sync are untouched
    rows = _rows_by_key(await store.get_contributor_stats("platform"))
    assert rows[("alice", StatsPeriod.ALL_TIME)].commits == 20


@pytest.mark.asyncio
@pytest.mark.parametrize("project_id", ["docs", "internal", "unknown"])
async def test_projects_without_github_repo_are_skipped(store, directory, project_id):
    connector = _connector()

    outcome = await GitHubStatsSync(store, directory, connector).sync_project(project_id)

    assert outcome is None
    connector.get_contributor_commit_stats.assert_not_called()
    assert await store.get_sync_status(project_id) is None


@pytest.mark.asyncio
async def test_module_level_sync_project(store, directory):
    outcome = await sync_project(store, directory, _connector(), "platform")
    assert outcome.mode == SYNC_MODE_FULL


@pytest.mark.asyncio
async def test_same_project_syncs_do_not_overlap(store, directory):
    active = 0
    peak = 0
    guard = threading.Lock()

    def slow_stats(owner, repo):
        nonlocal active, peak
        with guard:
            active += 1
            peak = max(peak, active)
        time.sleep(0.05)
        with guard:
            active -= 1
        return [make_series("alice", [1])]

    connector = _connector()
    connector.get_contributor_commit_stats.side_effect = slow_stats
    sync = GitHubStatsSync(store, directory, connector)

    first, second = await asyncio.gather(
        sync.sync_project("platform"), sync.sync_project("platform")
    )

    assert peak == 1
    assert first.mode == second.mode == SYNC_MODE_FULL
    assert connector.get_contributor_commit_stats.call_count == 2
    assert list(sync._project_locks) == ["platform"]


FANOUT_ROSTER = """\
projects:
  - id: a
    repo_url: https://github.com/acme/a
    members: [{github_username: alice}]
  - id: b
    repo_url: https://github.com/acme/b
    members: [{github_username: alice}]
  - id: c
    repo_url: https://github.com/acme/c.git
    members: [{github_username: alice}]
  - id: d
    members: [{github_username: alice}]
"""


@pytest.fixture
def fanout_directory(tmp_path):
    path = tmp_path / "fanout.yaml"
    path.write_text(FANOUT_ROSTER, encoding="utf-8")
    return YamlProjectDirectory(path)


def _fanout_connector():
    def commit_stats(owner, repo):
        if repo == "b":
            raise APIException("GitHub API error: 502 Bad Gateway", status_code=502)
        return [make_series("alice", [1, 2])]

    connector = _connector()
    connector.get_contributor_commit_stats.side_effect = commit_stats
    return connector


@pytest.mark.asyncio
async def test_sync_all_isolates_failures(store, fanout_directory):
    connector = _fanout_connector()

    results = await GitHubStatsSync(store, fanout_directory, connector).sync_all_projects()

    assert [(r.project_id, r.success) for r in results] == [
        ("a", True),
        ("b", False),
        ("c", True),
    ]
    assert "502" in results[1].error
    assert (await store.get_sync_status("a")).sync_status == SyncStatus.IDLE
    assert (await store.get_sync_status("b")).sync_status == SyncStatus.ERROR
    assert (await store.get_sync_status("c")).sync_status == SyncStatus.IDLE
    assert await store.get_sync_status("d") is None
    assert len(await store.get_contributor_stats("c")) == 2


@pytest.mark.asyncio
async def test_sync_all_with_concurrency_cap(fanout_directory):
    store = AsyncMock()

    results = await sync_all_projects(
        store, fanout_directory, _fanout_connector(), max_concurrent=1
    )

    assert [r.success for r in results] == [True, False, True]
    assert store.mark_sync_started.await_count == 3
    store.mark_sync_failed.assert_awaited_once()
    assert store.mark_sync_failed.await_args[0][0] == "b"


@pytest.mark.asyncio
async def test_sync_all_with_no_projects(store, tmp_path):
    path = tmp_path / "empty.yaml"
    path.write_text("projects: []\n", encoding="utf-8")

    results = await GitHubStatsSync(
        store, YamlProjectDirectory(path), _connector()
    ).sync_all_projects()

    assert results == []


@pytest.mark.asyncio
async def test_cancelled_sync_is_recorded(store, directory):
    started = threading.Event()

    def blocking_stats(owner, repo):
        started.set()
        time.sleep(0.3)
        return [make_series("alice", [1])]

    connector = _connector()
    connector.get_contributor_commit_stats.side_effect = blocking_stats

    task = asyncio.create_task(
        GitHubStatsSync(store, directory, connector).sync_project("platform")
    )
    while not started.is_set():
        await asyncio.sleep(0.01)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task

    status = await store.get_sync_status("platform")
    assert status.sync_status == SyncStatus.ERROR
    assert status.sync_error == SYNC_CANCELLED_MESSAGE
