import asyncio
import logging
from collections import Counter
from typing import Dict, Iterable, List, Optional, Set, Tuple

from git import Repo as GitRepo
from git.exc import GitCommandError, InvalidGitRepositoryError, NoSuchPathError

from connectors.models import CommitSeries, WeeklyBucket
from metrics.compute import aggregate_contributor_stats, week_start
from processors.github import SYNC_CANCELLED_MESSAGE
from providers.roster import ProjectDirectory, TeamMember
from storage import SQLAlchemyStore


class LocalSyncError(Exception):
    """Raised when a local clone cannot produce contributor stats."""


def build_email_index(members: Iterable[TeamMember]) -> Tuple[Dict[str, str], Set[str]]:
    """
    Map commit author emails to roster usernames.

    Each member is keyed by the first of gitlab username, github username or
    email that is set; primary email and aliases are matched case-insensitively.

    :return: (email -> username, set of usernames)
    """
    email_to_username: Dict[str, str] = {}
    usernames: Set[str] = set()
    for member in members:
        username = member.gitlab_username or member.github_username or member.email
        if not username:
            continue
        usernames.add(username)
        for email in (member.email, *member.email_aliases):
            if email:
                email_to_username[email.strip().lower()] = username
    return email_to_username, usernames


def collect_commit_series(
    repo_path: str,
    email_to_username: Dict[str, str],
    max_commits: Optional[int] = None,
) -> List[CommitSeries]:
    """
    Build per-contributor commit series from a local clone's history.

    Commits whose author email is not in `email_to_username` are skipped.
    Weekly buckets are Sunday-aligned and sorted chronologically.
    """
    try:
        repo = GitRepo(repo_path)
    except (InvalidGitRepositoryError, NoSuchPathError) as e:
        raise LocalSyncError(f"Not a git repository: {repo_path}") from e

    totals: Dict[str, Dict[str, int]] = {}
    weeks: Dict[str, Dict[int, Dict[str, int]]] = {}
    unmatched: Counter = Counter()
    seen = 0

    try:
        for commit in repo.iter_commits(max_count=max_commits):
            seen += 1
            email = (commit.author.email or "").strip().lower()
            username = email_to_username.get(email)
            if not username:
                unmatched[email] += 1
                continue

            if len(commit.parents) > 1:
                # merges carry no line changes of their own
                additions = deletions = 0
            else:
                stat = commit.stats.total
                additions = int(stat.get("insertions", 0))
                deletions = int(stat.get("deletions", 0))

            user_totals = totals.setdefault(
                username, {"commits": 0, "additions": 0, "deletions": 0}
            )
            user_totals["commits"] += 1
            user_totals["additions"] += additions
            user_totals["deletions"] += deletions

            week = week_start(commit.authored_datetime)
            bucket = weeks.setdefault(username, {}).setdefault(
                week, {"commits": 0, "additions": 0, "deletions": 0}
            )
            bucket["commits"] += 1
            bucket["additions"] += additions
            bucket["deletions"] += deletions
    except (GitCommandError, ValueError) as e:
        # ValueError: empty repository (no HEAD to walk from)
        raise LocalSyncError(f"Failed to read history of {repo_path}: {e}") from e
    finally:
        repo.close()

    logging.info(
        f"Read {seen} commits from {repo_path}: "
        f"{seen - sum(unmatched.values())} matched, {sum(unmatched.values())} unmatched"
    )
    for email, count in unmatched.most_common():
        logging.warning(f"Unmatched commit author {email or '<none>'} ({count} commits)")

    if seen == 0:
        raise LocalSyncError(f"No commits found in {repo_path}")

    series = []
    for username, user_totals in totals.items():
        series.append(
            CommitSeries(
                username=username,
                total_commits=user_totals["commits"],
                total_additions=user_totals["additions"],
                total_deletions=user_totals["deletions"],
                weekly_buckets=[
                    WeeklyBucket(week_start=week, **counts)
                    for week, counts in sorted(weeks[username].items())
                ],
            )
        )
    return series


async def sync_local_repo(
    store: SQLAlchemyStore,
    directory: ProjectDirectory,
    project_id: str,
    repo_path: str,
    max_commits: Optional[int] = None,
) -> int:
    """
    Replace a project's contributor stats with commit stats from a local clone.

    No pull request data is available from a clone, so PR and review
    fields are written as zero.

    :return: Number of contributors written.
    """
    await store.mark_sync_started(project_id)
    try:
        members = await directory.get_team_members(project_id)
        email_to_username, usernames = build_email_index(members)
        logging.info(
            f"Roster for {project_id}: {len(members)} members, "
            f"{len(email_to_username)} known emails"
        )

        loop = asyncio.get_running_loop()
        series = await loop.run_in_executor(
            None, collect_commit_series, repo_path, email_to_username, max_commits
        )
        if not series:
            raise LocalSyncError(
                f"No commits in {repo_path} matched the roster of {project_id}"
            )

        stats = aggregate_contributor_stats(series, [], usernames)
        rows = await store.replace_contributor_stats(project_id, stats)
        await store.mark_sync_finished(project_id)
    except asyncio.CancelledError:
        await store.mark_sync_failed(project_id, SYNC_CANCELLED_MESSAGE)
        raise
    except Exception as e:
        await store.mark_sync_failed(project_id, str(e) or type(e).__name__)
        raise

    for entry in stats.all_time:
        logging.info(
            f"  {entry.username}: {entry.commits} commits, "
            f"+{entry.additions}/-{entry.deletions}, trend: {entry.commit_trend}"
        )
    logging.info(f"Wrote {rows} stat rows for {project_id} from {repo_path}")
    return stats.contributor_count()
