import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from connectors import GitHubConnector, parse_github_url
from metrics.compute import aggregate_contributor_stats
from providers.roster import ProjectDirectory, team_usernames
from storage import SQLAlchemyStore

PARTIAL_SYNC_WARNING = (
    "Commit stats temporarily unavailable (GitHub is still computing them); "
    "PR and review stats were updated. Commit stats will refresh on the next sync."
)

SYNC_CANCELLED_MESSAGE = "sync cancelled"

SYNC_MODE_FULL = "full"
SYNC_MODE_PARTIAL = "partial"


@dataclass
class SyncOutcome:
    project_id: str
    mode: str  # full|partial
    contributors: int
    warning: Optional[str] = None


@dataclass
class SyncResult:
    project_id: str
    success: bool
    error: Optional[str] = None


class GitHubStatsSync:
    """
    Sync contributor statistics from GitHub for one or many projects.

    Collaborators are injected; the caller owns their lifetimes.

    Syncs of the same project through one instance are serialized; keep a
    single instance per process to get that guarantee. One lock is kept per
    project id seen, so the lock table is bounded by the roster size.
    """

    def __init__(
        self,
        store: SQLAlchemyStore,
        directory: ProjectDirectory,
        connector: GitHubConnector,
    ):
        self.store = store
        self.directory = directory
        self.connector = connector
        self._project_locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, project_id: str) -> asyncio.Lock:
        lock = self._project_locks.get(project_id)
        if lock is None:
            lock = asyncio.Lock()
            self._project_locks[project_id] = lock
        return lock

    async def sync_project(self, project_id: str) -> Optional[SyncOutcome]:
        """
        Run a sync for a single project.

        Returns None without touching storage when the project has no
        repository URL or the URL is not a GitHub repository. Any failure
        after the sync has started is recorded on the project's sync status
        and re-raised.
        """
        repo_url = await self.directory.get_repo_url(project_id)
        if not repo_url:
            logging.debug(f"Project {project_id} has no repository URL; skipping")
            return None

        identity = parse_github_url(repo_url)
        if identity is None:
            logging.debug(
                f"Project {project_id} repository URL is not a GitHub repo: {repo_url}"
            )
            return None

        lock = self._lock_for(project_id)
        if lock.locked():
            logging.info(f"Sync for {project_id} already running; waiting for it")

        async with lock:
            await self.store.mark_sync_started(project_id)
            try:
                outcome = await self._run(project_id, identity.owner, identity.repo)
                await self.store.mark_sync_finished(project_id, warning=outcome.warning)
            except asyncio.CancelledError:
                await self.store.mark_sync_failed(project_id, SYNC_CANCELLED_MESSAGE)
                raise
            except Exception as e:
                await self.store.mark_sync_failed(project_id, str(e) or type(e).__name__)
                raise
        return outcome

    async def _run(self, project_id: str, owner: str, repo: str) -> SyncOutcome:
        logging.info(f"Syncing contributor stats for {project_id} from {owner}/{repo}")
        loop = asyncio.get_running_loop()

        commit_data, pr_data, members = await asyncio.gather(
            loop.run_in_executor(
                None, self.connector.get_contributor_commit_stats, owner, repo
            ),
            loop.run_in_executor(
                None, self.connector.get_pull_request_stats, owner, repo
            ),
            self.directory.get_team_members(project_id),
        )

        stats = aggregate_contributor_stats(commit_data, pr_data, team_usernames(members))

        if commit_data:
            rows = await self.store.replace_contributor_stats(project_id, stats)
            mode, warning = SYNC_MODE_FULL, None
        else:
            rows = await self.store.merge_review_stats(project_id, stats)
            mode, warning = SYNC_MODE_PARTIAL, PARTIAL_SYNC_WARNING
            logging.warning(
                f"Commit stats unavailable for {owner}/{repo}; "
                f"updated PR/review stats only for {project_id}"
            )

        logging.info(
            f"Synced {project_id} ({mode}): {stats.contributor_count()} contributors, "
            f"{len(commit_data)} commit series, {len(pr_data)} PRs, {rows} rows written"
        )
        return SyncOutcome(
            project_id=project_id,
            mode=mode,
            contributors=stats.contributor_count(),
            warning=warning,
        )

    async def sync_all_projects(
        self, max_concurrent: Optional[int] = None
    ) -> List[SyncResult]:
        """
        Sync every project that has a repository URL.

        Projects run concurrently and independently; a failure is reported in
        that project's SyncResult and never cancels the others.

        :param max_concurrent: Optional cap on simultaneous project syncs.
        """
        project_ids = await self.directory.list_projects_with_repo()
        logging.info(f"Syncing contributor stats for {len(project_ids)} projects")

        semaphore = asyncio.Semaphore(max_concurrent) if max_concurrent else None

        async def run_one(project_id: str) -> Optional[SyncOutcome]:
            if semaphore is None:
                return await self.sync_project(project_id)
            async with semaphore:
                return await self.sync_project(project_id)

        settled = await asyncio.gather(
            *(run_one(project_id) for project_id in project_ids),
            return_exceptions=True,
        )

        results = []
        for project_id, outcome in zip(project_ids, settled):
            if isinstance(outcome, BaseException):
                logging.error(f"Sync failed for {project_id}: {outcome}")
                results.append(
                    SyncResult(
                        project_id=project_id,
                        success=False,
                        error=str(outcome) or type(outcome).__name__,
                    )
                )
            else:
                results.append(SyncResult(project_id=project_id, success=True))

        logging.info(
            f"Completed sync of {len(results)} projects, "
            f"{sum(1 for r in results if r.success)} successful"
        )
        return results


async def sync_project(
    store: SQLAlchemyStore,
    directory: ProjectDirectory,
    connector: GitHubConnector,
    project_id: str,
) -> Optional[SyncOutcome]:
    """
    Sync one project (see GitHubStatsSync.sync_project).

    Builds a fresh GitHubStatsSync per call, so concurrent calls for the same
    project are not serialized against each other. Use a shared instance for that.
    """
    return await GitHubStatsSync(store, directory, connector).sync_project(project_id)


async def sync_all_projects(
    store: SQLAlchemyStore,
    directory: ProjectDirectory,
    connector: GitHubConnector,
    max_concurrent: Optional[int] = None,
) -> List[SyncResult]:
    """
    Sync every project with a repository URL (see GitHubStatsSync.sync_all_projects).

    Projects are distinct within one call; overlap with other callers is not
    guarded because each call uses its own GitHubStatsSync.
    """
    return await GitHubStatsSync(store, directory, connector).sync_all_projects(
        max_concurrent=max_concurrent
    )
