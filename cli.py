#!/usr/bin/env python3
from __future__ import annotations

import argparse
import asyncio
import logging
import os
from pathlib import Path
from typing import List, Optional

from connectors import GitHubConnector
from metrics.schemas import StatsPeriod
from processors.github import GitHubStatsSync
from processors.local import sync_local_repo
from providers.roster import YamlProjectDirectory
from storage import create_store, detect_db_type

REPO_ROOT = Path(__file__).resolve().parent
DEFAULT_ROSTER = REPO_ROOT / "config" / "projects.yaml"


def _load_dotenv(path: Path) -> int:
    """
    Load a .env file into process environment (without overriding existing vars).
    """
    if not path.exists():
        return 0
    loaded = 0
    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export ") :].strip()
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip()
        if not key or key in os.environ:
            continue
        if (len(value) >= 2) and ((value[0] == value[-1]) and value[0] in {"'", '"'}):
            value = value[1:-1]
        os.environ[key] = value
        loaded += 1
    return loaded


def _resolve_db(ns: argparse.Namespace) -> str:
    db_url = ns.db or os.getenv("DB_CONN_STRING") or os.getenv("DATABASE_URL")
    if not db_url:
        raise SystemExit("Database URI is required (pass --db or set DB_CONN_STRING).")
    try:
        detect_db_type(db_url)
    except ValueError as exc:
        raise SystemExit(str(exc)) from exc
    return db_url


def _resolve_roster(ns: argparse.Namespace) -> YamlProjectDirectory:
    path = Path(ns.roster or os.getenv("ROSTER_PATH") or DEFAULT_ROSTER)
    return YamlProjectDirectory(path)


def _connector(ns: argparse.Namespace) -> GitHubConnector:
    token = ns.auth or os.getenv("GITHUB_TOKEN") or None
    if not token:
        logging.warning(
            "No GitHub token (pass --auth or set GITHUB_TOKEN); "
            "pull request stats will be skipped."
        )
    return GitHubConnector(token=token)


def _cmd_sync_project(ns: argparse.Namespace) -> int:
    db_url = _resolve_db(ns)
    directory = _resolve_roster(ns)

    async def _run() -> int:
        with _connector(ns) as connector:
            async with create_store(db_url) as store:
                try:
                    outcome = await GitHubStatsSync(
                        store, directory, connector
                    ).sync_project(ns.project_id)
                except Exception as e:
                    logging.error(f"Sync failed for {ns.project_id}: {e}")
                    return 1
        if outcome is None:
            logging.info(
                f"Nothing to sync for {ns.project_id} (no GitHub repository configured)"
            )
        elif outcome.warning:
            logging.warning(outcome.warning)
        return 0

    return asyncio.run(_run())


def _cmd_sync_all(ns: argparse.Namespace) -> int:
    db_url = _resolve_db(ns)
    directory = _resolve_roster(ns)

    async def _run() -> int:
        with _connector(ns) as connector:
            async with create_store(db_url) as store:
                results = await GitHubStatsSync(
                    store, directory, connector
                ).sync_all_projects(max_concurrent=ns.max_concurrent)
        for result in results:
            if result.success:
                logging.info(f"{result.project_id}: ok")
            else:
                logging.error(f"{result.project_id}: {result.error}")
        return 0 if all(r.success for r in results) else 1

    return asyncio.run(_run())


def _cmd_sync_local(ns: argparse.Namespace) -> int:
    db_url = _resolve_db(ns)
    directory = _resolve_roster(ns)

    async def _run() -> int:
        async with create_store(db_url) as store:
            try:
                await sync_local_repo(
                    store,
                    directory,
                    ns.project_id,
                    ns.repo_path,
                    max_commits=ns.max_commits,
                )
            except Exception as e:
                logging.error(f"Local sync failed for {ns.project_id}: {e}")
                return 1
        return 0

    return asyncio.run(_run())


def _cmd_stats_show(ns: argparse.Namespace) -> int:
    db_url = _resolve_db(ns)

    async def _run() -> int:
        async with create_store(db_url) as store:
            sync = await store.get_sync_status(ns.project_id)
            rows = await store.get_contributor_stats(ns.project_id, period=ns.period)

        if sync is None:
            print(f"{ns.project_id}: never synced")
        else:
            print(
                f"{ns.project_id}: status={sync.sync_status} "
                f"last_sync_at={sync.last_sync_at or '-'}"
            )
            if sync.sync_error:
                print(f"  note: {sync.sync_error}")

        header = (
            f"{'username':<24} {'period':<9} {'commits':>7} {'+lines':>8} "
            f"{'-lines':>8} {'prs':>5} {'merged':>6} {'reviews':>7} "
            f"{'commit':>7} {'review':>7}"
        )
        print(header)
        for row in rows:
            print(
                f"{row.username:<24} {row.period:<9} {row.commits:>7} "
                f"{row.additions:>8} {row.deletions:>8} {row.prs_opened:>5} "
                f"{row.prs_merged:>6} {row.reviews_done:>7} "
                f"{row.commit_trend:>7} {row.review_trend:>7}"
            )
        return 0

    return asyncio.run(_run())


def _cmd_db_init(ns: argparse.Namespace) -> int:
    db_url = _resolve_db(ns)

    async def _run() -> int:
        store = create_store(db_url)
        try:
            await store.create_tables()
        finally:
            await store.close()
        logging.info("Created contributor stats tables")
        return 0

    return asyncio.run(_run())


def _add_common(parser: argparse.ArgumentParser, roster: bool = True) -> None:
    parser.add_argument(
        "--db",
        help="Database connection string (defaults to DB_CONN_STRING or DATABASE_URL).",
    )
    if roster:
        parser.add_argument(
            "--roster",
            help="Project roster YAML (defaults to ROSTER_PATH or config/projects.yaml).",
        )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="contributor-stats",
        description="Sync per-project contributor activity stats from GitHub.",
    )
    parser.add_argument(
        "--log-level",
        default=os.getenv("LOG_LEVEL", "INFO"),
        help="Logging level (DEBUG, INFO, WARNING). Defaults to env LOG_LEVEL or INFO.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    # ---- sync ----
    sync = sub.add_parser("sync", help="Sync contributor stats into the DB.")
    sync_sub = sync.add_subparsers(dest="target", required=True)

    project = sync_sub.add_parser("project", help="Sync a single project from GitHub.")
    _add_common(project)
    project.add_argument("--project-id", required=True, help="Project identifier.")
    project.add_argument("--auth", help="GitHub token (defaults to GITHUB_TOKEN).")
    project.set_defaults(func=_cmd_sync_project)

    every = sync_sub.add_parser(
        "all", help="Sync every project with a repository URL from GitHub."
    )
    _add_common(every)
    every.add_argument("--auth", help="GitHub token (defaults to GITHUB_TOKEN).")
    every.add_argument(
        "--max-concurrent",
        type=int,
        help="Maximum projects synced at once (default: unbounded).",
    )
    every.set_defaults(func=_cmd_sync_all)

    local = sync_sub.add_parser(
        "local", help="Replace a project's commit stats from a local clone."
    )
    _add_common(local)
    local.add_argument("--project-id", required=True, help="Project identifier.")
    local.add_argument(
        "--repo-path", default=".", help="Path to the local git repository."
    )
    local.add_argument("--max-commits", type=int, help="Limit commits analyzed.")
    local.set_defaults(func=_cmd_sync_local)

    # ---- db ----
    db = sub.add_parser("db", help="Database maintenance.")
    db_sub = db.add_subparsers(dest="db_command", required=True)
    init = db_sub.add_parser("init", help="Create the sync status and stats tables.")
    _add_common(init, roster=False)
    init.set_defaults(func=_cmd_db_init)

    # ---- stats ----
    stats = sub.add_parser("stats", help="Inspect stored contributor stats.")
    stats_sub = stats.add_subparsers(dest="stats_command", required=True)
    show = stats_sub.add_parser("show", help="Print a project's stats and sync status.")
    _add_common(show, roster=False)
    show.add_argument("--project-id", required=True, help="Project identifier.")
    show.add_argument(
        "--period",
        choices=list(StatsPeriod.ALL),
        help="Only show one period (default: both).",
    )
    show.set_defaults(func=_cmd_stats_show)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    if os.getenv("DISABLE_DOTENV", "").strip().lower() not in {
        "1",
        "true",
        "yes",
        "on",
    }:
        _load_dotenv(REPO_ROOT / ".env")

    parser = build_parser()
    ns = parser.parse_args(argv)

    level_name = str(getattr(ns, "log_level", "") or "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    logging.basicConfig(
        level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )

    func = getattr(ns, "func", None)
    if func is None:
        parser.print_help()
        return 2
    return int(func(ns))


if __name__ == "__main__":
    raise SystemExit(main())
