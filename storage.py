import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, insert, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from metrics.schemas import AggregatedStats, StatsPeriod
from models.stats import (REVIEW_STAT_COLUMNS, Base, ContributorStats,
                          GitHubSync, SyncStatus)

logger = logging.getLogger(__name__)


def detect_db_type(conn_string: str) -> str:
    """
    Detect database type from connection string.

    :param conn_string: Database connection string.
    :return: Database type ('postgres' or 'sqlite').
    :raises ValueError: If database type cannot be determined.
    """
    if not conn_string:
        raise ValueError("Connection string is required")

    conn_lower = conn_string.lower()

    # PostgreSQL connection strings
    if conn_lower.startswith("postgresql://") or conn_lower.startswith("postgres://"):
        return "postgres"
    if conn_lower.startswith("postgresql+asyncpg://"):
        return "postgres"

    # SQLite connection strings
    if conn_lower.startswith("sqlite://") or conn_lower.startswith(
        "sqlite+aiosqlite://"
    ):
        return "sqlite"

    # Extract scheme for better error reporting
    scheme = conn_string.split("://", 1)[0] if "://" in conn_string else "unknown"
    raise ValueError(
        f"Could not detect database type from connection string. "
        f"Supported: postgresql://, postgres://, sqlite://, "
        f"or variations with async drivers. Got scheme: '{scheme}'"
    )


def _async_url(conn_string: str, db_type: str) -> str:
    """Swap a sync driver scheme for its async counterpart."""
    scheme, sep, rest = conn_string.partition("://")
    if db_type == "sqlite" and scheme.lower() == "sqlite":
        return f"sqlite+aiosqlite{sep}{rest}"
    if db_type == "postgres" and scheme.lower() in ("postgres", "postgresql"):
        return f"postgresql+asyncpg{sep}{rest}"
    return conn_string


def create_store(
    conn_string: str,
    db_type: Optional[str] = None,
    echo: bool = False,
) -> "SQLAlchemyStore":
    """
    Create a storage backend based on the connection string.

    :param conn_string: Database connection string.
    :param db_type: Optional explicit database type ('postgres', 'sqlite').
                   If not provided, it will be auto-detected from conn_string.
    :param echo: Whether to echo SQL statements.
    :return: SQLAlchemyStore instance.
    """
    if db_type is None:
        db_type = detect_db_type(conn_string)

    db_type = db_type.lower()

    if db_type in ("postgres", "postgresql"):
        return SQLAlchemyStore(_async_url(conn_string, "postgres"), echo=echo)
    elif db_type == "sqlite":
        return SQLAlchemyStore(_async_url(conn_string, "sqlite"), echo=echo)
    else:
        raise ValueError(
            f"Unsupported database type: {db_type}. "
            f"Supported types: postgres, sqlite"
        )


class SQLAlchemyStore:
    """
    Async storage for sync status and contributor statistics.

    Every operation opens its own session, so syncs for different projects
    can run concurrently against one store.
    """

    def __init__(self, conn_string: str, echo: bool = False) -> None:
        engine_kwargs: Dict[str, Any] = {"echo": echo}

        # Only add pooling parameters for databases that support them
        if "sqlite" not in conn_string.lower():
            engine_kwargs.update(
                {
                    "pool_size": 20,
                    "max_overflow": 30,
                    "pool_pre_ping": True,  # Verify connections before using
                    "pool_recycle": 3600,  # Recycle connections after 1 hour
                }
            )

        self.engine = create_async_engine(conn_string, **engine_kwargs)
        self.session_factory = sessionmaker(
            self.engine, expire_on_commit=False, class_=AsyncSession
        )

    def _insert_for_dialect(self, model: Any):
        dialect = self.engine.dialect.name
        if dialect == "sqlite":
            return sqlite_insert(model)
        if dialect in ("postgres", "postgresql"):
            return pg_insert(model)
        raise ValueError(f"Unsupported SQL dialect for upserts: {dialect}")

    async def create_tables(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def __aenter__(self) -> "SQLAlchemyStore":
        # Create tables for SQLite automatically
        if self.engine.dialect.name == "sqlite":
            await self.create_tables()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        await self.engine.dispose()

    # --- sync status ---

    async def _upsert_sync_status(self, project_id: str, values: Dict[str, Any]) -> None:
        values = {**values, "updated_at": datetime.now(timezone.utc)}
        stmt = self._insert_for_dialect(GitHubSync).values(project_id=project_id, **values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[GitHubSync.project_id],
            set_=values,
        )
        async with self.session_factory() as session:
            async with session.begin():
                await session.execute(stmt)

    async def mark_sync_started(self, project_id: str) -> None:
        await self._upsert_sync_status(
            project_id, {"sync_status": SyncStatus.SYNCING, "sync_error": None}
        )

    async def mark_sync_finished(
        self, project_id: str, warning: Optional[str] = None
    ) -> None:
        await self._upsert_sync_status(
            project_id,
            {
                "sync_status": SyncStatus.IDLE,
                "last_sync_at": datetime.now(timezone.utc),
                "sync_error": warning,
            },
        )

    async def mark_sync_failed(self, project_id: str, message: str) -> None:
        await self._upsert_sync_status(
            project_id, {"sync_status": SyncStatus.ERROR, "sync_error": message}
        )

    async def get_sync_status(self, project_id: str) -> Optional[GitHubSync]:
        async with self.session_factory() as session:
            return await session.get(GitHubSync, project_id)

    # --- contributor stats ---

    @staticmethod
    def _stats_rows(project_id: str, stats: AggregatedStats) -> List[Dict[str, Any]]:
        synced_at = datetime.now(timezone.utc)
        rows = stats.rows(project_id)
        for row in rows:
            row["synced_at"] = synced_at
        return rows

    async def replace_contributor_stats(
        self, project_id: str, stats: AggregatedStats
    ) -> int:
        """
        Replace every stored row of a project with `stats`, in one transaction.

        :return: Number of rows inserted.
        """
        rows = self._stats_rows(project_id, stats)
        async with self.session_factory() as session:
            async with session.begin():
                await session.execute(
                    delete(ContributorStats).where(
                        ContributorStats.project_id == project_id
                    )
                )
                if rows:
                    await session.execute(insert(ContributorStats), rows)
        logger.debug("Replaced contributor stats for %s with %d rows", project_id, len(rows))
        return len(rows)

    async def merge_review_stats(self, project_id: str, stats: AggregatedStats) -> int:
        """
        Upsert pull request / review fields only, in one transaction.

        Existing rows keep their commit fields; missing rows are inserted.

        :return: Number of rows written.
        """
        rows = self._stats_rows(project_id, stats)
        if not rows:
            return 0

        stmt = self._insert_for_dialect(ContributorStats)
        stmt = stmt.on_conflict_do_update(
            index_elements=[
                ContributorStats.project_id,
                ContributorStats.username,
                ContributorStats.period,
            ],
            set_={
                col: getattr(stmt.excluded, col)
                for col in REVIEW_STAT_COLUMNS + ["synced_at"]
            },
        )
        async with self.session_factory() as session:
            async with session.begin():
                await session.execute(stmt, rows)
        logger.debug("Merged review stats for %s into %d rows", project_id, len(rows))
        return len(rows)

    async def get_contributor_stats(
        self, project_id: str, period: Optional[str] = None
    ) -> List[ContributorStats]:
        if period is not None and period not in StatsPeriod.ALL:
            raise ValueError(f"Unknown stats period: {period}")

        query = select(ContributorStats).where(ContributorStats.project_id == project_id)
        if period is not None:
            query = query.where(ContributorStats.period == period)
        query = query.order_by(
            ContributorStats.commits.desc(),
            ContributorStats.username,
            ContributorStats.period,
        )
        async with self.session_factory() as session:
            result = await session.execute(query)
            return list(result.scalars().all())
