from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Float, Integer, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class SyncStatus:
    IDLE = "idle"
    SYNCING = "syncing"
    ERROR = "error"


class GitHubSync(Base):
    __tablename__ = "github_syncs"
    project_id = Column(Text, primary_key=True, comment="identifier of the project")
    sync_status = Column(
        Text,
        nullable=False,
        default=SyncStatus.IDLE,
        comment="state of the last sync (idle, syncing, error)",
    )
    last_sync_at = Column(
        DateTime(timezone=True),
        comment="timestamp of the last successful sync",
    )
    sync_error = Column(
        Text,
        comment="failure message, or an advisory warning after a partial sync",
    )
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        comment="timestamp when the status row last changed",
    )

    def __repr__(self) -> str:
        return (
            f"GitHubSync(project_id={self.project_id!r}, "
            f"sync_status={self.sync_status!r}, last_sync_at={self.last_sync_at!r})"
        )


class ContributorStats(Base):
    __tablename__ = "contributor_stats"
    project_id = Column(Text, primary_key=True, comment="identifier of the project")
    username = Column(Text, primary_key=True, comment="GitHub username of the contributor")
    period = Column(Text, primary_key=True, comment="aggregation period (all_time, ytd)")
    commits = Column(Integer, nullable=False, default=0, comment="number of commits")
    prs_opened = Column(
        Integer, nullable=False, default=0, comment="pull requests authored"
    )
    prs_merged = Column(
        Integer, nullable=False, default=0, comment="authored pull requests merged"
    )
    reviews_done = Column(
        Integer,
        nullable=False,
        default=0,
        comment="pull requests reviewed (one per reviewer per pull request)",
    )
    additions = Column(Integer, nullable=False, default=0, comment="lines added")
    deletions = Column(Integer, nullable=False, default=0, comment="lines deleted")
    avg_weekly_commits = Column(
        Float, nullable=False, default=0.0, comment="average commits per week"
    )
    recent_weekly_commits = Column(
        Float,
        nullable=False,
        default=0.0,
        comment="average commits per week over the trailing 8 weeks",
    )
    commit_trend = Column(
        Text, nullable=False, default="stable", comment="commit trend (up, down, stable)"
    )
    avg_weekly_reviews = Column(
        Float, nullable=False, default=0.0, comment="average reviews per active week"
    )
    recent_weekly_reviews = Column(
        Float,
        nullable=False,
        default=0.0,
        comment="average reviews per week over the trailing 8 review weeks",
    )
    review_trend = Column(
        Text, nullable=False, default="stable", comment="review trend (up, down, stable)"
    )
    synced_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        comment="timestamp when the row was last written by a sync",
    )


# Columns derived from the pull request feed; the only ones a partial sync updates.
REVIEW_STAT_COLUMNS = [
    "prs_opened",
    "prs_merged",
    "reviews_done",
    "avg_weekly_reviews",
    "recent_weekly_reviews",
    "review_trend",
]
