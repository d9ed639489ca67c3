from .stats import (REVIEW_STAT_COLUMNS, Base,  # noqa: F401
                    ContributorStats, GitHubSync, SyncStatus)

__all__ = [
    "Base",
    "ContributorStats",
    "GitHubSync",
    "REVIEW_STAT_COLUMNS",
    "SyncStatus",
]
