from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List

TREND_UP = "up"
TREND_DOWN = "down"
TREND_STABLE = "stable"


class StatsPeriod:
    ALL_TIME = "all_time"
    YTD = "ytd"

    ALL = (ALL_TIME, YTD)


@dataclass
class ContributorAggregate:
    username: str
    commits: int = 0
    prs_opened: int = 0
    prs_merged: int = 0
    reviews_done: int = 0
    additions: int = 0
    deletions: int = 0
    avg_weekly_commits: float = 0.0
    recent_weekly_commits: float = 0.0
    commit_trend: str = TREND_STABLE  # up|down|stable
    avg_weekly_reviews: float = 0.0
    recent_weekly_reviews: float = 0.0
    review_trend: str = TREND_STABLE  # up|down|stable

    def to_row(self, project_id: str, period: str) -> Dict[str, Any]:
        """Flatten into a `contributor_stats` row for the given project and period."""
        row = asdict(self)
        row["project_id"] = project_id
        row["period"] = period
        return row


@dataclass
class AggregatedStats:
    all_time: List[ContributorAggregate] = field(default_factory=list)
    ytd: List[ContributorAggregate] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not self.all_time and not self.ytd

    def rows(self, project_id: str) -> List[Dict[str, Any]]:
        """All rows for both periods, all-time first."""
        return [s.to_row(project_id, StatsPeriod.ALL_TIME) for s in self.all_time] + [
            s.to_row(project_id, StatsPeriod.YTD) for s in self.ytd
        ]

    def contributor_count(self) -> int:
        return len({s.username for s in self.all_time} | {s.username for s in self.ytd})
