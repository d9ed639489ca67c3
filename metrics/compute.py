from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from connectors.models import CommitSeries, PullRequestData, WeeklyBucket
from metrics.schemas import (
    TREND_DOWN,
    TREND_STABLE,
    TREND_UP,
    AggregatedStats,
    ContributorAggregate,
)

RECENT_WEEKS = 8
TREND_UP_RATIO = 1.2
TREND_DOWN_RATIO = 0.8

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _to_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def week_start(dt: datetime) -> int:
    """
    Epoch seconds of the UTC midnight on the Sunday that starts `dt`'s week.

    Naive datetimes are treated as UTC.
    """
    utc = _to_utc(dt)
    midnight = utc.replace(hour=0, minute=0, second=0, microsecond=0)
    # weekday(): Monday=0 .. Sunday=6
    sunday = midnight - timedelta(days=(midnight.weekday() + 1) % 7)
    return int((sunday - _EPOCH).total_seconds())


def year_start(now: datetime) -> datetime:
    """January 1st, 00:00 UTC, of `now`'s year."""
    return datetime(_to_utc(now).year, 1, 1, tzinfo=timezone.utc)


def compute_trend(avg: float, recent: float) -> str:
    """
    Classify the recent weekly rate against the long-run average.

    - avg == 0: 'up' if there is any recent activity, else 'stable'
    - recent >= avg * 1.2: 'up'
    - recent <= avg * 0.8: 'down'
    - otherwise 'stable'
    """
    if avg == 0:
        return TREND_UP if recent > 0 else TREND_STABLE
    if recent >= avg * TREND_UP_RATIO:
        return TREND_UP
    if recent <= avg * TREND_DOWN_RATIO:
        return TREND_DOWN
    return TREND_STABLE


def weekly_rates(counts: Sequence[float], total: Optional[float] = None) -> Tuple[float, float]:
    """
    Return (average per week, average over the trailing RECENT_WEEKS weeks).

    `total` overrides the numerator of the overall average, for feeds whose
    own total may include activity predating the weekly series.
    """
    if not counts:
        return 0.0, 0.0
    overall = float(sum(counts) if total is None else total)
    recent = counts[-RECENT_WEEKS:]
    return overall / len(counts), float(sum(recent)) / len(recent)


class _Aggregates:
    """Per-username aggregates for one period, in order of first appearance."""

    def __init__(self) -> None:
        self._by_username: Dict[str, ContributorAggregate] = {}
        self.review_weeks: Dict[str, Dict[int, int]] = {}

    def get(self, username: str) -> ContributorAggregate:
        entry = self._by_username.get(username)
        if entry is None:
            entry = ContributorAggregate(username=username)
            self._by_username[username] = entry
        return entry

    def add_review(self, username: str, week: int) -> None:
        self.get(username).reviews_done += 1
        weeks = self.review_weeks.setdefault(username, {})
        weeks[week] = weeks.get(week, 0) + 1

    def finalize_review_trends(self) -> None:
        for username, weeks in self.review_weeks.items():
            if not weeks:
                continue
            entry = self._by_username[username]
            counts = [weeks[w] for w in sorted(weeks)]
            entry.avg_weekly_reviews, entry.recent_weekly_reviews = weekly_rates(counts)
            entry.review_trend = compute_trend(
                entry.avg_weekly_reviews, entry.recent_weekly_reviews
            )

    def values(self) -> List[ContributorAggregate]:
        return list(self._by_username.values())


def _apply_commit_rates(
    entry: ContributorAggregate,
    buckets: List[WeeklyBucket],
    total_commits: int,
) -> None:
    if not buckets:
        return
    entry.avg_weekly_commits, entry.recent_weekly_commits = weekly_rates(
        [b.commits for b in buckets], total=total_commits
    )
    entry.commit_trend = compute_trend(
        entry.avg_weekly_commits, entry.recent_weekly_commits
    )


def aggregate_contributor_stats(
    commit_series: Iterable[CommitSeries],
    pull_requests: Iterable[PullRequestData],
    team_usernames: Set[str],
    *,
    now: Optional[datetime] = None,
) -> AggregatedStats:
    """
    Aggregate commit and pull request activity per team member.

    Produces two views: `all_time` over the full history and `ytd` over the
    calendar year of `now` (UTC, defaults to the current time). Usernames
    outside `team_usernames` are ignored everywhere, including as reviewers.

    This function is pure: it does no I/O and depends only on its arguments.

    Notes:
    - All-time commit/addition/deletion totals are the series' own totals,
      not sums of the weekly buckets.
    - The recent window is the trailing RECENT_WEEKS buckets of whichever
      series is being rated, so the YTD window is taken within the YTD buckets.
    - A reviewer counts once per pull request no matter how many reviews
      they left on it; reviews are bucketed by Sunday-aligned UTC week.
    """
    cutoff = year_start(now or datetime.now(timezone.utc))
    cutoff_ts = int((cutoff - _EPOCH).total_seconds())

    all_time = _Aggregates()
    ytd = _Aggregates()

    for series in commit_series:
        if series.username not in team_usernames:
            continue

        entry = all_time.get(series.username)
        entry.commits = series.total_commits
        entry.additions = series.total_additions
        entry.deletions = series.total_deletions
        _apply_commit_rates(entry, series.weekly_buckets, series.total_commits)

        ytd_entry = ytd.get(series.username)
        ytd_buckets = [b for b in series.weekly_buckets if b.week_start >= cutoff_ts]
        for bucket in ytd_buckets:
            ytd_entry.commits += bucket.commits
            ytd_entry.additions += bucket.additions
            ytd_entry.deletions += bucket.deletions
        _apply_commit_rates(ytd_entry, ytd_buckets, ytd_entry.commits)

    for pr in pull_requests:
        if pr.author in team_usernames:
            entry = all_time.get(pr.author)
            entry.prs_opened += 1
            if pr.merged:
                entry.prs_merged += 1

            if _to_utc(pr.created_at) >= cutoff:
                ytd_entry = ytd.get(pr.author)
                ytd_entry.prs_opened += 1
                if pr.merged:
                    ytd_entry.prs_merged += 1

        seen: Set[str] = set()
        for review in pr.reviews:
            if review.reviewer not in team_usernames or review.reviewer in seen:
                continue
            seen.add(review.reviewer)

            week = week_start(review.created_at)
            all_time.add_review(review.reviewer, week)
            if _to_utc(review.created_at) >= cutoff:
                ytd.add_review(review.reviewer, week)

    all_time.finalize_review_trends()
    ytd.finalize_review_trends()

    return AggregatedStats(all_time=all_time.values(), ytd=ytd.values())
