"""Pure derivations applied to raw counts: labels, peak activity, weekly windows."""
import calendar
from datetime import datetime, timedelta
from typing import List, Optional, Sequence, Tuple

from gitdash.domain.models import (
    DAYS_PER_WEEK,
    HOURS_PER_DAY,
    ActivityHeatmap,
    PeakActivity,
)


WEEKLY_BUCKET_COUNT = 12
BUCKET_WIDTH = timedelta(days=7)

COMMITS_THRESHOLD = 30
MERGED_PRS_THRESHOLD = 10
CLOSED_ISSUES_THRESHOLD = 15


def _label(count: int, threshold: int, none: str, some: str, many: str) -> str:
    if count > threshold:
        return many
    if count > 0:
        return some
    return none


def commits_label(count: int) -> str:
    return _label(
        count, COMMITS_THRESHOLD,
        "No recent activity", "Maintenance mode", "Active development",
    )


def merged_prs_label(count: int) -> str:
    return _label(
        count, MERGED_PRS_THRESHOLD,
        "No changes merged", "Steady flow", "High velocity",
    )


def closed_issues_label(count: int) -> str:
    return _label(
        count, CLOSED_ISSUES_THRESHOLD,
        "No issues closed", "Resolving quickly", "Heavy triage",
    )


def find_peak_cell(heatmap: ActivityHeatmap) -> Optional[Tuple[int, int]]:
    """Return the (day, hour) cell with the most commits.

    Cells are scanned day-major, hour-minor and only a strictly greater count
    replaces the current best, so ties resolve to the first cell scanned.
    Returns None when the heat-map holds no commits.
    """
    best: Optional[Tuple[int, int]] = None
    best_count = 0
    for day in range(DAYS_PER_WEEK):
        for hour in range(HOURS_PER_DAY):
            count = heatmap.count(day, hour)
            if count > best_count:
                best, best_count = (day, hour), count
    return best


def derive_peak_activity(heatmap: ActivityHeatmap, team_size: int) -> PeakActivity:
    peak = find_peak_cell(heatmap)
    if peak is None:
        return PeakActivity(team_size=team_size)
    day, hour = peak
    return PeakActivity(
        most_active_day=calendar.day_name[day],
        peak_hour_utc=hour,
        team_size=team_size,
    )


def weekly_bucket_windows(now: datetime) -> List[Tuple[datetime, datetime]]:
    """Half-open [start, end) windows for the 12 weeks ending at `now`, oldest first."""
    return [
        (
            now - BUCKET_WIDTH * (WEEKLY_BUCKET_COUNT - i),
            now - BUCKET_WIDTH * (WEEKLY_BUCKET_COUNT - 1 - i),
        )
        for i in range(WEEKLY_BUCKET_COUNT)
    ]


def normalize_weekly_counts(counts: Sequence[int]) -> List[int]:
    """Fit upstream weekly counts to exactly 12 buckets, oldest first.

    Missing leading weeks are zero; surplus leading weeks are dropped.
    """
    counts = [max(0, int(c)) for c in counts][-WEEKLY_BUCKET_COUNT:]
    return [0] * (WEEKLY_BUCKET_COUNT - len(counts)) + counts
