"""Tests for labels, peak activity and weekly bucketing."""
from datetime import datetime, timedelta, timezone

import pytest
from gitdash.domain.derivation import (
    WEEKLY_BUCKET_COUNT,
    closed_issues_label,
    commits_label,
    derive_peak_activity,
    find_peak_cell,
    merged_prs_label,
    normalize_weekly_counts,
    weekly_bucket_windows,
)
from gitdash.domain.models import ActivityHeatmap, PeakActivity


@pytest.mark.parametrize("count,label", [
    (0, "No recent activity"),
    (1, "Maintenance mode"),
    (30, "Maintenance mode"),
    (31, "Active development"),
])
def test_commits_label(count, label):
    assert commits_label(count) == label


@pytest.mark.parametrize("count,label", [
    (0, "No changes merged"),
    (10, "Steady flow"),
    (11, "High velocity"),
])
def test_merged_prs_label(count, label):
    assert merged_prs_label(count) == label


@pytest.mark.parametrize("count,label", [
    (0, "No issues closed"),
    (15, "Resolving quickly"),
    (16, "Heavy triage"),
])
def test_closed_issues_label(count, label):
    assert closed_issues_label(count) == label


def _heatmap(cells):
    grid = [[0] * 24 for _ in range(7)]
    for (day, hour), count in cells.items():
        grid[day][hour] = count
    return ActivityHeatmap(tuple(tuple(row) for row in grid))


def test_peak_prefers_first_cell_on_tie():
    """Test ties resolve to the earliest day, then the earliest hour."""
    heatmap = _heatmap({(4, 9): 5, (1, 22): 5, (1, 3): 5, (6, 0): 2})

    assert find_peak_cell(heatmap) == (1, 3)


def test_peak_activity_names_the_day():
    heatmap = _heatmap({(0, 2): 1, (4, 14): 9})

    peak = derive_peak_activity(heatmap, team_size=3)

    assert peak == PeakActivity(most_active_day="Friday", peak_hour_utc=14, team_size=3)


def test_empty_heatmap_has_no_peak():
    peak = derive_peak_activity(ActivityHeatmap.empty(), team_size=2)

    assert find_peak_cell(ActivityHeatmap.empty()) is None
    assert peak.most_active_day is None
    assert peak.peak_hour_utc is None
    assert peak.team_size == 2


def test_weekly_windows_are_contiguous_and_end_now():
    now = datetime(2024, 6, 3, 12, 0, tzinfo=timezone.utc)

    windows = weekly_bucket_windows(now)

    assert len(windows) == WEEKLY_BUCKET_COUNT
    assert windows[0][0] == now - timedelta(weeks=12)
    assert windows[-1] == (now - timedelta(weeks=1), now)
    for (_, end), (start, _) in zip(windows, windows[1:]):
        assert end == start


@pytest.mark.parametrize("counts,expected", [
    ([3, 4], [0] * 10 + [3, 4]),
    (list(range(14)), list(range(2, 14))),
    ([], [0] * 12),
    ([-1, 2], [0] * 10 + [0, 2]),
])
def test_normalize_weekly_counts(counts, expected):
    assert normalize_weekly_counts(counts) == expected
