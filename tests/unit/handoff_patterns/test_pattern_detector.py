"""
Tests for the pure pattern detector.

Covers:
- NEW / FREQUENCY / TREND classification and their boundaries
- Trend windows anchored on the latest mention
- ABSENCE against wall-clock time
- Property-based laws over arbitrary mention histories
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from handoff_patterns.domain.models import (
    ConcernCategory,
    Mention,
    PatternType,
    TrendDirection,
)
from handoff_patterns.services.pattern_detector import (
    calculate_trend,
    days_between,
    detect_absence_pattern,
    detect_patterns,
    split_by_recency,
)

NOW = datetime(2026, 3, 20, 12, 0, tzinfo=UTC)


def _mention(created_at: datetime, index: int = 0) -> Mention:
    return Mention(
        handoff_id=f"h-{index}",
        created_at=created_at,
        category=ConcernCategory.TIREDNESS,
        normalized_term="appears tired",
        raw_text="seemed tired",
    )


def _days_ago(*days: float) -> list[Mention]:
    return [_mention(NOW - timedelta(days=d), i) for i, d in enumerate(days)]


def _on_march(*days: int) -> list[Mention]:
    return [_mention(datetime(2026, 3, d, 12, 0, tzinfo=UTC), i) for i, d in enumerate(days)]


def _types(results) -> list[PatternType]:
    return [r.type for r in results]


class TestDaysBetween:
    def test_floors_partial_days(self) -> None:
        assert days_between(NOW, NOW + timedelta(days=1, hours=23)) == 1

    def test_is_symmetric(self) -> None:
        later = NOW + timedelta(days=5)
        assert days_between(NOW, later) == days_between(later, NOW) == 5


class TestDetectPatterns:
    def test_no_mentions_yields_nothing(self) -> None:
        assert detect_patterns(ConcernCategory.PAIN, [], now=NOW) == []

    def test_single_recent_mention_is_new(self) -> None:
        results = detect_patterns(ConcernCategory.TIREDNESS, _days_ago(3), now=NOW)

        assert _types(results) == [PatternType.NEW]
        assert results[0].mention_count == 1
        assert results[0].trend is None

    def test_new_boundary_is_inclusive_at_seven_days(self) -> None:
        assert _types(detect_patterns(ConcernCategory.TIREDNESS, _days_ago(7), now=NOW)) == [
            PatternType.NEW
        ]
        assert detect_patterns(ConcernCategory.TIREDNESS, _days_ago(8), now=NOW) == []

    def test_three_mentions_in_window_is_frequency(self) -> None:
        results = detect_patterns(ConcernCategory.TIREDNESS, _days_ago(25, 18, 10), now=NOW)

        frequency = next(r for r in results if r.type is PatternType.FREQUENCY)
        assert frequency.mention_count == 3
        assert frequency.trend is not None

    def test_two_mentions_are_not_frequent(self) -> None:
        results = detect_patterns(ConcernCategory.TIREDNESS, _days_ago(20, 10), now=NOW)

        assert PatternType.FREQUENCY not in _types(results)

    def test_mentions_outside_window_do_not_count(self) -> None:
        results = detect_patterns(
            ConcernCategory.TIREDNESS, _days_ago(45, 44, 43, 20), now=NOW, window_days=30
        )

        assert PatternType.FREQUENCY not in _types(results)

    def test_increasing_week_over_week(self) -> None:
        # Anchored on Mar 15: recent (Mar 8, Mar 15] holds 3, previous [Mar 1, Mar 8] holds 1
        results = detect_patterns(ConcernCategory.TIREDNESS, _on_march(5, 9, 12, 15), now=NOW)

        assert _types(results) == [PatternType.FREQUENCY, PatternType.TREND]
        assert all(r.trend is TrendDirection.INCREASING for r in results)
        assert all(r.mention_count == 4 for r in results)

    def test_equal_weeks_are_stable_without_trend(self) -> None:
        # Anchored on Mar 15: recent holds Mar 9 and 15, previous holds Mar 1 and 5
        results = detect_patterns(ConcernCategory.TIREDNESS, _on_march(1, 5, 9, 15), now=NOW)

        assert _types(results) == [PatternType.FREQUENCY]
        assert results[0].trend is TrendDirection.STABLE

    def test_decreasing_week_over_week(self) -> None:
        results = detect_patterns(ConcernCategory.TIREDNESS, _on_march(2, 3, 4, 5, 12), now=NOW)

        assert _types(results) == [PatternType.FREQUENCY, PatternType.TREND]
        assert results[1].trend is TrendDirection.DECREASING

    def test_naive_timestamps_skip_category(self) -> None:
        mentions = [_mention(datetime(2026, 3, 18, 12, 0)), *_days_ago(1, 2)]

        assert detect_patterns(ConcernCategory.TIREDNESS, mentions, now=NOW) == []

    def test_unsorted_input_is_handled(self) -> None:
        ordered = detect_patterns(ConcernCategory.TIREDNESS, _on_march(5, 9, 12, 15), now=NOW)
        shuffled = detect_patterns(ConcernCategory.TIREDNESS, _on_march(12, 5, 15, 9), now=NOW)

        assert ordered == shuffled


class TestCalculateTrend:
    def test_fewer_than_two_mentions_is_stable(self) -> None:
        assert calculate_trend(_days_ago(1)) is TrendDirection.STABLE

    def test_only_recent_activity_is_increasing(self) -> None:
        assert calculate_trend(_days_ago(2, 1)) is TrendDirection.INCREASING

    def test_thirty_percent_change_is_not_enough(self) -> None:
        # 10 previous vs 13 recent is exactly +30%
        previous = [_mention(datetime(2026, 3, 3, h, tzinfo=UTC), h) for h in range(10)]
        recent = [_mention(datetime(2026, 3, 14, h, tzinfo=UTC), 100 + h) for h in range(13)]

        assert calculate_trend(previous + recent) is TrendDirection.STABLE


class TestAbsence:
    def test_previously_frequent_now_silent(self) -> None:
        historical = _days_ago(40, 35, 30, 25, 20)

        result = detect_absence_pattern(ConcernCategory.SLEEP, historical, [], now=NOW)

        assert result is not None
        assert result.type is PatternType.ABSENCE
        assert result.trend is TrendDirection.DECREASING
        assert result.mention_count == 5
        assert result.last_mention_date == NOW - timedelta(days=20)

    def test_insufficient_history(self) -> None:
        assert (
            detect_absence_pattern(ConcernCategory.SLEEP, _days_ago(40, 35, 30, 25), [], now=NOW)
            is None
        )

    def test_recent_activity_cancels_absence(self) -> None:
        historical = _days_ago(40, 35, 30, 25, 20)

        assert (
            detect_absence_pattern(ConcernCategory.SLEEP, historical, _days_ago(2), now=NOW)
            is None
        )

    def test_gap_shorter_than_threshold(self) -> None:
        historical = _days_ago(40, 35, 30, 25, 13)

        assert detect_absence_pattern(ConcernCategory.SLEEP, historical, [], now=NOW) is None

    def test_split_by_recency(self) -> None:
        mentions = _days_ago(30, 15, 14, 3)

        historical, recent = split_by_recency(mentions, now=NOW, recent_days=14)

        assert [m.handoff_id for m in historical] == ["h-0", "h-1"]
        assert [m.handoff_id for m in recent] == ["h-2", "h-3"]


# Minutes before NOW, up to 60 days
_offsets = st.lists(st.integers(min_value=0, max_value=60 * 24 * 60), max_size=25)


class TestDetectorProperties:
    @settings(max_examples=75)
    @given(offsets=_offsets)
    def test_results_are_consistent(self, offsets: list[int]) -> None:
        mentions = [_mention(NOW - timedelta(minutes=m), i) for i, m in enumerate(offsets)]

        results = detect_patterns(ConcernCategory.MOOD, mentions, now=NOW, window_days=30)
        types = _types(results)

        assert PatternType.CORRELATION not in types
        assert PatternType.ABSENCE not in types
        for result in results:
            assert 0 < result.mention_count <= len(mentions)
            assert result.first_mention_date <= result.last_mention_date

        in_window = [m for m in mentions if m.created_at >= NOW - timedelta(days=30)]
        assert (PatternType.FREQUENCY in types) == (len(in_window) >= 3)

        if PatternType.TREND in types:
            trend = next(r for r in results if r.type is PatternType.TREND)
            assert trend.trend is not TrendDirection.STABLE

    @settings(max_examples=50)
    @given(offsets=_offsets, data=st.data())
    def test_trend_ignores_input_order(self, offsets: list[int], data: st.DataObject) -> None:
        mentions = [_mention(NOW - timedelta(minutes=m), i) for i, m in enumerate(offsets)]
        shuffled = data.draw(st.permutations(mentions))

        assert calculate_trend(mentions) is calculate_trend(shuffled)


@pytest.mark.parametrize("category", list(ConcernCategory))
def test_every_category_is_supported(category: ConcernCategory) -> None:
    assert _types(detect_patterns(category, _days_ago(1), now=NOW)) == [PatternType.NEW]
