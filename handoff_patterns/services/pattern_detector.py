"""
Pattern detection over one category's mention history.

Pure functions, no I/O. Detects:
- NEW: earliest mention within the last 7 days
- FREQUENCY: 3+ mentions inside the analysis window
- TREND: >30% week-over-week change, anchored on the latest mention
- ABSENCE: previously frequent (5+), silent for 14+ days of wall-clock time

CORRELATION is an orchestration decision and is never produced here.
"""

from collections.abc import Sequence
from datetime import UTC, datetime, timedelta

import structlog

from handoff_patterns.domain.models import (
    ConcernCategory,
    Mention,
    PatternResult,
    PatternType,
    TrendDirection,
)

logger = structlog.get_logger(__name__)

FREQUENCY_THRESHOLD = 3
TREND_CHANGE_THRESHOLD = 0.30
NEW_PATTERN_DAYS = 7
ABSENCE_THRESHOLD_DAYS = 14
ABSENCE_MIN_PREVIOUS = 5
DEFAULT_WINDOW_DAYS = 30

_ONE_WEEK = timedelta(days=7)


def days_between(earlier: datetime, later: datetime) -> int:
    """Whole days between two instants, ignoring order."""
    return abs(later - earlier) // timedelta(days=1)


def _has_valid_dates(mentions: Sequence[Mention]) -> bool:
    return all(
        isinstance(m.created_at, datetime) and m.created_at.tzinfo is not None for m in mentions
    )


def _sorted(mentions: Sequence[Mention]) -> list[Mention]:
    return sorted(mentions, key=lambda m: m.created_at)


def calculate_trend(
    mentions: Sequence[Mention], change_threshold: float = TREND_CHANGE_THRESHOLD
) -> TrendDirection:
    """
    Compare the latest week of mentions to the week before it.

    Windows are anchored on the latest mention rather than wall-clock time so
    backfilled and batch runs are deterministic:
    recent = (latest - 7d, latest], previous = [latest - 14d, latest - 7d].
    """
    if len(mentions) < 2:
        return TrendDirection.STABLE

    reference = max(m.created_at for m in mentions)
    one_week_ago = reference - _ONE_WEEK
    two_weeks_ago = reference - 2 * _ONE_WEEK

    recent = sum(1 for m in mentions if one_week_ago < m.created_at <= reference)
    previous = sum(1 for m in mentions if two_weeks_ago <= m.created_at <= one_week_ago)

    if previous == 0:
        return TrendDirection.INCREASING if recent > 0 else TrendDirection.STABLE

    change = (recent - previous) / previous
    if change > change_threshold:
        return TrendDirection.INCREASING
    if change < -change_threshold:
        return TrendDirection.DECREASING
    return TrendDirection.STABLE


def detect_patterns(
    category: ConcernCategory,
    mentions: Sequence[Mention],
    *,
    now: datetime | None = None,
    window_days: int = DEFAULT_WINDOW_DAYS,
    frequency_threshold: int = FREQUENCY_THRESHOLD,
    new_pattern_days: int = NEW_PATTERN_DAYS,
    trend_change_threshold: float = TREND_CHANGE_THRESHOLD,
) -> list[PatternResult]:
    """Classify one category's mentions into NEW, FREQUENCY and TREND patterns."""
    if not mentions:
        return []

    if not _has_valid_dates(mentions):
        logger.warning("invalid_mention_dates_skipping_category", category=category.value)
        return []

    now = now or datetime.now(UTC)
    ordered = _sorted(mentions)
    first_mention = ordered[0].created_at
    last_mention = ordered[-1].created_at

    patterns: list[PatternResult] = []

    if days_between(first_mention, now) <= new_pattern_days:
        patterns.append(
            PatternResult(
                type=PatternType.NEW,
                mention_count=len(ordered),
                first_mention_date=first_mention,
                last_mention_date=last_mention,
            )
        )

    window_start = now - timedelta(days=window_days)
    in_window = [m for m in ordered if m.created_at >= window_start]

    if len(in_window) >= frequency_threshold:
        trend = calculate_trend(in_window, trend_change_threshold)
        window_first = in_window[0].created_at
        window_last = in_window[-1].created_at

        patterns.append(
            PatternResult(
                type=PatternType.FREQUENCY,
                mention_count=len(in_window),
                first_mention_date=window_first,
                last_mention_date=window_last,
                trend=trend,
            )
        )

        if trend is not TrendDirection.STABLE:
            patterns.append(
                PatternResult(
                    type=PatternType.TREND,
                    mention_count=len(in_window),
                    first_mention_date=window_first,
                    last_mention_date=window_last,
                    trend=trend,
                )
            )

    return patterns


def split_by_recency(
    mentions: Sequence[Mention],
    *,
    now: datetime | None = None,
    recent_days: int = ABSENCE_THRESHOLD_DAYS,
) -> tuple[list[Mention], list[Mention]]:
    """Split mentions into (historical, recent) around `now - recent_days`."""
    now = now or datetime.now(UTC)
    cutoff = now - timedelta(days=recent_days)
    ordered = _sorted(mentions)
    historical = [m for m in ordered if m.created_at < cutoff]
    recent = [m for m in ordered if m.created_at >= cutoff]
    return historical, recent


def detect_absence_pattern(
    category: ConcernCategory,
    historical: Sequence[Mention],
    recent: Sequence[Mention],
    *,
    now: datetime | None = None,
    min_previous: int = ABSENCE_MIN_PREVIOUS,
    threshold_days: int = ABSENCE_THRESHOLD_DAYS,
) -> PatternResult | None:
    """
    A previously frequent concern that has gone quiet.

    Unlike TREND, the gap is measured against wall-clock `now`.
    Returns None on insufficient history or any recent activity.
    """
    if len(historical) < min_previous or len(recent) > 0:
        return None

    if not _has_valid_dates(historical):
        logger.warning("invalid_mention_dates_skipping_category", category=category.value)
        return None

    now = now or datetime.now(UTC)
    ordered = _sorted(historical)
    first_mention = ordered[0].created_at
    last_mention = ordered[-1].created_at

    if days_between(last_mention, now) < threshold_days:
        return None

    return PatternResult(
        type=PatternType.ABSENCE,
        mention_count=len(ordered),
        first_mention_date=first_mention,
        last_mention_date=last_mention,
        trend=TrendDirection.DECREASING,
    )
