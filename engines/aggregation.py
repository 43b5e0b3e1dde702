"""Activity analytics: category statistics and time-bucketed score series."""

from __future__ import annotations

import calendar
from collections import OrderedDict
from dataclasses import dataclass
from datetime import date, datetime, timedelta, tzinfo
from typing import Dict, Iterable, List, Optional, Sequence

from schemas import (
    ActivityRecord,
    AnalyticsSnapshot,
    CategoryStat,
    CategorySummary,
    SubjectPerformance,
    TimeBucket,
)

UNCATEGORIZED = "Uncategorized"
TIMEFRAMES = ("1month", "6months", "1year")
_TIMEFRAME_MONTHS = {"1month": 1, "6months": 6, "1year": 12}

# Fixed offset of the completion estimate. There is no per-category count of
# available questions, so completion is approximated as total/(total+5).
COMPLETION_ESTIMATE_OFFSET = 5


@dataclass
class _Accumulator:
    correct: int = 0
    total: int = 0
    time_spent_seconds: float = 0.0

    def add(self, record: ActivityRecord) -> None:
        self.total += 1
        if record.result.is_correct:
            self.correct += 1
        self.time_spent_seconds += (record.result.time_spent_ms or 0) / 1000.0

    def merge(self, other: "_Accumulator") -> None:
        self.correct += other.correct
        self.total += other.total
        self.time_spent_seconds += other.time_spent_seconds


def _check_timeframe(timeframe: str) -> None:
    if timeframe not in _TIMEFRAME_MONTHS:
        raise ValueError(f"Unknown timeframe {timeframe!r}; expected one of {', '.join(TIMEFRAMES)}")


def _pct(part: float, whole: float) -> float:
    return round(part / whole * 100, 2) if whole else 0.0


def _subtract_months(moment: datetime, months: int) -> datetime:
    month_index = moment.month - 1 - months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def timeframe_start(timeframe: str, now: Optional[datetime] = None) -> datetime:
    """Earliest activity timestamp included in ``timeframe`` counted back from ``now``."""
    _check_timeframe(timeframe)
    return _subtract_months(now or datetime.now().astimezone(), _TIMEFRAME_MONTHS[timeframe])


def local_date(moment: datetime, tz: Optional[tzinfo] = None) -> date:
    """Calendar date of ``moment`` in ``tz`` (system zone when omitted).

    Naive timestamps are taken to be local already.
    """
    if moment.tzinfo is None:
        return moment.date()
    return moment.astimezone(tz).date()


def week_start(day: date) -> date:
    """Sunday on or before ``day``."""
    return day - timedelta(days=(day.weekday() + 1) % 7)


def category_of(record: ActivityRecord) -> str:
    category = (record.category or "").strip()
    return category or UNCATEGORIZED


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------

def category_stats(records: Iterable[ActivityRecord]) -> List[CategoryStat]:
    groups: Dict[str, _Accumulator] = OrderedDict()
    for record in records:
        groups.setdefault(category_of(record), _Accumulator()).add(record)

    stats: List[CategoryStat] = []
    for category, acc in groups.items():
        if acc.total == 0:
            continue
        correct_pct = _pct(acc.correct, acc.total)
        stats.append(
            CategoryStat(
                category=category,
                total_attempts=acc.total,
                correct_attempts=acc.correct,
                completion_pct=_pct(acc.total, acc.total + COMPLETION_ESTIMATE_OFFSET),
                correct_pct=correct_pct,
                incorrect_pct=round(100 - correct_pct, 2),
            )
        )
    return stats


def summarize_category(records: Iterable[ActivityRecord], category: str) -> CategorySummary:
    """Drill-down totals for a single category (missing category matches ``Uncategorized``)."""
    acc = _Accumulator()
    for record in records:
        if category_of(record) == category:
            acc.add(record)
    average_minutes = acc.time_spent_seconds / acc.total / 60 if acc.total else 0.0
    return CategorySummary(
        category=category,
        total=acc.total,
        correct=acc.correct,
        incorrect=acc.total - acc.correct,
        accuracy_pct=_pct(acc.correct, acc.total),
        average_time_spent_minutes=round(average_minutes, 2),
    )


def subject_performance(records: Iterable[ActivityRecord]) -> List[SubjectPerformance]:
    """Correctness per category, the performance signal for schedule generation."""
    return [
        SubjectPerformance(subject=stat.category, score=stat.correct_pct)
        for stat in category_stats(records)
    ]


# ---------------------------------------------------------------------------
# Time series
# ---------------------------------------------------------------------------

def _daily_groups(records: Iterable[ActivityRecord], tz: Optional[tzinfo]) -> Dict[date, _Accumulator]:
    groups: Dict[date, _Accumulator] = {}
    for record in records:
        groups.setdefault(local_date(record.occurred_at, tz), _Accumulator()).add(record)
    return groups


def _bucket(key: str, label: str, acc: _Accumulator) -> TimeBucket:
    return TimeBucket(
        key=key,
        label=label,
        avg_score_pct=_pct(acc.correct, acc.total),
        question_count=acc.total,
        time_spent_minutes=round(acc.time_spent_seconds / 60, 2),
    )


def time_series(
    records: Iterable[ActivityRecord],
    timeframe: str,
    tz: Optional[tzinfo] = None,
) -> List[TimeBucket]:
    """Daily buckets for ``1month``, Sunday-aligned weeks for ``6months``, months for ``1year``."""
    _check_timeframe(timeframe)
    daily = _daily_groups(records, tz)

    if timeframe == "1month":
        return [_bucket(day.isoformat(), day.isoformat(), daily[day]) for day in sorted(daily)]

    regrouped: Dict[str, _Accumulator] = {}
    labels: Dict[str, str] = {}
    for day, acc in daily.items():
        if timeframe == "6months":
            start = week_start(day).isoformat()
            key, label = start, f"Week of {start}"
        else:
            key = f"{day.year:04d}-{day.month:02d}"
            label = key
        regrouped.setdefault(key, _Accumulator()).merge(acc)
        labels[key] = label

    return [_bucket(key, labels[key], regrouped[key]) for key in sorted(regrouped)]


def aggregate(
    records: Sequence[ActivityRecord],
    timeframe: str,
    *,
    since: Optional[datetime] = None,
    tz: Optional[tzinfo] = None,
) -> AnalyticsSnapshot:
    """Category statistics and the time series for ``records``.

    Pure over the supplied slice; ``since`` is only echoed back so callers can
    report the window the slice was queried for.
    """
    _check_timeframe(timeframe)
    return AnalyticsSnapshot(
        timeframe=timeframe,
        since=since,
        categories=category_stats(records),
        series=time_series(records, timeframe, tz),
    )
