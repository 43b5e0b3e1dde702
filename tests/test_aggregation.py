from datetime import datetime, timedelta, timezone

import pytest

from engines import aggregation
from schemas import ActivityRecord, ActivityResult


def _record(category, correct, when, ms=60_000, user="alice"):
    return ActivityRecord(
        user_id=user,
        kind="question",
        occurred_at=when,
        result=ActivityResult(is_correct=correct, time_spent_ms=ms),
        category=category,
    )


BASE = datetime(2024, 3, 11, 12, 0, tzinfo=timezone.utc)


def test_category_percentages_sum_to_hundred():
    records = [
        _record("Math", True, BASE),
        _record("Math", False, BASE),
        _record("Math", False, BASE),
        _record("English", True, BASE),
    ]

    stats = {stat.category: stat for stat in aggregation.category_stats(records)}

    math = stats["Math"]
    assert math.total_attempts == 3
    assert math.correct_attempts == 1
    assert math.correct_pct == 33.33
    assert math.incorrect_pct == 66.67
    assert math.correct_pct + math.incorrect_pct == pytest.approx(100)
    assert stats["English"].correct_pct == 100.0
    assert stats["English"].incorrect_pct == 0.0


def test_missing_category_is_grouped_as_uncategorized():
    records = [_record(None, True, BASE), _record("  ", False, BASE)]

    stats = aggregation.category_stats(records)

    assert [stat.category for stat in stats] == ["Uncategorized"]
    assert stats[0].total_attempts == 2


def test_completion_is_an_estimate_from_attempt_count():
    records = [_record("Math", True, BASE) for _ in range(5)]

    [stat] = aggregation.category_stats(records)

    assert stat.completion_pct == 50.0


def test_empty_input_gives_empty_snapshot():
    snapshot = aggregation.aggregate([], "1month")

    assert snapshot.categories == []
    assert snapshot.series == []


def test_unknown_timeframe_is_rejected():
    with pytest.raises(ValueError):
        aggregation.aggregate([], "2weeks")
    with pytest.raises(ValueError):
        aggregation.timeframe_start("forever")


def test_daily_buckets_one_per_distinct_date_in_order():
    records = [
        _record("Math", True, BASE + timedelta(days=2)),
        _record("Math", False, BASE),
        _record("Math", True, BASE + timedelta(hours=1)),
        _record("Math", True, BASE + timedelta(days=1)),
    ]

    series = aggregation.time_series(records, "1month", tz=timezone.utc)

    keys = [bucket.key for bucket in series]
    assert keys == ["2024-03-11", "2024-03-12", "2024-03-13"]
    assert series[0].question_count == 2
    assert series[0].avg_score_pct == 50.0


def test_weekly_buckets_start_on_sunday():
    records = [
        # Monday 11th and Saturday 16th share the week starting Sunday 10th
        _record("Math", True, BASE),
        _record("Math", False, BASE + timedelta(days=5)),
        # Sunday 17th opens the next week
        _record("Math", True, BASE + timedelta(days=6)),
    ]

    series = aggregation.time_series(records, "6months", tz=timezone.utc)

    assert [bucket.key for bucket in series] == ["2024-03-10", "2024-03-17"]
    assert series[0].label == "Week of 2024-03-10"
    assert series[0].question_count == 2


def test_monthly_buckets_strictly_increasing():
    records = [
        _record("Math", True, datetime(2024, 1, 31, 10, tzinfo=timezone.utc)),
        _record("Math", True, datetime(2023, 12, 5, 10, tzinfo=timezone.utc)),
        _record("Math", False, datetime(2024, 1, 2, 10, tzinfo=timezone.utc)),
    ]

    series = aggregation.time_series(records, "1year", tz=timezone.utc)

    keys = [bucket.key for bucket in series]
    assert keys == ["2023-12", "2024-01"]
    assert all(a < b for a, b in zip(keys, keys[1:]))
    assert series[1].question_count == 2


def test_time_spent_milliseconds_become_minutes():
    records = [
        _record("Math", True, BASE, ms=90_000),
        _record("Math", True, BASE, ms=30_000),
    ]

    [bucket] = aggregation.time_series(records, "1month", tz=timezone.utc)

    assert bucket.time_spent_minutes == 2.0


def test_timeframe_start_clamps_to_month_end():
    now = datetime(2024, 3, 31, 9, 30, tzinfo=timezone.utc)

    assert aggregation.timeframe_start("1month", now) == datetime(2024, 2, 29, 9, 30, tzinfo=timezone.utc)
    assert aggregation.timeframe_start("6months", now) == datetime(2023, 9, 30, 9, 30, tzinfo=timezone.utc)
    assert aggregation.timeframe_start("1year", now) == datetime(2023, 3, 31, 9, 30, tzinfo=timezone.utc)


def test_summarize_category_drill_down():
    records = [
        _record("Math", True, BASE, ms=120_000),
        _record("Math", False, BASE, ms=60_000),
        _record("English", True, BASE),
    ]

    summary = aggregation.summarize_category(records, "Math")

    assert summary.total == 2
    assert summary.correct == 1
    assert summary.incorrect == 1
    assert summary.accuracy_pct == 50.0
    assert summary.average_time_spent_minutes == 1.5


def test_summarize_unknown_category_is_empty():
    summary = aggregation.summarize_category([_record("Math", True, BASE)], "History")

    assert summary.total == 0
    assert summary.accuracy_pct == 0.0
    assert summary.average_time_spent_minutes == 0.0


def test_subject_performance_uses_correctness():
    records = [_record("Math", False, BASE), _record("Math", True, BASE), _record("English", True, BASE)]

    performance = {entry.subject: entry.score for entry in aggregation.subject_performance(records)}

    assert performance == {"Math": 50.0, "English": 100.0}
