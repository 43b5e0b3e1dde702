import json
from datetime import date, timedelta

import pytest

from engines.errors import InvalidUserId
from engines.validation import (
    PlanValidationError,
    parse_plan,
    validate_schedule_totals,
    validate_user_id,
)


def _plan(start=date(2024, 3, 11), days=7, **overrides):
    entries = []
    for offset in range(days):
        entries.append(
            {
                "date": (start + timedelta(days=offset)).isoformat(),
                "topics": [{"subject": "Math", "duration": 30, "focus": "Algebra"}],
            }
        )
    payload = {"days": entries}
    payload.update(overrides)
    return payload


def test_valid_plan_parses():
    plan = parse_plan(json.dumps(_plan()))

    assert len(plan.days) == 7
    assert plan.days[0].date == date(2024, 3, 11)
    assert plan.days[0].topics[0].duration == 30


def test_plan_wrapped_in_prose_parses():
    text = "Here is your plan:\n" + json.dumps(_plan()) + "\nGood luck!"

    assert len(parse_plan(text).days) == 7


@pytest.mark.parametrize("days", [6, 8])
def test_wrong_day_count_is_rejected(days):
    with pytest.raises(PlanValidationError):
        parse_plan(json.dumps(_plan(days=days)))


def test_duplicate_dates_are_rejected():
    payload = _plan()
    payload["days"][3]["date"] = payload["days"][2]["date"]

    with pytest.raises(PlanValidationError):
        parse_plan(json.dumps(payload))


def test_gap_in_dates_is_rejected():
    payload = _plan()
    payload["days"][6]["date"] = "2024-03-20"

    with pytest.raises(PlanValidationError):
        parse_plan(json.dumps(payload))


def test_missing_subject_is_rejected():
    payload = _plan()
    del payload["days"][1]["topics"][0]["subject"]

    with pytest.raises(PlanValidationError):
        parse_plan(json.dumps(payload))


def test_non_numeric_duration_is_rejected():
    payload = _plan()
    payload["days"][1]["topics"][0]["duration"] = "thirty"

    with pytest.raises(PlanValidationError):
        parse_plan(json.dumps(payload))


@pytest.mark.parametrize("duration", ["1e999", "-1e999", "1441", "-5"])
def test_out_of_range_duration_is_rejected(duration):
    text = json.dumps(_plan()).replace('"duration": 30', f'"duration": {duration}', 1)

    with pytest.raises(PlanValidationError):
        parse_plan(text)


def test_full_day_duration_is_accepted():
    payload = _plan()
    payload["days"][1]["topics"][0]["duration"] = 24 * 60

    assert parse_plan(json.dumps(payload)).days[1].topics[0].duration == 1440


def test_plan_must_start_on_the_requested_week():
    text = json.dumps(_plan(start=date(2024, 3, 18)))

    assert parse_plan(text).days[0].date == date(2024, 3, 18)
    assert parse_plan(text, week_start=date(2024, 3, 18)).days[0].date == date(2024, 3, 18)
    with pytest.raises(PlanValidationError, match="expected 2024-03-11"):
        parse_plan(text, week_start=date(2024, 3, 11))


def test_unparseable_date_is_rejected():
    payload = _plan()
    payload["days"][0]["date"] = "next monday"

    with pytest.raises(PlanValidationError):
        parse_plan(json.dumps(payload))


def test_text_without_json_is_rejected():
    with pytest.raises(PlanValidationError):
        parse_plan("I cannot help with that.")


def test_schedule_totals_must_match_topics():
    days = [
        {"date": "2024-03-11", "is_rest_day": False, "topics": [{"duration_minutes": 30}], "total_duration_minutes": 45},
        {"date": "2024-03-12", "is_rest_day": True, "topics": [], "total_duration_minutes": 0},
    ]

    with pytest.raises(PlanValidationError):
        validate_schedule_totals(days)


def test_schedule_needs_one_empty_rest_day():
    with pytest.raises(PlanValidationError):
        validate_schedule_totals([{"is_rest_day": False, "topics": [], "total_duration_minutes": 0}])
    with pytest.raises(PlanValidationError):
        validate_schedule_totals(
            [{"is_rest_day": True, "topics": [{"duration_minutes": 10}], "total_duration_minutes": 10}]
        )


@pytest.mark.parametrize("raw", ["alice", " user-42 ", "mail@example.com", "tenant:7"])
def test_valid_user_ids(raw):
    assert validate_user_id(raw) == raw.strip()


@pytest.mark.parametrize("raw", ["", "   ", "a b", "x" * 129, None, 42, "drop;table"])
def test_malformed_user_ids(raw):
    with pytest.raises(InvalidUserId):
        validate_user_id(raw)


def test_invalid_user_id_is_a_value_error():
    with pytest.raises(ValueError):
        validate_user_id("")
