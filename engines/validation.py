"""Validation utilities for user ids and generated study plans."""

import re
from datetime import date
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from engines.errors import InvalidUserId
from schemas import PlanPayload, parse_json_safe

_USER_ID_PATTERN = re.compile(r"^[A-Za-z0-9_.:@-]{1,128}$")

DAYS_PER_WEEK = 7


class ValidationError(Exception):
    """Base class for validation errors."""
    pass


class PlanValidationError(ValidationError):
    """Raised when a generated plan fails validation."""
    pass


def validate_user_id(user_id: Any) -> str:
    """Return ``user_id`` stripped, or raise :class:`InvalidUserId`."""
    if not isinstance(user_id, str):
        raise InvalidUserId(f"User id must be a string, got {type(user_id).__name__}")
    cleaned = user_id.strip()
    if not _USER_ID_PATTERN.match(cleaned):
        raise InvalidUserId(f"Malformed user id: {user_id!r}")
    return cleaned


def parse_plan(text: str, week_start: Optional[date] = None) -> PlanPayload:
    """Parse the completion text into a :class:`PlanPayload`.

    Raises PlanValidationError if the text holds no JSON object of the
    required shape or the plan does not cover one week (the week starting
    on ``week_start`` when given).
    """
    try:
        plan = parse_json_safe(text, PlanPayload)
    except (PydanticValidationError, ValueError, TypeError) as exc:
        raise PlanValidationError(f"Plan payload does not match schema: {exc}") from exc

    validate_plan_days(plan, week_start)
    return plan


def validate_plan_days(plan: PlanPayload, week_start: Optional[date] = None) -> None:
    """Check day count and that the dates are seven consecutive days."""
    if len(plan.days) != DAYS_PER_WEEK:
        raise PlanValidationError(
            f"Plan must contain {DAYS_PER_WEEK} days, got {len(plan.days)}"
        )

    dates: List[date] = [day.date for day in plan.days]
    if len(set(dates)) != DAYS_PER_WEEK:
        raise PlanValidationError("Plan contains duplicate dates")

    span = (max(dates) - min(dates)).days
    if span != DAYS_PER_WEEK - 1:
        raise PlanValidationError(f"Plan dates must be consecutive, span was {span + 1} days")

    if week_start is not None and min(dates) != week_start:
        raise PlanValidationError(
            f"Plan starts on {min(dates).isoformat()}, expected {week_start.isoformat()}"
        )


def validate_schedule_totals(days: List[Dict[str, Any]]) -> None:
    """Check the duration and rest-day invariants on serialized schedule days."""
    rest_days = [day for day in days if day.get("is_rest_day")]
    if len(rest_days) != 1:
        raise PlanValidationError(f"Schedule must have exactly one rest day, got {len(rest_days)}")
    if rest_days[0].get("topics"):
        raise PlanValidationError("Rest day must not carry topics")

    for day in days:
        total = sum(int(topic.get("duration_minutes", 0)) for topic in day.get("topics", []))
        if total != day.get("total_duration_minutes"):
            raise PlanValidationError(
                f"Day {day.get('date')} total {day.get('total_duration_minutes')} does not match topic sum {total}"
            )
