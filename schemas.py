"""Pydantic schemas for study signals, analytics, schedules and model outputs."""

from __future__ import annotations

import json
from datetime import date, datetime, timezone
from typing import List, Literal, Type, TypeVar

from pydantic import BaseModel, Field, ValidationError

__all__ = [
    "ActivityResult",
    "ActivityRecord",
    "MoodSample",
    "JournalEntry",
    "SentimentResult",
    "SentimentPayload",
    "CategoryStat",
    "CategorySummary",
    "TimeBucket",
    "AnalyticsSnapshot",
    "SubjectPerformance",
    "UserPreferences",
    "ScheduleTopic",
    "ScheduleDay",
    "WeeklySchedule",
    "PlanTopicPayload",
    "PlanDayPayload",
    "PlanPayload",
    "parse_json_safe",
]

ActivityKind = Literal["question", "practice", "exam"]
Timeframe = Literal["1month", "6months", "1year"]
MoodTrend = Literal["improving", "declining", "stable"]
ScheduleSource = Literal["llm", "fallback"]
FallbackReason = Literal["quota_exceeded", "llm_unavailable", "invalid_response", "offline"]


# ---------------------------------------------------------------------------
# Read-only inputs delivered by the persistence layer
# ---------------------------------------------------------------------------

class ActivityResult(BaseModel):
    score: float | None = None
    is_correct: bool | None = None
    time_spent_ms: int = Field(default=0, ge=0)


class ActivityRecord(BaseModel):
    """A single practice, question or exam submission."""

    model_config = {"frozen": True}

    user_id: str
    kind: ActivityKind
    occurred_at: datetime
    result: ActivityResult = Field(default_factory=ActivityResult)
    category: str | None = None
    difficulty: str | None = None


class MoodSample(BaseModel):
    model_config = {"frozen": True}

    user_id: str
    value: float = Field(ge=1, le=5)
    timestamp: datetime
    session_id: str | None = None
    exam_id: str | None = None


class JournalEntry(BaseModel):
    model_config = {"frozen": True}

    user_id: str
    text: str
    timestamp: datetime
    tags: List[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Derived signals
# ---------------------------------------------------------------------------

class SentimentResult(BaseModel):
    score: float = Field(default=0.0, ge=-1, le=1)
    mood_label: str = "neutral"


class SentimentPayload(BaseModel):
    """Shape the completion service must return for journal sentiment."""

    sentiment: float = Field(ge=-1, le=1)
    mood: str = Field(min_length=1)


class CategoryStat(BaseModel):
    category: str
    total_attempts: int
    correct_attempts: int
    completion_pct: float = Field(
        description=(
            "Estimate only: total/(total+5)*100. There is no count of the questions "
            "available per category, so this is not a true completion ratio."
        ),
    )
    correct_pct: float
    incorrect_pct: float


class CategorySummary(BaseModel):
    category: str
    total: int
    correct: int
    incorrect: int
    accuracy_pct: float
    average_time_spent_minutes: float


class TimeBucket(BaseModel):
    key: str = Field(description="Sortable bucket key: YYYY-MM-DD for days and weeks, YYYY-MM for months.")
    label: str
    avg_score_pct: float
    question_count: int
    time_spent_minutes: float


class AnalyticsSnapshot(BaseModel):
    timeframe: Timeframe
    since: datetime | None = None
    categories: List[CategoryStat] = Field(default_factory=list)
    series: List[TimeBucket] = Field(default_factory=list)


class SubjectPerformance(BaseModel):
    subject: str
    score: float


# ---------------------------------------------------------------------------
# Schedules
# ---------------------------------------------------------------------------

class UserPreferences(BaseModel):
    preferred_study_time: str = "evening"
    preferred_rest_day_index: int = Field(
        default=6,
        ge=0,
        le=6,
        description="Day of week kept free of study, 0=Sunday through 6=Saturday.",
    )
    max_daily_hours: float = Field(default=3, gt=0, le=24)
    focus_areas: List[str] = Field(default_factory=lambda: ["Math", "Science"])

    model_config = {"frozen": True}


class ScheduleTopic(BaseModel):
    subject: str
    duration_minutes: int = Field(ge=0)
    focus: str = "General review"


class ScheduleDay(BaseModel):
    day_name: str
    date: date
    is_rest_day: bool = False
    topics: List[ScheduleTopic] = Field(default_factory=list)
    total_duration_minutes: int = 0
    completed: bool = False
    motivational_message: str = ""


class WeeklySchedule(BaseModel):
    user_id: str
    week_number: int
    start_date: date
    end_date: date
    days: List[ScheduleDay]
    rest_day_index: int = Field(ge=0, le=6)
    average_mood: float = 0.0
    source: ScheduleSource = "fallback"
    fallback_reason: FallbackReason | None = None
    generated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def rest_days(self) -> List[ScheduleDay]:
        return [day for day in self.days if day.is_rest_day]


# ---------------------------------------------------------------------------
# Untrusted plan payload returned by the completion service
# ---------------------------------------------------------------------------

# A single topic never runs longer than a day.
MAX_TOPIC_MINUTES = 24 * 60


class PlanTopicPayload(BaseModel):
    subject: str = Field(min_length=1)
    duration: float = Field(ge=0, le=MAX_TOPIC_MINUTES, strict=True, allow_inf_nan=False)
    focus: str | None = None

    model_config = {"extra": "ignore"}


class PlanDayPayload(BaseModel):
    date: date
    topics: List[PlanTopicPayload]

    model_config = {"extra": "ignore"}


class PlanPayload(BaseModel):
    days: List[PlanDayPayload]

    model_config = {"extra": "ignore"}


_T = TypeVar("_T", bound=BaseModel)


def _find_first_json_object(text: str) -> tuple[str, int, int]:
    start = text.find("{")
    while start != -1:
        depth = 0
        for idx in range(start, len(text)):
            char = text[idx]
            if char == "{" and (idx == 0 or text[idx - 1] != "\\"):
                depth += 1
            elif char == "}" and (idx == 0 or text[idx - 1] != "\\"):
                depth -= 1
                if depth == 0:
                    candidate = text[start : idx + 1]
                    try:
                        json.loads(candidate)
                    except Exception:
                        break
                    return candidate, start, idx + 1
        start = text.find("{", start + 1)
    raise ValueError("No JSON object found in provided text")


def _strip_code_fence(text: str) -> str:
    stripped = text.strip()
    if stripped.startswith("```"):
        stripped = stripped.split("\n", 1)[1] if "\n" in stripped else ""
        if stripped.rstrip().endswith("```"):
            stripped = stripped.rstrip()[:-3]
    return stripped.strip()


def parse_json_safe(text: str, model: Type[_T]) -> _T:
    """Parse ``text`` into ``model`` with a fallback JSON extraction pass.

    Completion models like to wrap JSON in prose or markdown fences; the
    fallback pass extracts the first balanced JSON object and validates that.
    """

    if not isinstance(text, str):
        raise TypeError("Model output must be text")

    first_error: Exception | None = None
    try:
        return model.model_validate_json(_strip_code_fence(text))
    except (ValidationError, ValueError, TypeError) as exc:
        first_error = exc

    try:
        snippet, _, _ = _find_first_json_object(text)
    except ValueError:
        if first_error:
            raise first_error
        raise

    try:
        return model.model_validate_json(snippet)
    except Exception:
        if first_error:
            raise first_error
        raise
