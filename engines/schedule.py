"""Weekly study schedule generation.

Generation runs as a small state machine::

    GATHERING -> QUOTA_CHECK -> GENERATING -> VALIDATING -> READY | FALLBACK -> CACHED

Every step is its own method so it can be exercised in isolation. Any
failure after GATHERING lands in FALLBACK, which needs no external service,
so a caller always receives a schedule.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from enum import Enum
from typing import Callable, List, Optional, Sequence

from engines import aggregation, mood
from engines.base import CompletionClient, StudyDataSource
from engines.caching import ScheduleCache
from engines.errors import InvalidUpstreamResponse, UpstreamUnavailable
from engines.quota import QuotaDecision, QuotaGate
from engines.sentiment import NEUTRAL, SentimentAnalyzer
from engines.validation import (
    PlanValidationError,
    parse_plan,
    validate_schedule_totals,
    validate_user_id,
)
from prompts import PromptTemplate, get_prompt
from schemas import (
    FallbackReason,
    PlanPayload,
    ScheduleDay,
    ScheduleTopic,
    SentimentResult,
    SubjectPerformance,
    UserPreferences,
    WeeklySchedule,
)

# Monday-first, independent of the process locale.
DAY_NAMES = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")

FALLBACK_STUDY_DAYS = 5
FALLBACK_SESSION_MINUTES = 45
FALLBACK_FOCUS = "Core concepts"
FALLBACK_SUBJECT = "General review"
DEFAULT_TOPIC_FOCUS = "General review"

ENCOURAGEMENT = "Keep up the great work!"
FALLBACK_ENCOURAGEMENT = "Keep going!"
REST_DAY_MESSAGE = "Rest and recharge!"
OPEN_DAY_MESSAGE = "Open day: review anything you like."

PERFORMANCE_TIMEFRAME = "6months"


class GenerationState(str, Enum):
    GATHERING = "gathering"
    QUOTA_CHECK = "quota_check"
    GENERATING = "generating"
    VALIDATING = "validating"
    READY = "ready"
    FALLBACK = "fallback"
    CACHED = "cached"


@dataclass
class ScheduleSignals:
    """Everything GATHERING collects for one user."""

    user_id: str
    week_start: date
    preferences: UserPreferences = field(default_factory=UserPreferences)
    average_mood: float = 0.0
    mood_trend: str = "stable"
    performance: List[SubjectPerformance] = field(default_factory=list)
    sentiment: SentimentResult = field(default_factory=lambda: NEUTRAL)


@dataclass(frozen=True)
class GenerationOutcome:
    """A served schedule plus how this call obtained it."""

    schedule: WeeklySchedule
    from_cache: bool = False
    quota: Optional[QuotaDecision] = None

    @property
    def quota_refused(self) -> bool:
        return self.quota is not None and not self.quota.allowed


def sunday_index(day: date) -> int:
    """Day of week with Sunday=0, the convention of ``rest_day_index``."""
    return (day.weekday() + 1) % 7


def monday_of(day: date) -> date:
    return day - timedelta(days=day.weekday())


def weakest_first(performance: Sequence[SubjectPerformance]) -> List[SubjectPerformance]:
    return sorted(performance, key=lambda entry: entry.score)


def build_fallback_schedule(
    signals: ScheduleSignals,
    reason: FallbackReason,
) -> WeeklySchedule:
    """Deterministic plan used whenever the model cannot be used.

    Subjects are rotated weakest first over the first five non-rest days of
    the Monday-first week, one 45 minute "Core concepts" session each. The
    preferred rest day gets no topics, and the one remaining day stays open.
    """
    subjects = [entry.subject for entry in weakest_first(signals.performance)]
    if not subjects:
        subjects = [area for area in signals.preferences.focus_areas if area.strip()] or [FALLBACK_SUBJECT]

    rest_index = signals.preferences.preferred_rest_day_index
    days: List[ScheduleDay] = []
    slot = 0
    for offset in range(7):
        current = signals.week_start + timedelta(days=offset)
        name = DAY_NAMES[current.weekday()]
        if sunday_index(current) == rest_index:
            days.append(
                ScheduleDay(day_name=name, date=current, is_rest_day=True, motivational_message=REST_DAY_MESSAGE)
            )
            continue
        if slot >= FALLBACK_STUDY_DAYS:
            days.append(ScheduleDay(day_name=name, date=current, motivational_message=OPEN_DAY_MESSAGE))
            continue
        topic = ScheduleTopic(
            subject=subjects[slot % len(subjects)],
            duration_minutes=FALLBACK_SESSION_MINUTES,
            focus=FALLBACK_FOCUS,
        )
        slot += 1
        days.append(
            ScheduleDay(
                day_name=name,
                date=current,
                topics=[topic],
                total_duration_minutes=topic.duration_minutes,
                motivational_message=FALLBACK_ENCOURAGEMENT,
            )
        )

    return WeeklySchedule(
        user_id=signals.user_id,
        week_number=signals.week_start.isocalendar()[1],
        start_date=days[0].date,
        end_date=days[-1].date,
        days=days,
        rest_day_index=rest_index,
        average_mood=signals.average_mood,
        source="fallback",
        fallback_reason=reason,
    )


def schedule_from_plan(plan: PlanPayload, signals: ScheduleSignals, logger: Optional[logging.Logger] = None) -> WeeklySchedule:
    """Turn a validated plan payload into a :class:`WeeklySchedule`.

    Totals are recomputed from the topics; topics the model placed on the
    preferred rest day are dropped.
    """
    log = logger or logging.getLogger(__name__)
    rest_index = signals.preferences.preferred_rest_day_index
    days: List[ScheduleDay] = []
    for entry in sorted(plan.days, key=lambda item: item.date):
        is_rest_day = sunday_index(entry.date) == rest_index
        topics: List[ScheduleTopic] = []
        for topic in entry.topics:
            subject = topic.subject.strip()
            if not subject:
                raise PlanValidationError(f"Topic on {entry.date} has a blank subject")
            focus = (topic.focus or "").strip() or DEFAULT_TOPIC_FOCUS
            topics.append(
                ScheduleTopic(subject=subject, duration_minutes=int(round(topic.duration)), focus=focus)
            )
        if is_rest_day and topics:
            log.info("Dropping %d topic(s) the model placed on rest day %s", len(topics), entry.date)
            topics = []
        days.append(
            ScheduleDay(
                day_name=DAY_NAMES[entry.date.weekday()],
                date=entry.date,
                is_rest_day=is_rest_day,
                topics=topics,
                total_duration_minutes=sum(topic.duration_minutes for topic in topics),
                motivational_message=REST_DAY_MESSAGE if is_rest_day else ENCOURAGEMENT,
            )
        )

    return WeeklySchedule(
        user_id=signals.user_id,
        week_number=days[0].date.isocalendar()[1],
        start_date=days[0].date,
        end_date=days[-1].date,
        days=days,
        rest_day_index=rest_index,
        average_mood=signals.average_mood,
        source="llm",
    )


class ScheduleGenerator:
    """Produce, cache and serve one live weekly schedule per user."""

    def __init__(
        self,
        data_source: StudyDataSource,
        quota: QuotaGate,
        cache: ScheduleCache,
        client: Optional[CompletionClient],
        *,
        sentiment: Optional[SentimentAnalyzer] = None,
        prompt: Optional[PromptTemplate] = None,
        journal_limit: int = 10,
        offline: bool = False,
        today: Callable[[], date] = date.today,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.data_source = data_source
        self.quota = quota
        self.cache = cache
        self.client = client
        self.logger = logger or logging.getLogger(__name__)
        self.sentiment = sentiment or SentimentAnalyzer(None if offline else client, logger=self.logger)
        self.prompt = prompt or get_prompt("weekly_schedule")
        self.journal_limit = journal_limit
        self.offline = offline
        self._today = today

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------
    def get_current(self, user_id: str, preferences: Optional[UserPreferences] = None) -> WeeklySchedule:
        """Cached schedule if one is live, otherwise a freshly generated one."""
        return self.serve(user_id, preferences).schedule

    def refresh(self, user_id: str, preferences: Optional[UserPreferences] = None) -> WeeklySchedule:
        """Always run the full state machine, replacing the cached schedule."""
        return self.serve(user_id, preferences, force=True).schedule

    def generate(self, user_id: str, preferences: Optional[UserPreferences] = None) -> WeeklySchedule:
        return self._run(validate_user_id(user_id), preferences).schedule

    def serve(
        self,
        user_id: str,
        preferences: Optional[UserPreferences] = None,
        *,
        force: bool = False,
    ) -> GenerationOutcome:
        """Like :meth:`get_current` (or :meth:`refresh` with ``force``), but
        also reports whether the schedule came from the cache and whether the
        quota refused this call."""
        user_id = validate_user_id(user_id)
        if not force:
            cached = self.cache.get(user_id)
            if cached is not None:
                self.logger.debug("Serving cached schedule for %s", user_id)
                return GenerationOutcome(cached, from_cache=True)
        return self._run(user_id, preferences)

    def _run(self, user_id: str, preferences: Optional[UserPreferences]) -> GenerationOutcome:
        self._enter(user_id, GenerationState.GATHERING)
        signals = self.gather(user_id, preferences)

        decision: Optional[QuotaDecision] = None
        if self.offline:
            schedule = self.fallback(signals, "offline")
        else:
            self._enter(user_id, GenerationState.QUOTA_CHECK)
            decision = self.check_quota(user_id)
            if not decision.allowed:
                schedule = self.fallback(signals, "quota_exceeded")
            else:
                schedule = self._generate_with_model(signals)

        self._enter(user_id, GenerationState.CACHED)
        self.cache.store(schedule)
        return GenerationOutcome(schedule, quota=decision)

    def _generate_with_model(self, signals: ScheduleSignals) -> WeeklySchedule:
        self._enter(signals.user_id, GenerationState.GENERATING)
        try:
            raw = self.request_plan(signals)
        except UpstreamUnavailable as exc:
            self.logger.warning("Schedule model unavailable for %s: %s", signals.user_id, exc)
            return self.fallback(signals, "llm_unavailable")
        except InvalidUpstreamResponse as exc:
            self.logger.warning("Schedule model answered with an invalid envelope for %s: %s", signals.user_id, exc)
            return self.fallback(signals, "invalid_response")
        except Exception:
            self.logger.exception("Unexpected completion failure for %s", signals.user_id)
            return self.fallback(signals, "llm_unavailable")

        self._enter(signals.user_id, GenerationState.VALIDATING)
        try:
            schedule = self.validate(raw, signals)
        except PlanValidationError as exc:
            self.logger.warning("Rejected generated plan for %s: %s", signals.user_id, exc)
            return self.fallback(signals, "invalid_response")
        except Exception:
            self.logger.exception("Generated plan for %s could not be turned into a schedule", signals.user_id)
            return self.fallback(signals, "invalid_response")

        self._enter(signals.user_id, GenerationState.READY)
        return schedule

    # ------------------------------------------------------------------
    # States
    # ------------------------------------------------------------------
    def gather(self, user_id: str, preferences: Optional[UserPreferences] = None) -> ScheduleSignals:
        """Collect signals; a failing collaborator only loses its own contribution."""
        signals = ScheduleSignals(user_id=user_id, week_start=monday_of(self._today()))
        signals.preferences = preferences or self._stored_preferences(user_id)

        try:
            values = mood.chronological_values(self.data_source.list_mood_samples(user_id))
        except Exception:
            self.logger.warning("Mood history unavailable for %s", user_id, exc_info=True)
            values = []
        signals.average_mood = mood.average(values)
        signals.mood_trend = mood.classify(values)

        try:
            since = aggregation.timeframe_start(PERFORMANCE_TIMEFRAME)
            records = self.data_source.list_activities(user_id, since)
            signals.performance = aggregation.subject_performance(records)
        except Exception:
            self.logger.warning("Performance data unavailable for %s", user_id, exc_info=True)
            signals.performance = []

        try:
            entries = self.data_source.list_journal_entries(user_id, self.journal_limit)
            signals.sentiment = self.sentiment.analyze([entry.text for entry in entries])
        except Exception:
            self.logger.warning("Journal sentiment unavailable for %s", user_id, exc_info=True)
            signals.sentiment = NEUTRAL

        self.logger.debug(
            "Signals for %s: mood=%.2f (%s), %d subject(s), sentiment=%.2f",
            user_id,
            signals.average_mood,
            signals.mood_trend,
            len(signals.performance),
            signals.sentiment.score,
        )
        return signals

    def check_quota(self, user_id: str) -> QuotaDecision:
        return self.quota.increment(user_id)

    def build_messages(self, signals: ScheduleSignals) -> List[dict]:
        prefs = signals.preferences
        performance = [
            {"subject": entry.subject, "score": entry.score} for entry in weakest_first(signals.performance)
        ]
        rest_day = signals.week_start + timedelta(days=(prefs.preferred_rest_day_index - 1) % 7)
        return self.prompt.render(
            start_date=signals.week_start.isoformat(),
            end_date=(signals.week_start + timedelta(days=6)).isoformat(),
            mood_average=signals.average_mood,
            mood_trend=signals.mood_trend,
            performance_json=json.dumps(performance),
            sentiment_score=signals.sentiment.score,
            mood_label=signals.sentiment.mood_label,
            preferences_json=prefs.model_dump_json(),
            rest_day_name=f"{DAY_NAMES[rest_day.weekday()]} ({rest_day.isoformat()})",
            max_daily_minutes=int(prefs.max_daily_hours * 60),
        )

    def request_plan(self, signals: ScheduleSignals) -> str:
        if self.client is None:
            raise UpstreamUnavailable("No completion client configured")
        return self.client.complete(self.build_messages(signals), purpose="weekly_schedule")

    def validate(self, raw: str, signals: ScheduleSignals) -> WeeklySchedule:
        plan = parse_plan(raw, week_start=signals.week_start)
        schedule = schedule_from_plan(plan, signals, self.logger)
        validate_schedule_totals([day.model_dump() for day in schedule.days])
        return schedule

    def fallback(self, signals: ScheduleSignals, reason: FallbackReason) -> WeeklySchedule:
        self._enter(signals.user_id, GenerationState.FALLBACK, reason)
        return build_fallback_schedule(signals, reason)

    def _stored_preferences(self, user_id: str) -> UserPreferences:
        try:
            stored = self.data_source.get_preferences(user_id)
        except Exception:
            self.logger.warning("Preferences unavailable for %s, using defaults", user_id, exc_info=True)
            stored = None
        return stored or UserPreferences()

    def _enter(self, user_id: str, state: GenerationState, detail: str = "") -> None:
        if state is GenerationState.FALLBACK:
            self.logger.warning("Schedule for %s falls back (%s)", user_id, detail)
        else:
            self.logger.debug("Schedule for %s -> %s", user_id, state.value)
