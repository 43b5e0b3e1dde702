# app.py - Study-plan engine HTTP surface
# - Weekly schedule (cached, quota-gated LLM generation with deterministic fallback)
# - Activity analytics per timeframe and category
# - User id taken from the X-User-Id header set by the auth layer in front

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Literal, Optional

from fastapi import FastAPI, Header, HTTPException, Query
from fastapi.responses import JSONResponse

import db
from engines import aggregation
from engines.caching import ScheduleCache
from engines.errors import InvalidUserId, StoreUnavailable
from engines.quota import QuotaGate
from engines.schedule import GenerationOutcome, ScheduleGenerator
from engines.validation import validate_user_id
from env_validation import EngineSettings, load_settings
from kv_store import KeyValueStore, build_store
from llm_client import LLMClient
from schemas import (
    AnalyticsSnapshot,
    CategorySummary,
    UserPreferences,
    WeeklySchedule,
)

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: EngineSettings
    store: KeyValueStore
    quota: QuotaGate
    cache: ScheduleCache
    generator: ScheduleGenerator


_SERVICES: Optional[Services] = None


def build_services(settings: Optional[EngineSettings] = None) -> Services:
    settings = settings or load_settings()
    db.configure(settings.db_path)
    store = build_store(settings.store_backend, redis_url=settings.redis_url)
    quota = QuotaGate(
        store,
        limit=settings.quota_limit,
        window_seconds=settings.quota_window_seconds,
    )
    cache = ScheduleCache(store, ttl_seconds=settings.schedule_ttl_seconds)
    client = None if settings.offline_mode else LLMClient.from_settings(settings)
    generator = ScheduleGenerator(
        db,
        quota,
        cache,
        client,
        journal_limit=settings.journal_sample_size,
        offline=settings.offline_mode,
    )
    return Services(settings=settings, store=store, quota=quota, cache=cache, generator=generator)


def get_services() -> Services:
    global _SERVICES
    if _SERVICES is None:
        _SERVICES = build_services()
    return _SERVICES


def set_services(services: Optional[Services]) -> None:
    """Swap the service graph (``None`` rebuilds it from the environment on next use)."""
    global _SERVICES
    _SERVICES = services


@asynccontextmanager
async def _lifespan(_: FastAPI):
    try:
        # Validate environment variables first
        from env_validation import validate_environment
        validate_environment()

        settings = load_settings()
        logging.basicConfig(level=getattr(logging, settings.log_level, logging.INFO))
        services = get_services()
        db.init()
        logger.info(
            "Study-plan engine ready | store=%s model=%s offline=%s quota=%d/%ds",
            settings.store_backend,
            settings.model_id,
            settings.offline_mode,
            services.quota.limit,
            services.quota.window_seconds,
        )
        yield
    except Exception as e:
        logger.error("Failed to initialize application: %s", str(e), exc_info=True)
        raise


app = FastAPI(title="Study Plan Engine", version="1.0.0", lifespan=_lifespan)


def _require_user(x_user_id: Optional[str]) -> str:
    if x_user_id is None:
        raise HTTPException(status_code=401, detail="missing X-User-Id header")
    try:
        return validate_user_id(x_user_id)
    except InvalidUserId as exc:
        raise HTTPException(status_code=400, detail=str(exc))


def _schedule_response(outcome: GenerationOutcome, services: Services):
    # Only the call the quota refused gets 429; later cache hits are plain 200s.
    if not outcome.quota_refused:
        return outcome.schedule
    retry_after = outcome.quota.retry_after or services.quota.window_seconds
    return JSONResponse(
        status_code=429,
        content=outcome.schedule.model_dump(mode="json"),
        headers={"Retry-After": str(max(1, retry_after))},
    )


@app.get("/health")
def health():
    services = get_services()
    try:
        store_ok = services.store.ping()
    except StoreUnavailable:
        store_ok = False
    return {
        "status": "ok" if store_ok else "degraded",
        "store": services.settings.store_backend,
        "store_ok": store_ok,
        "offline": services.settings.offline_mode,
    }


@app.get("/schedule/weekly", response_model=WeeklySchedule)
def weekly_schedule(x_user_id: Optional[str] = Header(default=None)):
    user_id = _require_user(x_user_id)
    services = get_services()
    outcome = services.generator.serve(user_id)
    return _schedule_response(outcome, services)


@app.post("/schedule/refresh", response_model=WeeklySchedule)
def refresh_schedule(
    preferences: Optional[UserPreferences] = None,
    x_user_id: Optional[str] = Header(default=None),
):
    user_id = _require_user(x_user_id)
    services = get_services()
    outcome = services.generator.serve(user_id, preferences, force=True)
    return _schedule_response(outcome, services)


@app.put("/schedule/preferences", response_model=UserPreferences)
def update_preferences(
    preferences: UserPreferences,
    x_user_id: Optional[str] = Header(default=None),
):
    user_id = _require_user(x_user_id)
    db.save_preferences(user_id, preferences)
    # The live plan was built for the old preferences.
    get_services().cache.invalidate(user_id)
    return preferences


@app.get("/quota")
def quota_status(x_user_id: Optional[str] = Header(default=None)):
    user_id = _require_user(x_user_id)
    quota = get_services().quota
    return {
        "limit": quota.limit,
        "remaining": quota.remaining(user_id),
        "reset_in": quota.reset_in(user_id),
        "window_seconds": quota.window_seconds,
    }


@app.get("/analytics", response_model=AnalyticsSnapshot)
def analytics(
    timeframe: Literal["1month", "6months", "1year"] = Query(default="1month"),
    x_user_id: Optional[str] = Header(default=None),
):
    user_id = _require_user(x_user_id)
    since = aggregation.timeframe_start(timeframe)
    records = db.list_activities(user_id, since)
    return aggregation.aggregate(records, timeframe, since=since)


@app.get("/analytics/categories/{category}", response_model=CategorySummary)
def category_summary(
    category: str,
    timeframe: Literal["1month", "6months", "1year"] = Query(default="1month"),
    x_user_id: Optional[str] = Header(default=None),
):
    user_id = _require_user(x_user_id)
    name = category.strip()
    if not name:
        raise HTTPException(status_code=400, detail="category must not be blank")
    since = aggregation.timeframe_start(timeframe)
    records = db.list_activities(user_id, since)
    return aggregation.summarize_category(records, name)
