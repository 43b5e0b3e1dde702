"""Environment variable validation and engine settings."""

import os
import logging
from dataclasses import dataclass
from typing import Dict, Optional

logger = logging.getLogger(__name__)

_STORE_BACKENDS = {"redis", "memory"}


class EnvironmentError(Exception):
    """Raised when required environment variables are missing or invalid."""
    pass


def validate_environment() -> None:
    """Validate critical environment variables.

    Raises EnvironmentError if validation fails.
    """
    # Nothing is strictly required: without an LLM endpoint every schedule
    # comes from the deterministic fallback.
    required_vars: Dict[str, str] = {}

    defaults = {
        "DB_PATH": os.getenv("DB_PATH") or "data.db",
    }

    for var, value in defaults.items():
        if not os.getenv(var):
            os.environ[var] = value
            logger.info("Environment variable %s not set; using default '%s'", var, value)

    optional_vars = {
        "LLM_URL": "Chat completion endpoint used for schedules and sentiment",
        "LLM_API_KEY": "Bearer token for the completion endpoint",
        "MODEL_ID": "Model requested from the completion endpoint",
        "REDIS_URL": "Redis server holding quota counters and cached schedules",
    }

    missing = []
    for var, description in required_vars.items():
        if not os.getenv(var):
            missing.append(f"{var} ({description})")

    if missing:
        raise EnvironmentError(
            f"Missing required environment variables: {', '.join(missing)}"
        )

    url = os.getenv("LLM_URL")
    if url and not (url.startswith("http://") or url.startswith("https://")):
        raise EnvironmentError(f"Invalid URL format for LLM_URL: {url}")

    redis_url = os.getenv("REDIS_URL")
    if redis_url and not redis_url.startswith(("redis://", "rediss://", "unix://")):
        raise EnvironmentError(f"Invalid URL format for REDIS_URL: {redis_url}")

    backend = (os.getenv("STORE_BACKEND") or "redis").lower()
    if backend not in _STORE_BACKENDS:
        raise EnvironmentError(
            f"Invalid STORE_BACKEND '{backend}'. Must be one of: {', '.join(sorted(_STORE_BACKENDS))}"
        )

    for var, description in optional_vars.items():
        if not os.getenv(var):
            logger.warning(f"Optional environment variable not set: {var} ({description})")


def get_env_bool(name: str, default: bool = False) -> bool:
    """Get boolean value from environment variable."""
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in {"1", "true", "yes", "on", "enabled"}


def safe_int(env_name: str, default: int) -> int:
    raw = os.getenv(env_name, "")
    try:
        return int(raw) if raw else default
    except Exception:
        return default


def safe_float(env_name: str, default: float) -> float:
    raw = os.getenv(env_name, "")
    try:
        return float(raw) if raw else default
    except Exception:
        return default


@dataclass(frozen=True)
class EngineSettings:
    db_path: str = "data.db"
    llm_url: str = "https://api.openai.com/v1/chat/completions"
    llm_api_key: Optional[str] = None
    model_id: str = "gpt-4"
    llm_timeout: float = 30.0
    llm_temperature: float = 0.2
    quota_limit: int = 100
    quota_window_seconds: int = 3600
    schedule_ttl_seconds: int = 24 * 60 * 60
    journal_sample_size: int = 10
    store_backend: str = "redis"
    redis_url: str = "redis://localhost:6379"
    offline_mode: bool = False
    log_level: str = "INFO"


def load_settings() -> EngineSettings:
    """Read :class:`EngineSettings` from the process environment."""

    base = EngineSettings()
    return EngineSettings(
        db_path=os.getenv("DB_PATH") or base.db_path,
        llm_url=os.getenv("LLM_URL") or base.llm_url,
        llm_api_key=os.getenv("LLM_API_KEY") or None,
        model_id=os.getenv("MODEL_ID") or base.model_id,
        llm_timeout=max(1.0, safe_float("LLM_TIMEOUT", base.llm_timeout)),
        llm_temperature=safe_float("LLM_TEMPERATURE", base.llm_temperature),
        quota_limit=max(0, safe_int("QUOTA_LIMIT", base.quota_limit)),
        quota_window_seconds=max(1, safe_int("QUOTA_WINDOW_SECONDS", base.quota_window_seconds)),
        schedule_ttl_seconds=max(1, safe_int("SCHEDULE_TTL_SECONDS", base.schedule_ttl_seconds)),
        journal_sample_size=max(1, safe_int("JOURNAL_SAMPLE_SIZE", base.journal_sample_size)),
        store_backend=(os.getenv("STORE_BACKEND") or base.store_backend).lower(),
        redis_url=os.getenv("REDIS_URL") or base.redis_url,
        offline_mode=get_env_bool("OFFLINE_MODE", base.offline_mode),
        log_level=(os.getenv("LOG_LEVEL") or base.log_level).upper(),
    )
