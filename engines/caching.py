"""Cache of the live weekly schedule per user."""

import logging
from typing import Optional

from pydantic import ValidationError

from engines.errors import StoreUnavailable
from kv_store import KeyValueStore
from schemas import WeeklySchedule

DEFAULT_TTL_SECONDS = 24 * 60 * 60


class ScheduleCache:
    """JSON-serialized schedules in the key/value store, one per user.

    Store failures and undecodable entries read as a miss; a failed write is
    logged and otherwise ignored.
    """

    def __init__(
        self,
        store: KeyValueStore,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        logger: Optional[logging.Logger] = None,
    ):
        self._store = store
        self.ttl_seconds = ttl_seconds
        self.logger = logger or logging.getLogger(__name__)

    @staticmethod
    def key(user_id: str) -> str:
        return f"schedule:{user_id}"

    def get(self, user_id: str) -> Optional[WeeklySchedule]:
        try:
            raw = self._store.get(self.key(user_id))
        except StoreUnavailable as exc:
            self.logger.warning("Schedule cache unavailable for %s, treating as miss: %s", user_id, exc)
            return None
        if raw is None:
            return None
        try:
            return WeeklySchedule.model_validate_json(raw)
        except (ValidationError, ValueError) as exc:
            self.logger.warning("Discarding undecodable cached schedule for %s: %s", user_id, exc)
            self.invalidate(user_id)
            return None

    def store(self, schedule: WeeklySchedule) -> bool:
        try:
            self._store.set(self.key(schedule.user_id), schedule.model_dump_json(), self.ttl_seconds)
        except StoreUnavailable as exc:
            self.logger.warning("Could not cache schedule for %s: %s", schedule.user_id, exc)
            return False
        return True

    def invalidate(self, user_id: str) -> None:
        try:
            self._store.delete(self.key(user_id))
        except StoreUnavailable as exc:
            self.logger.warning("Could not invalidate cached schedule for %s: %s", user_id, exc)
