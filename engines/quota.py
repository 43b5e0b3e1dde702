"""Per-user fixed-window request quota."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from engines.errors import QuotaExceeded, StoreUnavailable
from kv_store import KEY_MISSING, KeyValueStore

DEFAULT_LIMIT = 100
DEFAULT_WINDOW_SECONDS = 3600


@dataclass(frozen=True)
class QuotaDecision:
    allowed: bool
    count: int
    limit: int
    remaining: int
    retry_after: int = 0


class QuotaGate:
    """Fixed-window counter per user.

    The increment that creates ``ratelimit:<user>`` also sets its expiry, in a
    single store command. Requests over the limit are refused but still
    counted; nothing is refunded when a downstream call fails.
    """

    def __init__(
        self,
        store: KeyValueStore,
        *,
        limit: int = DEFAULT_LIMIT,
        window_seconds: int = DEFAULT_WINDOW_SECONDS,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        if limit < 0:
            raise ValueError("limit must be non-negative")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.store = store
        self.limit = limit
        self.window_seconds = window_seconds
        self.logger = logger or logging.getLogger(__name__)

    @staticmethod
    def key(user_id: str) -> str:
        return f"ratelimit:{user_id}"

    def increment(self, user_id: str) -> QuotaDecision:
        try:
            count = self.store.incr(self.key(user_id), self.window_seconds)
        except StoreUnavailable as exc:
            # Counter down: let the request through rather than fail it.
            self.logger.warning("Quota store unavailable for %s, allowing request: %s", user_id, exc)
            return QuotaDecision(allowed=True, count=0, limit=self.limit, remaining=self.limit)

        allowed = count <= self.limit
        remaining = max(0, self.limit - count)
        retry_after = 0
        if not allowed:
            retry_after = self.reset_in(user_id)
            self.logger.info("Quota exceeded for %s (%d/%d)", user_id, count, self.limit)
        return QuotaDecision(
            allowed=allowed,
            count=count,
            limit=self.limit,
            remaining=remaining,
            retry_after=retry_after,
        )

    def enforce(self, user_id: str) -> QuotaDecision:
        """Like :meth:`increment`, raising :class:`QuotaExceeded` on refusal."""
        decision = self.increment(user_id)
        if not decision.allowed:
            raise QuotaExceeded(user_id, self.limit, retry_after=decision.retry_after)
        return decision

    def remaining(self, user_id: str) -> int:
        try:
            raw = self.store.get(self.key(user_id))
        except StoreUnavailable as exc:
            self.logger.warning("Quota store unavailable for %s: %s", user_id, exc)
            return self.limit
        if raw is None:
            return self.limit
        try:
            return max(0, self.limit - int(raw))
        except ValueError:
            self.logger.warning("Corrupt quota counter for %s: %r", user_id, raw)
            return self.limit

    def reset_in(self, user_id: str) -> int:
        """Seconds until the current window closes (0 when no window is open)."""
        try:
            ttl = self.store.ttl(self.key(user_id))
        except StoreUnavailable as exc:
            self.logger.warning("Quota store unavailable for %s: %s", user_id, exc)
            return 0
        if ttl == KEY_MISSING:
            return 0
        if ttl < 0:
            # Counter without expiry: repair it so the window can close.
            try:
                self.store.expire(self.key(user_id), self.window_seconds)
            except StoreUnavailable:
                return 0
            return self.window_seconds
        return ttl
