"""Failure taxonomy of the study-plan engine.

Only :class:`QuotaExceeded` and :class:`InvalidUserId` reach callers; every
other condition is recovered inside the engine.
"""


class StudyPlanError(Exception):
    """Base class for engine errors."""


class QuotaExceeded(StudyPlanError):
    """The per-user request budget for the current window is used up."""

    def __init__(self, user_id: str, limit: int, retry_after: int = 0):
        super().__init__(f"Request quota of {limit} exceeded for user {user_id}")
        self.user_id = user_id
        self.limit = limit
        self.retry_after = retry_after


class UpstreamUnavailable(StudyPlanError):
    """The completion service could not be reached, timed out, or answered non-2xx."""


class InvalidUpstreamResponse(StudyPlanError):
    """The completion service answered, but not with the expected payload."""


class StoreUnavailable(StudyPlanError):
    """The counter/cache store failed."""


class InvalidUserId(StudyPlanError, ValueError):
    """A user id is empty or not of the accepted form."""
