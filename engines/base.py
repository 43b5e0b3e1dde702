"""Collaborator interfaces the engines are constructed with."""

from datetime import datetime
from typing import Dict, List, Optional, Protocol

from schemas import ActivityRecord, JournalEntry, MoodSample, UserPreferences


class StudyDataSource(Protocol):
    """Read surface of the persistence layer (``db`` satisfies it)."""

    def list_activities(self, user_id: str, since: Optional[datetime] = None) -> List[ActivityRecord]: ...

    def list_mood_samples(self, user_id: str) -> List[MoodSample]: ...

    def list_journal_entries(self, user_id: str, limit: int = 10) -> List[JournalEntry]: ...

    def get_preferences(self, user_id: str) -> Optional[UserPreferences]: ...


class CompletionClient(Protocol):
    """Text-in/text-out completion service (``llm_client.LLMClient`` satisfies it)."""

    def complete(self, messages: List[Dict[str, str]], *, purpose: str = "completion") -> str: ...
