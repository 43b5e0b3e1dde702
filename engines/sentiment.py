"""Journal sentiment via the completion service, with a neutral fallback."""

from __future__ import annotations

import logging
from typing import Optional, Sequence

from pydantic import ValidationError

from engines.base import CompletionClient
from engines.errors import InvalidUpstreamResponse, UpstreamUnavailable
from prompts import PromptTemplate, get_prompt
from schemas import SentimentPayload, SentimentResult, parse_json_safe

NEUTRAL = SentimentResult(score=0.0, mood_label="neutral")


def _journal_text(entries: Sequence[str]) -> str:
    return "\n".join(text.strip() for text in entries if text and text.strip())


class SentimentAnalyzer:
    """Reduce journal text to ``{score, mood_label}``.

    Sentiment only enriches the schedule prompt, so :meth:`analyze` never
    raises: every failure is logged and answered with :data:`NEUTRAL`.
    """

    def __init__(
        self,
        client: Optional[CompletionClient],
        *,
        prompt: Optional[PromptTemplate] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.client = client
        self.prompt = prompt or get_prompt("journal_sentiment")
        self.logger = logger or logging.getLogger(__name__)

    def analyze(self, entries: Sequence[str]) -> SentimentResult:
        if self.client is None:
            return NEUTRAL

        # An empty journal is still sent as one request.
        messages = self.prompt.render(entries=_journal_text(entries))
        try:
            content = self.client.complete(messages, purpose="journal_sentiment")
        except (UpstreamUnavailable, InvalidUpstreamResponse) as exc:
            self.logger.warning("Sentiment request failed, using neutral sentiment: %s", exc)
            return NEUTRAL
        except Exception:
            self.logger.exception("Unexpected sentiment client failure, using neutral sentiment")
            return NEUTRAL

        try:
            payload = parse_json_safe(content, SentimentPayload)
        except (ValidationError, ValueError, TypeError) as exc:
            self.logger.warning("Sentiment payload rejected, using neutral sentiment: %s", exc)
            return NEUTRAL

        return SentimentResult(score=payload.sentiment, mood_label=payload.mood.strip())
