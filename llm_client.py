"""Chat-completion client for OpenAI-style endpoints.

One request per call, bounded timeout, no retries. Callers recover from the
raised :class:`UpstreamUnavailable` / :class:`InvalidUpstreamResponse` with
their own fallbacks.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional

import requests

from engines.errors import InvalidUpstreamResponse, UpstreamUnavailable
from env_validation import EngineSettings

Message = Dict[str, str]


class LLMClient:
    """Thin wrapper over ``requests`` posting ``{model, messages}`` payloads."""

    def __init__(
        self,
        url: str,
        model_id: str,
        *,
        api_key: Optional[str] = None,
        timeout: float = 30.0,
        temperature: Optional[float] = 0.2,
        session: Optional[Any] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.url = url
        self.model_id = model_id
        self.api_key = api_key
        self.timeout = timeout
        self.temperature = temperature
        self._session = session if session is not None else requests.Session()
        self._logger = logger or logging.getLogger(__name__)

    @classmethod
    def from_settings(cls, settings: EngineSettings, **kwargs: Any) -> "LLMClient":
        return cls(
            settings.llm_url,
            settings.model_id,
            api_key=settings.llm_api_key,
            timeout=settings.llm_timeout,
            temperature=settings.llm_temperature,
            **kwargs,
        )

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def complete(self, messages: List[Message], *, purpose: str = "completion") -> str:
        """Return ``choices[0].message.content`` for ``messages``.

        Raises UpstreamUnavailable on network errors, timeouts and non-2xx
        answers, InvalidUpstreamResponse when the envelope is not the
        expected chat-completion shape.
        """
        payload: Dict[str, Any] = {"model": self.model_id, "messages": messages}
        if self.temperature is not None:
            payload["temperature"] = self.temperature

        start = time.perf_counter()
        try:
            response = self._session.post(
                self.url,
                json=payload,
                headers=self._headers(),
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.Timeout as exc:
            self._log_failure(purpose, start, "timeout after %.1fs" % self.timeout)
            raise UpstreamUnavailable(f"LLM timeout after {self.timeout}s") from exc
        except requests.HTTPError as exc:
            status = getattr(exc.response, "status_code", "unknown")
            self._log_failure(purpose, start, f"HTTP {status}")
            raise UpstreamUnavailable(f"LLM-HTTP {status}") from exc
        except requests.RequestException as exc:
            self._log_failure(purpose, start, str(exc))
            raise UpstreamUnavailable(f"LLM error: {exc}") from exc

        latency_ms = int((time.perf_counter() - start) * 1000)
        try:
            data = response.json()
        except ValueError as exc:
            raise InvalidUpstreamResponse("LLM response body is not JSON") from exc

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise InvalidUpstreamResponse(f"Unexpected LLM response: {str(data)[:300]}") from exc
        if not isinstance(content, str) or not content.strip():
            raise InvalidUpstreamResponse("LLM response content is empty")

        usage = data.get("usage") if isinstance(data, dict) else None
        self._logger.info(
            "LLM %s answered in %d ms (model=%s, tokens_in=%s, tokens_out=%s)",
            purpose,
            latency_ms,
            self.model_id,
            usage.get("prompt_tokens") if isinstance(usage, dict) else None,
            usage.get("completion_tokens") if isinstance(usage, dict) else None,
        )
        return content

    def _log_failure(self, purpose: str, start: float, detail: str) -> None:
        latency_ms = int((time.perf_counter() - start) * 1000)
        self._logger.warning("LLM %s failed after %d ms: %s", purpose, latency_ms, detail)
