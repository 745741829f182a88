"""Client for an OpenAI-compatible chat-completions backend.

The engine sends a context document made of the previous pass's one-line
summaries followed by the current per-sensor feature blocks, each wrapped in
``<KIND>...</KIND>`` tags.  The reply is free-form text that should contain a
JSON object; when it does not, :func:`parse_llm_response` wraps the text as a
plain summary instead of failing.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Mapping

import aiohttp

from sensorpulse.config import LLMConfig
from sensorpulse.errors import BackendError

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are an expert in real-time IoT sensor analysis.

Analyse the sensor data and provide:
1. Pattern and anomaly detection
2. Current activity classification
3. Short-term predictions
4. Contextual recommendations
5. Multi-sensor correlations

Reply in JSON with the keys: patterns, activity, predictions, recommendations, correlations, confidence."""


# ---------------------------------------------------------------------------
# Context document
# ---------------------------------------------------------------------------


def inject_sensor_tokens(descriptions: Mapping[str, str]) -> str:
    """Wrap each sensor description in ``<KIND>`` / ``</KIND>`` markup."""
    blocks = []
    for sensor, description in descriptions.items():
        tag = sensor.upper()
        blocks.append(f"<{tag}>\n{description}\n</{tag}>\n")
    return "\n".join(blocks)


def build_context(descriptions: Mapping[str, str], previous: Mapping[str, str] | None = None) -> str:
    parts = []
    if previous:
        parts.append("=== Previous context ===")
        parts.extend(f"{sensor}: {summary}" for sensor, summary in previous.items())
        parts.append("")
    parts.append("=== Current data ===")
    parts.append(inject_sensor_tokens(descriptions))
    return "\n".join(parts)


def extract_summary(description: str) -> str:
    """First two lines of a description, joined, as the carried-over summary."""
    lines = description.split("\n")
    if len(lines) > 2:
        return " ".join(lines[:2])
    return description


def parse_llm_response(text: str) -> dict[str, Any]:
    """Pull the first JSON object out of *text*.

    Models often wrap JSON in prose or code fences, so every ``{`` is tried
    as a starting point.  Without a decodable object the text is returned as
    ``{"summary": text, "fallback": True, ...}``.
    """
    decoder = json.JSONDecoder()
    start = text.find("{")
    while start != -1:
        try:
            obj, _ = decoder.raw_decode(text, start)
        except json.JSONDecodeError:
            start = text.find("{", start + 1)
            continue
        if isinstance(obj, dict):
            obj.setdefault("fallback", False)
            return obj
        start = text.find("{", start + 1)

    return {
        "summary": text.strip(),
        "fallback": True,
        "activity": None,
        "patterns": [],
        "recommendations": [],
        "confidence": 0.0,
    }


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class LLMClient:
    """Async chat-completions client with a lazily created session.

    Every failure (network, HTTP status, timeout, unexpected payload) is
    raised as :class:`BackendError`.
    """

    def __init__(self, config: LLMConfig, session: aiohttp.ClientSession | None = None) -> None:
        self.config = config
        self._session = session
        self._owns_session = session is None
        self._last_summaries: dict[str, str] = {}

    @property
    def last_summaries(self) -> dict[str, str]:
        return dict(self._last_summaries)

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        return headers

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(headers=self._headers())
            self._owns_session = True
        return self._session

    def _payload(self, context: str) -> dict[str, Any]:
        return {
            "model": self.config.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": context},
            ],
            "temperature": self.config.temperature,
            "top_p": self.config.top_p,
            "max_tokens": self.config.max_tokens,
        }

    async def complete(self, context: str) -> str:
        """POST one chat completion and return the assistant message text."""
        session = self._get_session()
        timeout = aiohttp.ClientTimeout(total=self.config.timeout)
        try:
            async with session.post(self.config.url, json=self._payload(context), timeout=timeout) as resp:
                if resp.status != 200:
                    body = await resp.text()
                    raise BackendError("llm", f"HTTP {resp.status}: {body[:200]}")
                data = await resp.json()
        except aiohttp.ClientError as e:
            raise BackendError("llm", f"request failed: {e}") from e
        except asyncio.TimeoutError as e:
            raise BackendError("llm", f"timed out after {self.config.timeout}s") from e
        except ValueError as e:
            raise BackendError("llm", f"response body is not JSON: {e}") from e

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise BackendError("llm", f"unexpected response shape: {e}") from e
        if not isinstance(content, str):
            raise BackendError("llm", f"unexpected message content: {content!r}")
        return content

    async def enrich(self, descriptions: Mapping[str, str]) -> dict[str, Any]:
        """Analyse the current feature blocks in the context of the last call.

        Summaries are carried over only after a successful call.
        """
        context = build_context(descriptions, self._last_summaries)
        text = await self.complete(context)
        for sensor, description in descriptions.items():
            self._last_summaries[sensor] = extract_summary(description)
        result = parse_llm_response(text)
        logger.debug("LLM enrichment parsed (fallback=%s)", result.get("fallback"))
        return result

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None
