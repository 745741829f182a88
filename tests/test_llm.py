"""Tests for sensorpulse.llm -- context building, parsing, and the HTTP client."""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from sensorpulse.config import LLMConfig
from sensorpulse.errors import BackendError
from sensorpulse.llm import (
    LLMClient,
    build_context,
    extract_summary,
    inject_sensor_tokens,
    parse_llm_response,
)


def _mock_session(status=200, payload=None, body="", enter_error=None):
    """Session whose post() returns an async context manager yielding a response."""
    resp = MagicMock()
    resp.status = status
    resp.json = AsyncMock(return_value=payload)
    resp.text = AsyncMock(return_value=body)

    ctx = MagicMock()
    if enter_error is not None:
        ctx.__aenter__ = AsyncMock(side_effect=enter_error)
    else:
        ctx.__aenter__ = AsyncMock(return_value=resp)
    ctx.__aexit__ = AsyncMock(return_value=False)

    session = MagicMock()
    session.closed = False
    session.post = MagicMock(return_value=ctx)
    session.close = AsyncMock()
    return session


def _completion(content: str | None) -> dict:
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


class TestContext:
    def test_sensor_tokens(self):
        text = inject_sensor_tokens({"accelerometer": "Mean: 1.0"})
        assert text == "<ACCELEROMETER>\nMean: 1.0\n</ACCELEROMETER>\n"

    def test_first_call_has_no_previous_section(self):
        context = build_context({"light": "Mean: 5"})
        assert "Previous context" not in context
        assert context.startswith("=== Current data ===")

    def test_previous_summaries_come_first(self):
        context = build_context({"light": "Mean: 5"}, {"light": "Mean: 4 Std: 1"})
        assert context.index("=== Previous context ===") < context.index("=== Current data ===")
        assert "light: Mean: 4 Std: 1" in context

    def test_extract_summary(self):
        assert extract_summary("a\nb\nc") == "a b"
        assert extract_summary("a\nb") == "a\nb"


class TestParseResponse:
    def test_plain_json(self):
        result = parse_llm_response('{"activity": "walking", "confidence": 0.8}')
        assert result["activity"] == "walking"
        assert result["fallback"] is False

    def test_json_in_code_fence(self):
        text = 'Here you go:\n```json\n{"patterns": ["steady"]}\n```'
        assert parse_llm_response(text)["patterns"] == ["steady"]

    def test_skips_undecodable_braces(self):
        text = 'Set {x} first, then {"activity": "rest"}'
        assert parse_llm_response(text)["activity"] == "rest"

    def test_fallback(self):
        result = parse_llm_response("  The user is probably sitting.  ")
        assert result["fallback"] is True
        assert result["summary"] == "The user is probably sitting."
        assert result["patterns"] == []
        assert result["confidence"] == 0.0


class TestClient:
    @pytest.mark.asyncio
    async def test_complete_posts_chat_payload(self):
        session = _mock_session(payload=_completion("hello"))
        config = LLMConfig(base_url="http://llm.local/", model="m1")
        client = LLMClient(config, session=session)

        assert await client.complete("ctx") == "hello"
        url = session.post.call_args[0][0]
        body = session.post.call_args.kwargs["json"]
        assert url == "http://llm.local/v1/chat/completions"
        assert body["model"] == "m1"
        assert body["messages"][0]["role"] == "system"
        assert body["messages"][1] == {"role": "user", "content": "ctx"}

    @pytest.mark.asyncio
    async def test_http_error_status(self):
        client = LLMClient(LLMConfig(), session=_mock_session(status=500, body="boom"))
        with pytest.raises(BackendError, match="HTTP 500"):
            await client.complete("ctx")

    @pytest.mark.asyncio
    async def test_connection_error(self):
        session = _mock_session()
        session.post = MagicMock(side_effect=aiohttp.ClientConnectionError("refused"))
        client = LLMClient(LLMConfig(), session=session)
        with pytest.raises(BackendError, match="request failed"):
            await client.complete("ctx")

    @pytest.mark.asyncio
    async def test_timeout(self):
        session = _mock_session(enter_error=asyncio.TimeoutError())
        client = LLMClient(LLMConfig(timeout=1.0), session=session)
        with pytest.raises(BackendError, match="timed out"):
            await client.complete("ctx")

    @pytest.mark.asyncio
    async def test_unexpected_shape(self):
        client = LLMClient(LLMConfig(), session=_mock_session(payload={"error": "nope"}))
        with pytest.raises(BackendError, match="unexpected response shape"):
            await client.complete("ctx")

    @pytest.mark.asyncio
    async def test_body_that_is_not_json(self):
        session = _mock_session()
        session.post.return_value.__aenter__.return_value.json = AsyncMock(
            side_effect=json.JSONDecodeError("Expecting value", "<html>", 0)
        )
        client = LLMClient(LLMConfig(), session=session)
        with pytest.raises(BackendError, match="not JSON"):
            await client.complete("ctx")

    @pytest.mark.asyncio
    async def test_null_message_content(self):
        client = LLMClient(LLMConfig(), session=_mock_session(payload=_completion(None)))
        with pytest.raises(BackendError, match="unexpected message content"):
            await client.complete("ctx")

    @pytest.mark.asyncio
    async def test_enrich_carries_summaries_forward(self):
        session = _mock_session(payload=_completion('{"activity": "walking"}'))
        client = LLMClient(LLMConfig(), session=session)

        result = await client.enrich({"accelerometer": "Mean: 4\nStd: 1\nMin: 0"})
        assert result["activity"] == "walking"
        assert client.last_summaries == {"accelerometer": "Mean: 4 Std: 1"}

        await client.enrich({"accelerometer": "Mean: 5"})
        second_context = session.post.call_args.kwargs["json"]["messages"][1]["content"]
        assert "accelerometer: Mean: 4 Std: 1" in second_context

    @pytest.mark.asyncio
    async def test_failed_enrich_keeps_old_summaries(self):
        client = LLMClient(LLMConfig(), session=_mock_session(status=503))
        with pytest.raises(BackendError):
            await client.enrich({"light": "Mean: 5"})
        assert client.last_summaries == {}

    @pytest.mark.asyncio
    async def test_borrowed_session_is_not_closed(self):
        session = _mock_session()
        client = LLMClient(LLMConfig(), session=session)
        await client.close()
        session.close.assert_not_awaited()

    def test_auth_header(self):
        client = LLMClient(LLMConfig(api_key="secret"))
        assert client._headers()["Authorization"] == "Bearer secret"
        assert "Authorization" not in LLMClient(LLMConfig())._headers()
