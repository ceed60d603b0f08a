"""Tests for the Anthropic adapter and the upstream invoker."""

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from cupido_proxy.providers.anthropic import AnthropicAdapter
from cupido_proxy.providers.base import UpstreamInvoker
from cupido_proxy.types import (
    FALLBACK_REPLY,
    ModelDef,
    ModelType,
    UnknownModel,
    UpstreamConfig,
    UpstreamError,
    UpstreamTimeout,
    UpstreamUnavailable,
)

from conftest import anthropic_response, mock_http_response


@pytest.fixture
def adapter():
    return AnthropicAdapter(UpstreamConfig(api_key="sk-test"))


@pytest.fixture
def models():
    return {
        ModelType.HAIKU: ModelDef(model_id="claude-sonnet-4-5-20250929", max_tokens=120),
        ModelType.SONNET: ModelDef(model_id="claude-sonnet-4-5-20250929", max_tokens=150),
    }


def _invoker(adapter, models, client):
    return UpstreamInvoker(adapter, client, "https://api.anthropic.com/v1/messages", models)


# ---------------------------------------------------------------------------
# AnthropicAdapter
# ---------------------------------------------------------------------------


class TestAnthropicHeaders:
    def test_headers(self, adapter):
        headers = adapter.get_headers()
        assert headers["x-api-key"] == "sk-test"
        assert headers["anthropic-version"] == "2023-06-01"
        assert headers["anthropic-beta"] == "prompt-caching-2024-07-31"
        assert headers["content-type"] == "application/json"

    def test_beta_header_omitted_when_blank(self):
        adapter = AnthropicAdapter(UpstreamConfig(api_key="k", anthropic_beta=""))
        assert "anthropic-beta" not in adapter.get_headers()


class TestAnthropicRequestBody:
    def test_body(self, adapter, models):
        system = [{"type": "text", "text": "sys", "cache_control": {"type": "ephemeral"}}]
        messages = [{"role": "user", "content": [{"type": "text", "text": "hi"}]}]
        body = adapter.build_request_body(
            model=models[ModelType.SONNET], system_blocks=system, messages=messages,
        )
        assert body == {
            "model": "claude-sonnet-4-5-20250929",
            "max_tokens": 150,
            "temperature": 0.7,
            "system": system,
            "messages": messages,
        }

    def test_no_system_field_when_empty(self, adapter, models):
        body = adapter.build_request_body(
            model=models[ModelType.HAIKU], system_blocks=[], messages=[],
        )
        assert "system" not in body
        assert body["max_tokens"] == 120


class TestExtractText:
    def test_single_text_block(self, adapter):
        reply = adapter.extract_text(anthropic_response("Hello there"))
        assert reply.text == "Hello there"
        assert not reply.fallback
        assert reply.stop_reason == "end_turn"

    def test_joins_text_blocks_and_skips_others(self, adapter):
        raw = {"content": [
            {"type": "thinking", "thinking": "hmm"},
            {"type": "text", "text": " First."},
            {"type": "tool_use", "id": "t1", "name": "x", "input": {}},
            {"type": "text", "text": "Second. "},
        ]}
        assert adapter.extract_text(raw).text == "First. Second."

    @pytest.mark.parametrize("raw", [
        {"content": None},
        {"content": []},
        {"content": "plain string"},
        {"content": [{"type": "image", "source": {}}]},
        {"content": [{"type": "text", "text": "   "}]},
        {"content": [{"type": "text"}]},
        {},
        None,
        "not json",
        [1, 2, 3],
    ])
    def test_fallback_never_raises(self, adapter, raw):
        reply = adapter.extract_text(raw)
        assert reply.text == FALLBACK_REPLY
        assert reply.fallback

    def test_extract_usage(self, adapter):
        usage = adapter.extract_usage(anthropic_response())
        assert usage["cache_read_input_tokens"] == 1200

    def test_extract_usage_missing(self, adapter):
        assert adapter.extract_usage({"content": []}) == {}
        assert adapter.extract_usage(None) == {}
        assert adapter.extract_usage({"usage": "bad"}) == {}


# ---------------------------------------------------------------------------
# UpstreamInvoker
# ---------------------------------------------------------------------------


class TestUpstreamInvoker:
    @pytest.mark.asyncio
    async def test_posts_payload(self, adapter, models):
        client = MagicMock()
        client.post = AsyncMock(return_value=mock_http_response(200, anthropic_response()))
        invoker = _invoker(adapter, models, client)

        raw = await invoker.invoke([], [{"role": "user", "content": []}], ModelType.HAIKU)

        assert raw["content"][0]["text"]
        client.post.assert_awaited_once()
        call = client.post.call_args
        assert call.args[0] == "https://api.anthropic.com/v1/messages"
        assert call.kwargs["headers"]["x-api-key"] == "sk-test"
        assert call.kwargs["json"]["max_tokens"] == 120

    @pytest.mark.asyncio
    async def test_non_2xx_raises_upstream_error(self, adapter, models):
        client = MagicMock()
        client.post = AsyncMock(return_value=mock_http_response(
            529, {"type": "error"}, text='{"type":"error","error":{"type":"overloaded_error"}}',
        ))
        invoker = _invoker(adapter, models, client)

        with pytest.raises(UpstreamError) as exc:
            await invoker.invoke([], [], ModelType.SONNET)
        assert exc.value.status_code == 529
        assert "overloaded_error" in exc.value.body

    @pytest.mark.asyncio
    async def test_no_retry_on_failure(self, adapter, models):
        client = MagicMock()
        client.post = AsyncMock(return_value=mock_http_response(500, {}, text="boom"))
        invoker = _invoker(adapter, models, client)

        with pytest.raises(UpstreamError):
            await invoker.invoke([], [], ModelType.HAIKU)
        assert client.post.await_count == 1

    @pytest.mark.asyncio
    async def test_timeout(self, adapter, models):
        client = MagicMock()
        client.post = AsyncMock(side_effect=httpx.ReadTimeout("slow"))
        invoker = _invoker(adapter, models, client)

        with pytest.raises(UpstreamTimeout):
            await invoker.invoke([], [], ModelType.HAIKU)

    @pytest.mark.asyncio
    async def test_connect_error(self, adapter, models):
        client = MagicMock()
        client.post = AsyncMock(side_effect=httpx.ConnectError("refused"))
        invoker = _invoker(adapter, models, client)

        with pytest.raises(UpstreamUnavailable) as exc:
            await invoker.invoke([], [], ModelType.HAIKU)
        assert not isinstance(exc.value, UpstreamTimeout)

    @pytest.mark.asyncio
    async def test_non_json_success_returns_none(self, adapter, models):
        client = MagicMock()
        client.post = AsyncMock(return_value=mock_http_response(200, None, text="<html>"))
        invoker = _invoker(adapter, models, client)

        assert await invoker.invoke([], [], ModelType.HAIKU) is None

    def test_unmapped_model_fails_loudly(self, adapter, models):
        del models[ModelType.SONNET]
        invoker = _invoker(adapter, models, MagicMock())
        with pytest.raises(UnknownModel):
            invoker.resolve_model(ModelType.SONNET)
