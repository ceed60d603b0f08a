"""Tests for the ChatRelay pipeline with a mocked upstream invoker."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from cupido_proxy.core.cost_tracker import UsageAccountant
from cupido_proxy.core.relay import ChatRelay
from cupido_proxy.providers.anthropic import AnthropicAdapter
from cupido_proxy.types import (
    FALLBACK_REPLY,
    InvalidRequest,
    ModelType,
    UpstreamError,
)

from conftest import anthropic_response, make_raw_messages


@pytest.fixture
def relay(sample_config):
    adapter = AnthropicAdapter(sample_config.upstream)
    invoker = MagicMock()
    invoker.invoke = AsyncMock(return_value=anthropic_response())
    accountant = UsageAccountant(sample_config.pricing)
    return ChatRelay(sample_config, adapter, invoker, accountant, metrics=MagicMock())


def _invoke_args(relay):
    system_blocks, messages, model_type = relay.invoker.invoke.call_args.args
    return system_blocks, messages, model_type


class TestChatRelay:
    @pytest.mark.asyncio
    async def test_short_conversation(self, relay):
        result = await relay.handle({
            "messages": make_raw_messages(2, system="You are Cupido."),
            "modelType": "haiku",
        })

        system_blocks, messages, model_type = _invoke_args(relay)
        assert model_type is ModelType.HAIKU
        assert system_blocks[0]["cache_control"] == {"type": "ephemeral"}
        assert len(messages) == 2
        assert all("cache_control" not in b for m in messages for b in m["content"])
        assert result.plan.cache_boundary_index == -1
        assert result.reply.text == "Hey! Tell me more about that."
        assert result.usage.cache_read_tokens == 1200

    @pytest.mark.asyncio
    async def test_long_conversation_boundary(self, relay):
        result = await relay.handle({"messages": make_raw_messages(120), "modelType": "sonnet"})

        _, messages, model_type = _invoke_args(relay)
        assert model_type is ModelType.SONNET
        marked = [
            i for i, m in enumerate(messages)
            if any("cache_control" in b for b in m["content"])
        ]
        assert marked == [89]
        assert result.plan.fresh_window_size == 30

    @pytest.mark.asyncio
    async def test_invalid_request_skips_upstream(self, relay):
        with pytest.raises(InvalidRequest):
            await relay.handle({"modelType": "haiku"})
        relay.invoker.invoke.assert_not_called()
        assert relay.accountant.get_summary().total_requests == 0

    @pytest.mark.asyncio
    async def test_upstream_error_propagates_and_is_counted(self, relay):
        relay.invoker.invoke.side_effect = UpstreamError("boom", status_code=500, body="x")
        with pytest.raises(UpstreamError):
            await relay.handle({"messages": make_raw_messages(1)})
        assert relay.accountant.get_summary().total_failures == 1
        event = relay.metrics.record.call_args[0][0]
        assert event["type"] == "upstream_error"
        assert event["status_code"] == 500

    @pytest.mark.asyncio
    async def test_unparseable_response_is_degraded_success(self, relay):
        relay.invoker.invoke.return_value = {"content": None}
        result = await relay.handle({"messages": make_raw_messages(1)})
        assert result.reply.text == FALLBACK_REPLY
        assert result.reply.fallback
        assert result.usage.input_tokens == 0
        assert relay.accountant.get_summary().total_fallback_replies == 1

    @pytest.mark.asyncio
    async def test_image_attached(self, relay):
        await relay.handle({
            "messages": [{"role": "user", "content": "rate my outfit", "includeImage": True}],
            "imageData": {"mimeType": "image/png", "base64": "AAAA"},
        })
        _, messages, _ = _invoke_args(relay)
        assert [b["type"] for b in messages[0]["content"]] == ["image", "text"]

    @pytest.mark.asyncio
    async def test_unexpected_invoker_failure_is_counted(self, relay):
        relay.invoker.invoke.side_effect = RuntimeError("client closed")
        with pytest.raises(RuntimeError):
            await relay.handle({"messages": make_raw_messages(1)})
        assert relay.accountant.get_summary().total_failures == 1
        event = relay.metrics.record.call_args[0][0]
        assert event["type"] == "upstream_error"
        assert event["error"] == "RuntimeError"
        assert event["status_code"] is None

    @pytest.mark.asyncio
    async def test_stop_reason_recorded(self, relay):
        relay.invoker.invoke.return_value = {
            **anthropic_response(), "stop_reason": "max_tokens",
        }
        await relay.handle({"messages": make_raw_messages(1)})
        event = relay.metrics.record.call_args[0][0]
        assert event["type"] == "response"
        assert event["stop_reason"] == "max_tokens"

    @pytest.mark.asyncio
    async def test_image_on_role_sent_as_user(self, relay):
        await relay.handle({
            "messages": [{"role": "tool", "content": "look", "includeImage": True}],
            "imageData": {"mimeType": "image/png", "base64": "AAAA"},
        })
        _, messages, _ = _invoke_args(relay)
        assert messages[0]["role"] == "user"
        assert [b["type"] for b in messages[0]["content"]] == ["image", "text"]
