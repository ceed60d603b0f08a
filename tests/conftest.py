"""Shared fixtures for cupido-proxy tests."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from cupido_proxy.config import load_config
from cupido_proxy.types import ChatMessage, ProxyConfig


def make_conversation(n: int) -> list[ChatMessage]:
    """Alternating user/assistant turns, user first."""
    return [
        ChatMessage(
            role="user" if i % 2 == 0 else "assistant",
            content=f"message {i}",
        )
        for i in range(n)
    ]


def make_raw_messages(n: int, system: str | None = None) -> list[dict]:
    """Raw ``/api/chat`` messages, optionally led by a system entry."""
    raw = [{"role": "system", "content": system}] if system is not None else []
    raw.extend(
        {"role": "user" if i % 2 == 0 else "assistant", "content": f"message {i}"}
        for i in range(n)
    )
    return raw


def anthropic_response(
    text: str = "Hey! Tell me more about that.",
    usage: dict | None = None,
) -> dict:
    return {
        "id": "msg_test",
        "type": "message",
        "role": "assistant",
        "content": [{"type": "text", "text": text}],
        "stop_reason": "end_turn",
        "usage": usage if usage is not None else {
            "input_tokens": 40,
            "cache_creation_input_tokens": 0,
            "cache_read_input_tokens": 1200,
            "output_tokens": 25,
        },
    }


def mock_http_response(status_code: int = 200, json_body=None, text: str = "") -> MagicMock:
    resp = MagicMock()
    resp.status_code = status_code
    resp.text = text
    if json_body is None:
        resp.json.side_effect = ValueError("not json")
    else:
        resp.json.return_value = json_body
    return resp


@pytest.fixture
def sample_config() -> ProxyConfig:
    return load_config(
        config_dict={"upstream": {"api_key": "sk-test-key"}},
        env={},
    )


@pytest.fixture
def keyless_config() -> ProxyConfig:
    return load_config(config_dict={}, env={})
