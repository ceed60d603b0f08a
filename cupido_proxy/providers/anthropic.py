"""AnthropicAdapter: Messages API wire format via httpx (no SDK dependency)."""

from __future__ import annotations

import logging

from ..types import (
    FALLBACK_REPLY,
    ModelDef,
    NormalizedReply,
    ResponseParseFailure,
    UpstreamConfig,
)
from .base import ProviderAdapter

logger = logging.getLogger(__name__)


class AnthropicAdapter(ProviderAdapter):
    """Anthropic Messages API with the prompt-caching beta header."""

    def __init__(self, config: UpstreamConfig) -> None:
        self.config = config

    @property
    def name(self) -> str:
        return "anthropic"

    def get_headers(self) -> dict:
        headers = {
            "x-api-key": self.config.api_key,
            "anthropic-version": self.config.anthropic_version,
            "content-type": "application/json",
        }
        if self.config.anthropic_beta:
            headers["anthropic-beta"] = self.config.anthropic_beta
        return headers

    def build_request_body(
        self, *, model: ModelDef, system_blocks: list[dict], messages: list[dict],
    ) -> dict:
        body = {
            "model": model.model_id,
            "max_tokens": model.max_tokens,
            "temperature": self.config.temperature,
            "messages": messages,
        }
        if system_blocks:
            body["system"] = system_blocks
        return body

    @staticmethod
    def _text_blocks(response: object) -> list[str]:
        if not isinstance(response, dict):
            raise ResponseParseFailure(f"response is {type(response).__name__}, not an object")
        content = response.get("content")
        if not isinstance(content, list):
            raise ResponseParseFailure("response content is missing or not a list")
        texts = [
            block["text"]
            for block in content
            if isinstance(block, dict)
            and block.get("type") == "text"
            and isinstance(block.get("text"), str)
        ]
        if not texts:
            raise ResponseParseFailure("response has no text blocks")
        return texts

    def extract_text(self, response: object) -> NormalizedReply:
        try:
            text = " ".join(self._text_blocks(response)).strip()
            if not text:
                raise ResponseParseFailure("response text is blank")
        except ResponseParseFailure as e:
            logger.warning("Unparseable Anthropic response, using fallback: %s", e)
            return NormalizedReply(text=FALLBACK_REPLY, fallback=True)
        stop_reason = response.get("stop_reason") or ""
        return NormalizedReply(text=text, stop_reason=str(stop_reason))

    def extract_usage(self, response: object) -> dict:
        if not isinstance(response, dict):
            return {}
        usage = response.get("usage")
        return usage if isinstance(usage, dict) else {}
