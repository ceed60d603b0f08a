"""Provider adapter interface and the single-shot upstream invoker."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

import httpx

from ..types import (
    ModelDef,
    ModelType,
    NormalizedReply,
    UnknownModel,
    UpstreamError,
    UpstreamTimeout,
    UpstreamUnavailable,
)

logger = logging.getLogger(__name__)

_LOG_BODY_CHARS = 500


class ProviderAdapter(ABC):
    """Provider-specific wire details: headers, payload shape, response parsing.

    Swapping providers means writing one adapter; the relay pipeline only
    sees :class:`NormalizedReply` and the raw ``usage`` dict.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Short identifier, e.g. ``"anthropic"``."""

    @abstractmethod
    def get_headers(self) -> dict:
        """Return HTTP headers for API requests."""

    @abstractmethod
    def build_request_body(
        self, *, model: ModelDef, system_blocks: list[dict], messages: list[dict],
    ) -> dict:
        """Build the provider-specific request body."""

    @abstractmethod
    def extract_text(self, response: object) -> NormalizedReply:
        """Normalize a response into plain text. Must never raise."""

    @abstractmethod
    def extract_usage(self, response: object) -> dict:
        """Return the raw usage dict from a response (``{}`` when absent)."""


class UpstreamInvoker:
    """Issue exactly one HTTP call per chat request. No retries."""

    def __init__(
        self,
        adapter: ProviderAdapter,
        client: httpx.AsyncClient,
        url: str,
        models: dict[ModelType, ModelDef],
    ) -> None:
        self.adapter = adapter
        self.client = client
        self.url = url
        self.models = models

    def resolve_model(self, model_type: ModelType) -> ModelDef:
        try:
            return self.models[model_type]
        except KeyError:
            raise UnknownModel(model_type) from None

    async def invoke(
        self,
        system_blocks: list[dict],
        messages: list[dict],
        model_type: ModelType,
    ) -> object:
        """POST the transformed payload and return the decoded JSON body.

        A 2xx body that is not valid JSON is returned as ``None`` and left
        to the adapter's fallback handling.

        Raises:
            UpstreamTimeout: the call exceeded the client timeout.
            UpstreamUnavailable: the provider could not be reached.
            UpstreamError: any non-2xx response.
        """
        model = self.resolve_model(model_type)
        body = self.adapter.build_request_body(
            model=model, system_blocks=system_blocks, messages=messages,
        )
        logger.debug(
            "Calling %s model=%s max_tokens=%d messages=%d",
            self.adapter.name, model.model_id, model.max_tokens, len(messages),
        )

        try:
            resp = await self.client.post(self.url, headers=self.adapter.get_headers(), json=body)
        except httpx.TimeoutException as e:
            raise UpstreamTimeout(f"{self.adapter.name} timed out: {e}") from e
        except httpx.HTTPError as e:
            raise UpstreamUnavailable(f"{self.adapter.name} unreachable: {e}") from e

        if not 200 <= resp.status_code < 300:
            text = resp.text
            logger.error(
                "%s API error %d: %s",
                self.adapter.name, resp.status_code, text[:_LOG_BODY_CHARS],
            )
            raise UpstreamError(
                f"{self.adapter.name} API error: {resp.status_code}",
                status_code=resp.status_code,
                body=text,
            )

        try:
            return resp.json()
        except ValueError:
            logger.warning(
                "%s returned non-JSON body (status %d)", self.adapter.name, resp.status_code,
            )
            return None
