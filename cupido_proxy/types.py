"""Core data types for cupido-proxy."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

FALLBACK_REPLY = "Sorry, I had trouble processing that. What else is on your mind?"
CACHE_MARKER = {"type": "ephemeral"}


class ModelType(str, Enum):
    """Client-facing model names accepted in ``modelType``."""
    HAIKU = "haiku"
    SONNET = "sonnet"


@dataclass
class ChatMessage:
    role: str  # "system" | "user" | "assistant"
    content: str
    include_image: bool = False


@dataclass
class ImageAttachment:
    mime_type: str
    base64: str


@dataclass
class ChatRequest:
    """Normalized inbound request.

    ``attachments`` is keyed by index into ``conversation`` (not into the
    raw inbound list, which may still contain system entries).
    """
    system_text: str
    conversation: list[ChatMessage]
    model_type: ModelType
    attachments: dict[int, ImageAttachment] = field(default_factory=dict)


@dataclass
class CacheWindowPlan:
    total_messages: int
    fresh_window_size: int
    cache_boundary_index: int  # -1 = no conversation message is cache-marked

    @property
    def has_boundary(self) -> bool:
        return self.cache_boundary_index >= 0


@dataclass
class UsageStats:
    input_tokens: int = 0
    cache_creation_tokens: int = 0
    cache_read_tokens: int = 0
    output_tokens: int = 0

    @property
    def cache_hit_rate(self) -> float:
        denominator = self.input_tokens + self.cache_read_tokens
        if denominator <= 0:
            return 0.0
        return self.cache_read_tokens / denominator

    def to_wire(self) -> dict:
        """camelCase shape returned to the mobile client as ``cacheStats``."""
        return {
            "inputTokens": self.input_tokens,
            "cacheCreationTokens": self.cache_creation_tokens,
            "cacheReadTokens": self.cache_read_tokens,
            "outputTokens": self.output_tokens,
        }


@dataclass
class CostEstimate:
    """USD cost breakdown for one upstream call."""
    normal_cost: float = 0.0
    cached_cost: float = 0.0
    output_cost: float = 0.0

    @property
    def estimated_cost(self) -> float:
        return self.cached_cost + self.output_cost

    @property
    def estimated_savings(self) -> float:
        return self.normal_cost - self.cached_cost


@dataclass
class NormalizedReply:
    text: str
    fallback: bool = False
    stop_reason: str = ""


@dataclass
class RelayResult:
    """Everything the HTTP layer needs to answer one chat request."""
    reply: NormalizedReply
    model_type: ModelType
    usage: UsageStats
    plan: CacheWindowPlan


@dataclass
class UsageSummary:
    """Cumulative counters since process start."""
    total_requests: int = 0
    total_failures: int = 0
    total_fallback_replies: int = 0
    total_input_tokens: int = 0
    total_cache_creation_tokens: int = 0
    total_cache_read_tokens: int = 0
    total_output_tokens: int = 0
    estimated_cost_usd: float = 0.0
    estimated_savings_usd: float = 0.0

    @property
    def cache_hit_rate(self) -> float:
        denominator = self.total_input_tokens + self.total_cache_read_tokens
        if denominator <= 0:
            return 0.0
        return self.total_cache_read_tokens / denominator


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class RelayError(Exception):
    """Base class for every error raised by the chat relay."""


class InvalidRequest(RelayError):
    """Malformed inbound body. Mapped to HTTP 400; no upstream call is made."""


class UnknownModel(InvalidRequest):
    def __init__(self, model_type: object):
        super().__init__(f"Unknown modelType: {model_type!r}")
        self.model_type = model_type


class UpstreamError(RelayError):
    """Non-2xx (or otherwise failed) call to the AI provider."""

    def __init__(self, message: str, status_code: int | None = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class UpstreamUnavailable(UpstreamError):
    """The provider could not be reached at all."""


class UpstreamTimeout(UpstreamUnavailable):
    """The provider did not answer within the configured deadline."""


class ResponseParseFailure(RelayError):
    """Provider response did not have the expected content-block shape."""


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

@dataclass
class ModelDef:
    model_id: str
    max_tokens: int


DEFAULT_UPSTREAM_MODEL = "claude-sonnet-4-5-20250929"


def _default_models() -> dict[ModelType, ModelDef]:
    # Both client tiers route to the same upstream model; only the reply cap differs.
    return {
        ModelType.HAIKU: ModelDef(model_id=DEFAULT_UPSTREAM_MODEL, max_tokens=120),
        ModelType.SONNET: ModelDef(model_id=DEFAULT_UPSTREAM_MODEL, max_tokens=150),
    }


@dataclass
class UpstreamConfig:
    url: str = "https://api.anthropic.com/v1/messages"
    api_key: str = ""
    api_key_env: str = "ANTHROPIC_API_KEY"
    anthropic_version: str = "2023-06-01"
    anthropic_beta: str = "prompt-caching-2024-07-31"
    timeout: float = 60.0
    connect_timeout: float = 10.0
    temperature: float = 0.7


@dataclass
class ServerConfig:
    host: str = "127.0.0.1"
    port: int = 3001
    cors_allowed_origins: list[str] = field(default_factory=list)  # empty = allow all


@dataclass
class CacheWindowConfig:
    # (exclusive upper bound on message count, fresh window size), ascending
    tiers: list[tuple[int, int]] = field(
        default_factory=lambda: [(100, 50), (500, 30), (1000, 20)],
    )
    floor: int = 15  # fresh window once every tier bound is exceeded


@dataclass
class PricingConfig:
    """USD per million tokens."""
    input_per_mtok: float = 3.00
    cache_read_per_mtok: float = 0.30
    cache_write_per_mtok: float = 3.75
    output_per_mtok: float = 15.00


@dataclass
class ProxyConfig:
    version: str = "1.0"
    default_model: ModelType = ModelType.HAIKU
    max_message_chars: int = 0  # 0 = no truncation
    models: dict[ModelType, ModelDef] = field(default_factory=_default_models)
    upstream: UpstreamConfig = field(default_factory=UpstreamConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    cache_window: CacheWindowConfig = field(default_factory=CacheWindowConfig)
    pricing: PricingConfig = field(default_factory=PricingConfig)
