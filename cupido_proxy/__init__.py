"""cupido-proxy: prompt-caching chat relay for the Claude API."""

from .config import load_config
from .core.relay import ChatRelay
from .types import (
    FALLBACK_REPLY,
    CacheWindowPlan,
    ChatMessage,
    ChatRequest,
    CostEstimate,
    ImageAttachment,
    ModelType,
    NormalizedReply,
    ProxyConfig,
    UsageStats,
)

__version__ = "0.1.0"

__all__ = [
    "ChatRelay",
    "load_config",
    "FALLBACK_REPLY",
    "CacheWindowPlan",
    "ChatMessage",
    "ChatRequest",
    "CostEstimate",
    "ImageAttachment",
    "ModelType",
    "NormalizedReply",
    "ProxyConfig",
    "UsageStats",
]
