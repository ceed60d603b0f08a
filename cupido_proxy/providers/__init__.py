from .anthropic import AnthropicAdapter
from .base import ProviderAdapter, UpstreamInvoker

__all__ = ["AnthropicAdapter", "ProviderAdapter", "UpstreamInvoker"]
