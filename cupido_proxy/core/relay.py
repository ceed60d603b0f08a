"""ChatRelay: the per-request pipeline.

normalize -> plan cache window -> transform -> invoke upstream ->
account usage -> extract reply. Strictly linear, no state carried
between requests beyond the accountant's logging totals.
"""

from __future__ import annotations

import logging
import time

from ..providers.base import ProviderAdapter, UpstreamInvoker
from ..types import ProxyConfig, RelayResult
from .cache_window import plan_cache_window
from .cost_tracker import UsageAccountant
from .normalizer import normalize_request
from .transformer import build_system_blocks, count_cache_markers, transform_messages

logger = logging.getLogger(__name__)


class ChatRelay:
    def __init__(
        self,
        config: ProxyConfig,
        adapter: ProviderAdapter,
        invoker: UpstreamInvoker,
        accountant: UsageAccountant,
        metrics=None,
    ) -> None:
        self.config = config
        self.adapter = adapter
        self.invoker = invoker
        self.accountant = accountant
        self.metrics = metrics

    async def handle(self, body: object) -> RelayResult:
        """Run one chat request through the pipeline.

        ``InvalidRequest`` is raised before any upstream call is made.
        ``UpstreamError`` (and subclasses) propagate to the HTTP layer. Any
        failure of the upstream call is counted before it is re-raised.
        """
        request = normalize_request(
            body,
            default_model=self.config.default_model,
            max_message_chars=self.config.max_message_chars,
        )
        plan = plan_cache_window(len(request.conversation), self.config.cache_window)
        system_blocks = build_system_blocks(request.system_text)
        messages = transform_messages(
            request.conversation, plan.cache_boundary_index, request.attachments,
        )
        logger.info(
            "chat model=%s messages=%d fresh=%d boundary=%d markers=%d image=%s",
            request.model_type.value,
            plan.total_messages,
            plan.fresh_window_size,
            plan.cache_boundary_index,
            count_cache_markers(system_blocks, messages),
            bool(request.attachments),
        )

        t0 = time.monotonic()
        try:
            raw = await self.invoker.invoke(system_blocks, messages, request.model_type)
        except Exception as e:
            self.accountant.log_failure()
            if self.metrics is not None:
                self.metrics.record({
                    "type": "upstream_error",
                    "model_type": request.model_type.value,
                    "error": type(e).__name__,
                    "status_code": getattr(e, "status_code", None),
                })
            raise
        upstream_ms = round((time.monotonic() - t0) * 1000, 1)

        reply = self.adapter.extract_text(raw)
        usage, _ = self.accountant.account(
            self.adapter.extract_usage(raw), request.model_type, fallback=reply.fallback,
        )
        if self.metrics is not None:
            self.metrics.record({
                "type": "response",
                "model_type": request.model_type.value,
                "messages": plan.total_messages,
                "cache_boundary_index": plan.cache_boundary_index,
                "upstream_ms": upstream_ms,
                "fallback": reply.fallback,
                "stop_reason": reply.stop_reason,
                "chars": len(reply.text),
            })

        return RelayResult(
            reply=reply,
            model_type=request.model_type,
            usage=usage,
            plan=plan,
        )
