"""HTTP chat relay for the Cupido mobile client.

Accepts ``POST /api/chat`` with the client's message list, marks the
stable part of the conversation for provider-side prompt caching, and
forwards it to the Anthropic Messages API.

Usage:
    cupido-proxy serve --port 3001
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ..config import MISSING_API_KEY, load_config, validate_config
from ..core.cost_tracker import UsageAccountant
from ..core.relay import ChatRelay
from ..providers.anthropic import AnthropicAdapter
from ..providers.base import UpstreamInvoker
from ..types import (
    FALLBACK_REPLY,
    InvalidRequest,
    ProxyConfig,
    UpstreamError,
)
from .metrics import ProxyMetrics

logger = logging.getLogger(__name__)

UPSTREAM_FAILURE_BODY = {"error": "Failed to get AI response", "fallback": True}


def _invalid_request_body(error: Exception) -> dict:
    return {"error": str(error), "message": FALLBACK_REPLY, "fallback": True}


def log_startup_diagnostics(config: ProxyConfig) -> list[str]:
    """Log config problems loudly. Never raises; the process keeps serving."""
    problems = validate_config(config)
    for problem in problems:
        if problem.startswith(MISSING_API_KEY):
            logger.critical("%s", problem)
        else:
            logger.warning("Config problem: %s", problem)
    return problems


def create_app(
    config_path: str | None = None,
    *,
    config: ProxyConfig | None = None,
    metrics: ProxyMetrics | None = None,
) -> FastAPI:
    """Create the FastAPI relay application.

    Args:
        config_path: Path to a cupido-proxy config file (auto-discovered if None).
        config: Pre-built config; takes precedence over *config_path*.
        metrics: Reuse an existing metrics collector.
    """
    if config is None:
        config = load_config(config_path)
    log_startup_diagnostics(config)

    metrics = metrics or ProxyMetrics()
    client = httpx.AsyncClient(
        timeout=httpx.Timeout(config.upstream.timeout, connect=config.upstream.connect_timeout),
    )
    adapter = AnthropicAdapter(config.upstream)
    invoker = UpstreamInvoker(adapter, client, config.upstream.url, config.models)
    accountant = UsageAccountant(config.pricing, metrics=metrics)
    relay = ChatRelay(config, adapter, invoker, accountant, metrics=metrics)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
        logger.info(
            "Relay ready: target=%s models=%s",
            config.upstream.url,
            ", ".join(f"{k.value}->{v.model_id}" for k, v in config.models.items()),
        )
        yield
        await client.aclose()

    app = FastAPI(title="cupido chat relay", lifespan=lifespan)
    app.state.config = config
    app.state.relay = relay
    app.state.metrics = metrics

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.server.cors_allowed_origins or ["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    @app.get("/health")
    async def health():
        return {
            "ok": True,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "target": config.upstream.url,
            "hasApiKey": bool(config.upstream.api_key),
        }

    @app.get("/api/stats")
    async def stats():
        summary = accountant.get_summary()
        return {
            "totalRequests": summary.total_requests,
            "totalFailures": summary.total_failures,
            "totalFallbackReplies": summary.total_fallback_replies,
            "inputTokens": summary.total_input_tokens,
            "cacheCreationTokens": summary.total_cache_creation_tokens,
            "cacheReadTokens": summary.total_cache_read_tokens,
            "outputTokens": summary.total_output_tokens,
            "cacheHitRate": round(summary.cache_hit_rate, 4),
            "estimatedCostUsd": round(summary.estimated_cost_usd, 6),
            "estimatedSavingsUsd": round(summary.estimated_savings_usd, 6),
            "recent": metrics.snapshot(),
        }

    @app.post("/api/chat")
    async def chat(request: Request):
        try:
            body = await request.json()
        except ValueError:
            return JSONResponse(
                content=_invalid_request_body(InvalidRequest("Body is not valid JSON")),
                status_code=400,
            )

        try:
            result = await relay.handle(body)
        except InvalidRequest as e:
            logger.info("Rejected chat request: %s", e)
            return JSONResponse(content=_invalid_request_body(e), status_code=400)
        except UpstreamError as e:
            logger.error(
                "Upstream failure (%s, status=%s): %s",
                type(e).__name__, e.status_code, e,
            )
            return JSONResponse(content=dict(UPSTREAM_FAILURE_BODY), status_code=500)
        except Exception:
            logger.exception("Unexpected relay failure")
            return JSONResponse(content=dict(UPSTREAM_FAILURE_BODY), status_code=500)

        return {
            "message": result.reply.text,
            "usedModel": result.model_type.value,
            "cacheStats": result.usage.to_wire(),
        }

    return app
