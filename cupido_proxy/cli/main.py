"""CLI: cupido-proxy serve, plan, cost, config validate."""

from __future__ import annotations

import argparse
import json
import logging
import sys

from ..config import load_config, validate_config
from ..core.cache_window import plan_cache_window
from ..core.cost_tracker import estimate_cost
from ..types import UsageStats


def cmd_serve(args):
    """Start the chat relay HTTP server."""
    import uvicorn

    from ..proxy import create_app

    class _SuppressHealthAccess(logging.Filter):
        """Hide repetitive GET /health access logs from uptime probes."""
        def filter(self, record: logging.LogRecord) -> bool:
            msg = record.getMessage()
            return not ("GET /health" in msg and "200" in msg)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logging.getLogger("uvicorn.access").addFilter(_SuppressHealthAccess())

    config = load_config(args.config)
    host = args.host or config.server.host
    port = args.port or config.server.port

    app = create_app(config=config)
    print(f"cupido-proxy on {host}:{port} -> {config.upstream.url}")
    uvicorn.run(app, host=host, port=port, log_level="info", timeout_graceful_shutdown=2)


def cmd_plan(args):
    """Show the cache window plan for a conversation length."""
    config = load_config(args.config)
    plan = plan_cache_window(args.messages, config.cache_window)

    print(f"Messages:        {plan.total_messages:,}")
    print(f"Fresh window:    {plan.fresh_window_size}")
    if plan.has_boundary:
        print(f"Cache boundary:  index {plan.cache_boundary_index}")
        print(f"Cached messages: 0..{plan.cache_boundary_index} ({plan.cache_boundary_index + 1})")
    else:
        print("Cache boundary:  none (system prompt only)")


def cmd_cost(args):
    """Estimate cost and cache savings for a usage breakdown."""
    config = load_config(args.config)
    if args.usage:
        with open(args.usage) as f:
            raw = json.load(f)
        usage = UsageStats(
            input_tokens=raw.get("input_tokens", 0),
            cache_creation_tokens=raw.get("cache_creation_input_tokens", 0),
            cache_read_tokens=raw.get("cache_read_input_tokens", 0),
            output_tokens=raw.get("output_tokens", 0),
        )
    else:
        usage = UsageStats(
            input_tokens=args.input,
            cache_creation_tokens=args.cache_write,
            cache_read_tokens=args.cache_read,
            output_tokens=args.output,
        )
    cost = estimate_cost(usage, config.pricing)

    print("Cost Estimate")
    print("=" * 40)
    print(f"Input Tokens:    {usage.input_tokens:,}")
    print(f"Cache Writes:    {usage.cache_creation_tokens:,}")
    print(f"Cache Reads:     {usage.cache_read_tokens:,}")
    print(f"Output Tokens:   {usage.output_tokens:,}")
    print(f"Cache Hit Rate:  {usage.cache_hit_rate:.1%}")
    print(f"Uncached Input:  ${cost.normal_cost:.6f}")
    print(f"Cached Input:    ${cost.cached_cost:.6f}")
    print(f"Output:          ${cost.output_cost:.6f}")
    print(f"Est. Cost:       ${cost.estimated_cost:.6f}")
    print(f"Est. Savings:    ${cost.estimated_savings:.6f}")


def cmd_config_validate(args):
    """Validate config file."""
    try:
        config = load_config(args.config)
    except Exception as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        sys.exit(1)

    errors = validate_config(config)
    if errors:
        print("Config validation errors:")
        for err in errors:
            print(f"  - {err}")
        sys.exit(1)
    else:
        print("Config is valid.")
        print(f"  Upstream: {config.upstream.url}")
        for model_type, model in config.models.items():
            print(f"  {model_type.value}: {model.model_id} (max_tokens={model.max_tokens})")
        print(f"  Cache tiers: {config.cache_window.tiers} floor={config.cache_window.floor}")


def main():
    parser = argparse.ArgumentParser(
        prog="cupido-proxy",
        description="Prompt-caching chat relay for the Claude API",
    )
    parser.add_argument("--config", "-c", help="Path to config file")
    subparsers = parser.add_subparsers(dest="command")

    # serve
    serve_parser = subparsers.add_parser("serve", help="Start the chat relay server")
    serve_parser.add_argument("--host", default=None, help="Bind address (default: from config)")
    serve_parser.add_argument("--port", "-p", type=int, default=None, help="Port (default: from config)")
    serve_parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    # plan
    plan_parser = subparsers.add_parser("plan", help="Show cache window plan for N messages")
    plan_parser.add_argument("messages", type=int, help="Conversation length (excluding system)")

    # cost
    cost_parser = subparsers.add_parser("cost", help="Estimate cost and cache savings")
    cost_parser.add_argument("--usage", "-u", help="JSON file holding a provider usage object")
    cost_parser.add_argument("--input", type=int, default=0, help="Uncached input tokens")
    cost_parser.add_argument("--cache-read", type=int, default=0, help="Cache read tokens")
    cost_parser.add_argument("--cache-write", type=int, default=0, help="Cache creation tokens")
    cost_parser.add_argument("--output", type=int, default=0, help="Output tokens")

    # config
    config_parser = subparsers.add_parser("config", help="Config operations")
    config_sub = config_parser.add_subparsers(dest="config_action")
    config_sub.add_parser("validate", help="Validate config file")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    if args.command == "serve":
        cmd_serve(args)
    elif args.command == "plan":
        cmd_plan(args)
    elif args.command == "cost":
        cmd_cost(args)
    elif args.command == "config":
        if args.config_action == "validate":
            cmd_config_validate(args)
        else:
            print("Usage: cupido-proxy config validate")
            sys.exit(1)


if __name__ == "__main__":
    main()
