"""Configuration loading, validation, and defaults."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

import yaml

from .types import (
    CacheWindowConfig,
    ModelDef,
    ModelType,
    PricingConfig,
    ProxyConfig,
    ServerConfig,
    UpstreamConfig,
    _default_models,
)

CONFIG_FILENAMES = [
    "cupido-proxy.yaml",
    "cupido-proxy.yml",
    "cupido-proxy.json",
]

ENV_API_URL = "ANTHROPIC_API_URL"
ENV_PORT = "AI_PROXY_PORT"
ENV_CORS = "CORS_ALLOWED_ORIGINS"

MISSING_API_KEY = "MissingApiKey"


def _discover_config() -> Path | None:
    """Search CWD then parent dirs up to home for a config file."""
    cwd = Path.cwd()
    home = Path.home()
    search = cwd
    while True:
        for name in CONFIG_FILENAMES:
            candidate = search / name
            if candidate.is_file():
                return candidate
        if search == home or search == search.parent:
            break
        search = search.parent
    return None


def _split_origins(raw: str | list | None) -> list[str]:
    if not raw:
        return []
    if isinstance(raw, str):
        raw = raw.split(",")
    return [o.strip() for o in raw if o and str(o).strip()]


def _parse_models(raw: dict[str, Any]) -> dict[ModelType, ModelDef]:
    models = _default_models()
    for name, mconf in raw.items():
        # unknown tier names raise ValueError
        model_type = ModelType(name)
        mconf = mconf if isinstance(mconf, dict) else {}
        current = models[model_type]
        models[model_type] = ModelDef(
            model_id=mconf.get("model", current.model_id),
            max_tokens=int(mconf.get("max_tokens", current.max_tokens)),
        )
    return models


def _parse_tiers(raw: list) -> list[tuple[int, int]]:
    tiers: list[tuple[int, int]] = []
    for entry in raw:
        if isinstance(entry, dict):
            tiers.append((int(entry["below"]), int(entry["fresh"])))
        else:
            below, fresh = entry
            tiers.append((int(below), int(fresh)))
    return tiers


def _build_config(raw: dict[str, Any], env: dict[str, str] | None = None) -> ProxyConfig:
    """Build a ProxyConfig from a raw dict, then apply environment overrides."""
    env = os.environ if env is None else env

    # Upstream
    up_raw = raw.get("upstream", {})
    api_key_env = up_raw.get("api_key_env", "ANTHROPIC_API_KEY")
    upstream = UpstreamConfig(
        url=env.get(ENV_API_URL) or up_raw.get("url", UpstreamConfig.url),
        api_key=up_raw.get("api_key") or env.get(api_key_env, ""),
        api_key_env=api_key_env,
        anthropic_version=up_raw.get("anthropic_version", UpstreamConfig.anthropic_version),
        anthropic_beta=up_raw.get("anthropic_beta", UpstreamConfig.anthropic_beta),
        timeout=float(up_raw.get("timeout", UpstreamConfig.timeout)),
        connect_timeout=float(up_raw.get("connect_timeout", UpstreamConfig.connect_timeout)),
        temperature=float(up_raw.get("temperature", UpstreamConfig.temperature)),
    )

    # Server
    srv_raw = raw.get("server", {})
    port = env.get(ENV_PORT) or srv_raw.get("port", ServerConfig.port)
    origins = env.get(ENV_CORS) or srv_raw.get("cors_allowed_origins", [])
    server = ServerConfig(
        host=srv_raw.get("host", ServerConfig.host),
        port=int(port),
        cors_allowed_origins=_split_origins(origins),
    )

    # Cache window
    cw_raw = raw.get("cache_window", {})
    cache_window = CacheWindowConfig(floor=int(cw_raw.get("floor", CacheWindowConfig.floor)))
    if "tiers" in cw_raw:
        cache_window.tiers = _parse_tiers(cw_raw["tiers"])

    # Pricing
    p_raw = raw.get("pricing", {})
    pricing = PricingConfig(
        input_per_mtok=float(p_raw.get("input_per_mtok", PricingConfig.input_per_mtok)),
        cache_read_per_mtok=float(p_raw.get("cache_read_per_mtok", PricingConfig.cache_read_per_mtok)),
        cache_write_per_mtok=float(p_raw.get("cache_write_per_mtok", PricingConfig.cache_write_per_mtok)),
        output_per_mtok=float(p_raw.get("output_per_mtok", PricingConfig.output_per_mtok)),
    )

    return ProxyConfig(
        version=str(raw.get("version", "1.0")),
        default_model=ModelType(raw.get("default_model", ModelType.HAIKU.value)),
        max_message_chars=int(raw.get("max_message_chars", 0)),
        models=_parse_models(raw.get("models", {})),
        upstream=upstream,
        server=server,
        cache_window=cache_window,
        pricing=pricing,
    )


def validate_config(config: ProxyConfig) -> list[str]:
    """Validate a config. Returns list of error strings (empty = valid)."""
    errors: list[str] = []

    if not config.upstream.api_key:
        errors.append(
            f"{MISSING_API_KEY}: set {config.upstream.api_key_env}; "
            "chat requests will fail until it is configured"
        )

    missing = [m.value for m in ModelType if m not in config.models]
    if missing:
        errors.append(f"No model mapping for: {', '.join(missing)}")
    for model_type, model in config.models.items():
        if model.max_tokens < 1:
            errors.append(f"models.{model_type.value}.max_tokens must be >= 1")

    if config.upstream.timeout <= 0:
        errors.append("upstream.timeout must be > 0")

    tiers = config.cache_window.tiers
    bounds = [b for b, _ in tiers]
    if bounds != sorted(bounds) or len(set(bounds)) != len(bounds):
        errors.append("cache_window.tiers bounds must be strictly ascending")
    sizes = [f for _, f in tiers] + [config.cache_window.floor]
    if any(later > earlier for earlier, later in zip(sizes, sizes[1:])):
        errors.append("cache_window fresh sizes must be non-increasing")
    if any(s < 0 for s in sizes):
        errors.append("cache_window fresh sizes must be >= 0")

    pricing = config.pricing
    if pricing.cache_read_per_mtok > pricing.input_per_mtok:
        errors.append(
            f"pricing.cache_read_per_mtok ({pricing.cache_read_per_mtok}) must be <= "
            f"input_per_mtok ({pricing.input_per_mtok})"
        )
    if min(
        pricing.input_per_mtok, pricing.cache_read_per_mtok,
        pricing.cache_write_per_mtok, pricing.output_per_mtok,
    ) < 0:
        errors.append("pricing values must be >= 0")

    return errors


def load_config(
    config_path: str | Path | None = None,
    config_dict: dict | None = None,
    env: dict[str, str] | None = None,
) -> ProxyConfig:
    """Load config from dict, explicit path, or auto-discover."""
    if config_dict is not None:
        return _build_config(config_dict, env)

    if config_path is not None:
        path = Path(config_path)
    else:
        path = _discover_config()

    if path is None:
        # Return defaults
        return _build_config({}, env)

    if not path.is_file():
        raise FileNotFoundError(f"Config file not found: {path}")

    text = path.read_text()
    if path.suffix == ".json":
        raw = json.loads(text)
    else:
        raw = yaml.safe_load(text) or {}

    return _build_config(raw, env)
