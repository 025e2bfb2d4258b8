"""Configuration file loading and caching.

Handles:
- YAML file parsing
- Cascading merge (system -> user -> project -> environment)
- Environment variable overrides
- Config caching with reload support
- Conversion from dict to typed Config dataclass
"""

from __future__ import annotations

import contextlib
import logging
import os
from collections.abc import Callable
from pathlib import Path
from typing import Any

import yaml

from chatbranch.config.paths import get_config_paths
from chatbranch.config.schema import (
    Config,
    ContextConfig,
    LLMConfig,
    LoggingConfig,
    ModelsConfig,
    SummarizationConfig,
)

# Module logger (may not be configured yet at import time)
_log = logging.getLogger("chatbranch.config")

_cached_config: Config | None = None

_reload_callbacks: list[Callable[[Config], None]] = []

KNOWN_SECTIONS = frozenset({"context", "summarization", "models", "llm", "logging"})


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Read one config file. Missing, unreadable or non-mapping files give {}."""
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return {}
    except OSError as e:
        _log.warning("Cannot read config %s: %s", path, e)
        return {}

    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        _log.warning("Invalid YAML in %s: %s", path, e)
        return {}
    if data is not None and not isinstance(data, dict):
        _log.warning("Ignoring %s: top level is %s, not a mapping", path, type(data).__name__)
        return {}
    return data or {}


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Merge ``override`` into a copy of ``base``.

    Nested dicts merge recursively, lists and scalars are replaced, and a
    None in ``override`` leaves the base value in place so partial configs
    can skip keys.
    """
    merged = dict(base)
    for key, value in override.items():
        if value is None:
            continue
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = deep_merge(current, value)
        else:
            merged[key] = value
    return merged


# Environment variable -> (section, key, converter)
ENV_OVERRIDES: dict[str, tuple[str, str, Callable[[str], Any]]] = {
    "CHATBRANCH_LOG": ("logging", "file", str),
    "CHATBRANCH_MODEL": ("llm", "model", str),
    "CHATBRANCH_CONTEXT_LIMIT": ("context", "custom_limit", int),
}


def env_overrides() -> dict[str, Any]:
    """Build a config dict from environment variables (highest priority)."""
    overrides: dict[str, Any] = {}
    for var, (section, key, convert) in ENV_OVERRIDES.items():
        raw = os.environ.get(var)
        if not raw:
            continue
        try:
            value = convert(raw)
        except ValueError:
            _log.warning("Ignoring %s=%r: expected %s", var, raw, convert.__name__)
            continue
        overrides.setdefault(section, {})[key] = value
    return overrides


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    value = data.get(name)
    return value if isinstance(value, dict) else {}


def dict_to_config(data: dict[str, Any]) -> Config:
    """Convert a merged dict to the typed Config dataclass."""
    ctx = _section(data, "context")
    context = ContextConfig(
        warning_threshold=float(ctx.get("warning_threshold", 85.0)),
        critical_threshold=float(ctx.get("critical_threshold", 95.0)),
        throttle_tokens=int(ctx.get("throttle_tokens", 20)),
        throttle_interval=float(ctx.get("throttle_interval", 0.15)),
        estimator=ctx.get("estimator", "heuristic"),
        custom_limit=ctx.get("custom_limit"),
    )

    summ = _section(data, "summarization")
    summarization = SummarizationConfig(
        preserve_count=int(summ.get("preserve_count", 4)),
        auto_compact=bool(summ.get("auto_compact", False)),
        auto_compact_threshold=float(summ.get("auto_compact_threshold", 70.0)),
    )

    models_data = _section(data, "models")
    limits_data = models_data.get("context_limits", {})
    models = ModelsConfig(
        context_limits={
            str(k): int(v)
            for k, v in (limits_data.items() if isinstance(limits_data, dict) else [])
            if isinstance(v, int)
        },
        default_context_length=int(models_data.get("default_context_length", 4096)),
    )

    llm_data = _section(data, "llm")
    llm = LLMConfig(
        model=llm_data.get("model"),
        api_base=llm_data.get("api_base"),
        max_tokens=llm_data.get("max_tokens"),
        summary_max_tokens=int(llm_data.get("summary_max_tokens", 500)),
    )

    log_data = _section(data, "logging")
    logging_config = LoggingConfig(
        level=log_data.get("level"),
        verbose=log_data.get("verbose"),
        file=log_data.get("file"),
    )

    extra = {k: v for k, v in data.items() if k not in KNOWN_SECTIONS}

    return Config(
        context=context,
        summarization=summarization,
        models=models,
        llm=llm,
        logging=logging_config,
        extra=extra,
    )


def load_config(project_root: str | None = None, reload: bool = False) -> Config:
    """Load and merge config from all sources.

    Priority order (highest to lowest):
    1. Environment variables
    2. Project config ($project_root/.chatbranch/config.yaml)
    3. User config (~/.config/chatbranch/ or %APPDATA%)
    4. System config (/etc/chatbranch/ or %PROGRAMDATA%)

    Args:
        project_root: Project directory for project-level config.
        reload: Force reload even if cached.
    """
    global _cached_config

    if _cached_config is not None and not reload and project_root is None:
        return _cached_config

    merged: dict[str, Any] = {}
    for path in get_config_paths(project_root):
        config_data = load_yaml_file(path)
        if config_data:
            _log.debug("Loaded config from %s", path)
            merged = deep_merge(merged, config_data)

    merged = deep_merge(merged, env_overrides())
    config = dict_to_config(merged)

    # Cache only the global config (no project_root)
    if project_root is None:
        _cached_config = config

    return config


def get_config() -> Config:
    """Get the cached global config, loading it on first use."""
    if _cached_config is None:
        return load_config()
    return _cached_config


def reset_config() -> None:
    """Reset cached config. Useful for testing or forcing a reload."""
    global _cached_config
    _cached_config = None


def reload_config(project_root: str | None = None) -> Config:
    """Reload config from disk and hand it to every reload callback.

    A failing callback is logged and does not stop the others.
    """
    config = load_config(project_root=project_root, reload=True)
    for callback in list(_reload_callbacks):
        try:
            callback(config)
        except Exception:
            _log.exception("Config reload callback %r failed", callback)
    return config


def on_config_reload(callback: Callable[[Config], None]) -> Callable[[], None]:
    """Subscribe to reloads; call the returned function to unsubscribe."""
    _reload_callbacks.append(callback)

    def unregister() -> None:
        with contextlib.suppress(ValueError):
            _reload_callbacks.remove(callback)

    return unregister
