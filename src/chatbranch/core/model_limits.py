"""Model context-window limits.

Maps model name patterns to their context window sizes so usage can be
tracked against the right ceiling. Patterns are checked in order and the
first match wins, so more specific patterns come before general ones.
"""

from __future__ import annotations

import re
from collections.abc import Mapping

from chatbranch.logging import get_logger

log = get_logger("model_limits")

DEFAULT_CONTEXT_LENGTH = 4096

MODEL_CONTEXT_LIMITS: list[tuple[re.Pattern[str], int]] = [
    (re.compile(p, re.IGNORECASE), n)
    for p, n in (
        # Llama 3.x (128K), Llama 3 base (8K), Llama 2 (4K)
        (r"llama3\.2", 128000),
        (r"llama-3\.2", 128000),
        (r"llama3\.1", 128000),
        (r"llama-3\.1", 128000),
        (r"llama3:.*-instruct", 128000),
        (r"llama3(?!\.)", 8192),
        (r"llama-3(?!\.)", 8192),
        (r"llama2", 4096),
        (r"llama-2", 4096),
        # Mistral family
        (r"mistral-large", 128000),
        (r"mistral-medium", 32000),
        (r"mistral.*nemo", 128000),
        (r"mistral", 32000),
        (r"mixtral", 32000),
        # Qwen
        (r"qwen2\.5", 128000),
        (r"qwen2", 32000),
        (r"qwen", 8192),
        # Phi
        (r"phi-3", 128000),
        (r"phi-2", 2048),
        (r"phi", 4096),
        # Gemma
        (r"gemma2", 8192),
        (r"gemma", 8192),
        # Code models
        (r"codellama", 16384),
        (r"deepseek.*coder", 16384),
        (r"deepseek", 32000),
        # Misc community models
        (r"vicuna", 4096),
        (r"yi", 200000),
        (r"command-r", 128000),
        (r"llava", 4096),
        (r"bakllava", 4096),
        (r"orca", 4096),
        (r"nous-hermes", 8192),
        (r"openhermes", 8192),
        (r"neural-chat", 8192),
        (r"starling", 8192),
        (r"dolphin", 16384),
        (r"zephyr", 32000),
    )
]

_TOOL_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"llama3\.1",
        r"llama3\.2",
        r"llama-3\.1",
        r"llama-3\.2",
        r"mistral.*7b",
        r"mistral-large",
        r"mistral.*nemo",
        r"mixtral",
        r"command-r",
        r"qwen2",
        r"deepseek",
    )
]

_VISION_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"llava",
        r"bakllava",
        r"llama3\.2.*vision",
        r"moondream",
        r"minicpm.*v",
    )
]


def get_model_context_limit(
    model_id: str,
    default: int = DEFAULT_CONTEXT_LENGTH,
) -> int:
    """Get the context window size for a model from the pattern table.

    Args:
        model_id: Model name (e.g., "llama3.1:8b", "mistral:latest")
        default: Size returned when no pattern matches
    """
    for pattern, context_length in MODEL_CONTEXT_LIMITS:
        if pattern.search(model_id):
            return context_length
    return default


def model_supports_tools(model_id: str) -> bool:
    """Check if a model likely supports tool calling."""
    return any(p.search(model_id) for p in _TOOL_PATTERNS)


def model_supports_vision(model_id: str) -> bool:
    """Check if a model supports image input."""
    return any(p.search(model_id) for p in _VISION_PATTERNS)


def format_context_size(tokens: int) -> str:
    """Human-readable context size (e.g., "128K", "8K", "512")."""
    if tokens >= 1000:
        return f"{round(tokens / 1000)}K"
    return str(tokens)


class ModelLimitsTable:
    """Model id -> context window, with explicit per-model overrides.

    Overrides (from config or set at runtime) take precedence over the
    built-in pattern table.
    """

    def __init__(
        self,
        overrides: Mapping[str, int] | None = None,
        default_context_length: int = DEFAULT_CONTEXT_LENGTH,
    ) -> None:
        self._overrides: dict[str, int] = dict(overrides or {})
        self._default = default_context_length

    @property
    def default_context_length(self) -> int:
        return self._default

    def get_context_limit(self, model_id: str) -> int:
        if model_id in self._overrides:
            return self._overrides[model_id]
        return get_model_context_limit(model_id, self._default)

    def set_override(self, model_id: str, tokens: int | None) -> None:
        """Set (or clear, with None) an explicit limit for one model."""
        if tokens is None:
            self._overrides.pop(model_id, None)
            return
        if tokens <= 0:
            raise ValueError(f"Context limit must be positive, got {tokens}")
        log.debug("Context limit override for %s: %d", model_id, tokens)
        self._overrides[model_id] = tokens

    def overrides(self) -> dict[str, int]:
        return dict(self._overrides)
