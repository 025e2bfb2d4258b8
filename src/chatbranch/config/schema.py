"""Configuration schema dataclasses for chatbranch.

Defines the structure of configuration at all levels (system, user, project).
All fields have defaults so partial configs merge together cleanly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class ContextConfig:
    """Context-window budgeting configuration.

    Example config.yaml:
        context:
          warning_threshold: 85
          critical_threshold: 95
          throttle_tokens: 20
          throttle_interval: 0.15
          estimator: heuristic
          custom_limit: 16384
    """

    warning_threshold: float = 85.0  # Percent of the window
    critical_threshold: float = 95.0
    throttle_tokens: int = 20  # Recompute every N streamed tokens...
    throttle_interval: float = 0.15  # ...or every N seconds, whichever first
    estimator: str = "heuristic"  # "heuristic" or "tiktoken"
    custom_limit: int | None = None  # Overrides the model-derived window


@dataclass
class SummarizationConfig:
    """Summarization / auto-compact configuration."""

    preserve_count: int = 4  # Recent messages never summarized
    auto_compact: bool = False
    auto_compact_threshold: float = 70.0  # Percent of the window


@dataclass
class ModelsConfig:
    """Model context-window overrides.

    Example config.yaml:
        models:
          default_context_length: 4096
          context_limits:
            "llama3.1:8b": 32768
    """

    context_limits: dict[str, int] = field(default_factory=dict)
    default_context_length: int = 4096


@dataclass
class LLMConfig:
    """LLM transport configuration."""

    model: str | None = None  # e.g., "ollama/llama3.1"
    api_base: str | None = None  # Custom endpoint (e.g., local Ollama)
    max_tokens: int | None = None  # Default: 4096
    summary_max_tokens: int = 500


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str | None = None  # DEBUG, INFO, WARNING, ERROR
    verbose: int | None = None  # 0-4, takes precedence over level
    file: str | None = None  # Log file path


@dataclass
class Config:
    """Root configuration object.

    Aggregates all configuration sections. All fields use default factories
    so partial configs work correctly with deep merging.
    """

    context: ContextConfig = field(default_factory=ContextConfig)
    summarization: SummarizationConfig = field(default_factory=SummarizationConfig)
    models: ModelsConfig = field(default_factory=ModelsConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # Extension point for future config sections
    extra: dict[str, Any] = field(default_factory=dict)
