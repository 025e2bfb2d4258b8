"""Configuration management for chatbranch.

Provides hierarchical YAML-based configuration with:
- System-level config (/etc/chatbranch/ or %PROGRAMDATA%)
- User-level config (~/.config/chatbranch/ or %APPDATA%)
- Project-level config ($project_root/.chatbranch/)
- Environment variable overrides (highest priority)

Example usage:
    from chatbranch.config import load_config

    config = load_config(project_root="/path/to/project")
    print(config.context.warning_threshold)
    print(config.summarization.preserve_count)
"""

from chatbranch.config.loader import (
    deep_merge,
    get_config,
    load_config,
    on_config_reload,
    reload_config,
    reset_config,
)
from chatbranch.config.paths import (
    get_config_paths,
    get_project_config_path,
    get_system_config_path,
    get_user_config_path,
)
from chatbranch.config.schema import (
    Config,
    ContextConfig,
    LLMConfig,
    LoggingConfig,
    ModelsConfig,
    SummarizationConfig,
)

__all__ = [
    # Main API
    "Config",
    "load_config",
    "get_config",
    "reload_config",
    "reset_config",
    "on_config_reload",
    "deep_merge",
    # Schema types
    "ContextConfig",
    "SummarizationConfig",
    "ModelsConfig",
    "LLMConfig",
    "LoggingConfig",
    # Path utilities
    "get_config_paths",
    "get_system_config_path",
    "get_user_config_path",
    "get_project_config_path",
]
