"""chatbranch: branching chat conversations with context-window budgeting."""

__version__ = "0.1.0"

# Public API
from chatbranch.config import Config, get_config, load_config
from chatbranch.core import (
    ContextBudgetTracker,
    LiteLLMProvider,
    LLMProvider,
    Message,
    Role,
    SummarizationPolicy,
    TokenEstimator,
)
from chatbranch.context import (
    BranchInfo,
    ContextUsage,
    MessageDraft,
    MessageNode,
    MessageTree,
    UsageLevel,
)
from chatbranch.logging import get_logger, setup_logging
from chatbranch.session import ChatSession, ContextFullError, StreamingSession, StreamingStateError

__all__ = [
    # Main entry point
    "ChatSession",
    "ContextFullError",
    # Tree
    "BranchInfo",
    "MessageDraft",
    "MessageNode",
    "MessageTree",
    # Budget
    "ContextBudgetTracker",
    "ContextUsage",
    "TokenEstimator",
    "UsageLevel",
    # Streaming
    "StreamingSession",
    "StreamingStateError",
    # Summarization
    "SummarizationPolicy",
    # Config
    "Config",
    "load_config",
    "get_config",
    # Logging
    "get_logger",
    "setup_logging",
    # LLM
    "LLMProvider",
    "LiteLLMProvider",
    "Message",
    "Role",
]
