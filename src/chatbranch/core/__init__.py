"""Core modules: token estimation, model limits, budgeting, summarization."""

from chatbranch.core.llm import LiteLLMProvider, LLMProvider, Message, Role
from chatbranch.core.budget import ContextBudgetTracker, RecomputeThrottle
from chatbranch.core.model_limits import (
    DEFAULT_CONTEXT_LENGTH,
    ModelLimitsTable,
    format_context_size,
    get_model_context_limit,
)
from chatbranch.core.summarization import (
    SummarizationPolicy,
    SummarizationSelection,
    SummaryResult,
)
from chatbranch.core.tokens import (
    TokenEstimate,
    TokenEstimator,
    count_tokens,
    estimate_message_tokens,
    estimate_tokens,
    format_token_count,
    invalidate_cache,
)

__all__ = [
    # LLM
    "LLMProvider",
    "LiteLLMProvider",
    "Message",
    "Role",
    # Budget
    "ContextBudgetTracker",
    "RecomputeThrottle",
    # Model limits
    "DEFAULT_CONTEXT_LENGTH",
    "ModelLimitsTable",
    "format_context_size",
    "get_model_context_limit",
    # Summarization
    "SummarizationPolicy",
    "SummarizationSelection",
    "SummaryResult",
    # Tokens
    "TokenEstimate",
    "TokenEstimator",
    "count_tokens",
    "estimate_message_tokens",
    "estimate_tokens",
    "format_token_count",
    "invalidate_cache",
]
