"""LLM provider abstraction."""

from chatbranch.core.llm.provider import (
    CompletionResult,
    LLMProvider,
    Message,
    Role,
    StreamChunk,
    ToolCall,
)
from chatbranch.core.llm.litellm_provider import LiteLLMProvider
from chatbranch.core.llm.summary_generator import LLMSummaryGenerator, SummaryGenerator

__all__ = [
    # Provider protocol and implementations
    "LLMProvider",
    "LiteLLMProvider",
    # Transport types
    "CompletionResult",
    "Message",
    "Role",
    "StreamChunk",
    "ToolCall",
    # Summaries
    "SummaryGenerator",
    "LLMSummaryGenerator",
]
