"""Session layer: streaming state and the ChatSession orchestrator."""

from chatbranch.session.session import ChatSession, ContextFullError
from chatbranch.session.streaming import StreamingSession, StreamingStateError, StreamState

__all__ = [
    "ChatSession",
    "ContextFullError",
    "StreamState",
    "StreamingSession",
    "StreamingStateError",
]
