from __future__ import annotations

from .client import ChatStream, CompletionClient, StreamState
from .sse import ChatMessage, CompletionResult, StreamAccumulator, TokenUsage

__all__ = [
    "ChatMessage",
    "ChatStream",
    "CompletionClient",
    "CompletionResult",
    "StreamAccumulator",
    "StreamState",
    "TokenUsage",
]
