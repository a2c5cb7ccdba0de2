"""Model providers."""

from .base import (
    DoneChunk,
    GenerateOptions,
    LangChainModelProvider,
    ModelProvider,
    ModelResponse,
    ReasoningChunk,
    StreamChunk,
    TokenChunk,
    ToolCallChunk,
    ToolCallRequest,
    Usage,
)

__all__ = [
    "DoneChunk",
    "GenerateOptions",
    "LangChainModelProvider",
    "ModelProvider",
    "ModelResponse",
    "ReasoningChunk",
    "StreamChunk",
    "TokenChunk",
    "ToolCallChunk",
    "ToolCallRequest",
    "Usage",
]
