from supportdesk.services.llm.base import (
    CompletionError,
    CompletionProvider,
    CompletionRequest,
    FatalGenerationError,
    RunSnapshot,
    RunStatus,
    StaleThreadError,
    StatusChange,
    TextDelta,
    ToolCall,
    TransientGenerationError,
)
from supportdesk.services.llm.openai_provider import OpenAIProvider

__all__ = [
    "CompletionError",
    "CompletionProvider",
    "CompletionRequest",
    "FatalGenerationError",
    "OpenAIProvider",
    "RunSnapshot",
    "RunStatus",
    "StaleThreadError",
    "StatusChange",
    "TextDelta",
    "ToolCall",
    "TransientGenerationError",
]
