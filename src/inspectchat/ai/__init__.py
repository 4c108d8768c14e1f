"""Chat protocol client, conversation history, and prompt helpers."""

from .ai_types import ChatMessage, StreamState
from .client import ChatClient, ChunkCallback
from .errors import (
    ChatError,
    ConfigurationRejected,
    EmptyResponseBody,
    ProtocolError,
    StreamLineSkipped,
    TransportError,
)
from .history import ConversationHistory
from .prompts import format_analysis_prompt
from .transport import TransportSettings, build_transport

__all__ = [
    "ChatClient",
    "ChatError",
    "ChatMessage",
    "ChunkCallback",
    "ConfigurationRejected",
    "ConversationHistory",
    "EmptyResponseBody",
    "ProtocolError",
    "StreamLineSkipped",
    "StreamState",
    "TransportError",
    "TransportSettings",
    "build_transport",
    "format_analysis_prompt",
]
