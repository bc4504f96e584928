"""Error kinds raised by the chat pipeline.

Everything raised after the event stream has opened is a ``ChatError`` and is
turned into an ``error`` event by the streamer; ``ValidationError`` is the only
one that surfaces as an HTTP status.
"""
from __future__ import annotations


class ChatError(Exception):
    kind: str = "chat_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ChatError):
    kind = "validation_error"


class ToolFetchError(ChatError):
    kind = "tool_fetch_error"


class ModelStreamError(ChatError):
    kind = "model_stream_error"


class ProtocolViolationError(ChatError):
    kind = "protocol_violation"
