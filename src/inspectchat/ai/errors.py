"""Error types raised by the chat engine.

Transport failures and non-success HTTP responses are kept apart so callers
can tell "the server never answered" from "the server answered with an
error". Malformed stream lines are never raised; they are recorded as
:class:`StreamLineSkipped` entries and logged.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

__all__ = [
    "ChatError",
    "ConfigurationRejected",
    "TransportError",
    "EmptyResponseBody",
    "ProtocolError",
    "StreamLineSkipped",
]

NO_ERROR_DETAILS = "No error details"


class ChatError(Exception):
    """Base class for every error surfaced by :mod:`inspectchat`."""


class ConfigurationRejected(ChatError, ValueError):
    """A configuration write carried an invalid value."""

    def __init__(self, field: str, value: Any, message: str) -> None:
        super().__init__(message)
        self.field = field
        self.value = value
        self.message = message


class TransportError(ChatError):
    """The request could not be delivered or its body could not be read."""


class EmptyResponseBody(TransportError):
    """The server reported success but sent nothing back."""

    def __init__(self, message: str = "Empty response from server") -> None:
        super().__init__(message)


class ProtocolError(ChatError):
    """The server answered with a status outside the 2xx range."""

    def __init__(self, status_code: int, body: str | None) -> None:
        self.status_code = status_code
        self.body = body if body else NO_ERROR_DETAILS
        super().__init__(f"Unexpected response code: {status_code}\nError: {self.body}")


@dataclass(slots=True, frozen=True)
class StreamLineSkipped:
    """Record of a stream line that could not be turned into a chunk."""

    line_number: int
    reason: str
    line: str
