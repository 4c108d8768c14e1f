"""Conversation history kept between chat turns."""

from __future__ import annotations

import logging
from threading import Lock
from typing import Any

from .ai_types import ChatMessage

LOGGER = logging.getLogger(__name__)

__all__ = ["ConversationHistory"]


class ConversationHistory:
    """Ordered log of completed user/assistant turns.

    Entries are immutable :class:`ChatMessage` records, so handing them out
    never exposes mutable state. System messages are never stored. There is
    no size cap; long sessions grow without bound until :meth:`clear`.
    """

    def __init__(self) -> None:
        self._messages: list[ChatMessage] = []
        self._lock = Lock()

    def append_turn(self, user: ChatMessage, assistant: ChatMessage) -> None:
        """Record a finished turn; both messages are stored or neither is."""

        if user.role != "user":
            raise ValueError(f"Expected a user message, got {user.role!r}")
        if assistant.role != "assistant":
            raise ValueError(f"Expected an assistant message, got {assistant.role!r}")
        with self._lock:
            self._messages.extend((user, assistant))
            count = len(self._messages)
        LOGGER.debug("Conversation history now holds %s message(s)", count)

    def messages(self) -> list[ChatMessage]:
        with self._lock:
            return list(self._messages)

    def as_payload(self, *, include_images: bool = True) -> list[dict[str, Any]]:
        """Return fresh wire dicts for every stored message.

        With ``include_images=False`` user images are left out, for models
        that cannot take them.
        """

        with self._lock:
            stored = list(self._messages)
        if not include_images:
            stored = [message.without_images() for message in stored]
        return [message.to_payload() for message in stored]

    def clear(self) -> None:
        with self._lock:
            self._messages.clear()
        LOGGER.debug("Conversation history cleared")

    def __len__(self) -> int:
        with self._lock:
            return len(self._messages)
