"""Shared value types for the chat engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Literal

ChatRole = Literal["system", "user", "assistant"]
_VALID_ROLES: frozenset[str] = frozenset({"system", "user", "assistant"})


class StreamState(str, Enum):
    """Lifecycle of a single streamed chat request."""

    IDLE = "idle"
    CONNECTING = "connecting"
    STREAMING = "streaming"
    DONE = "done"
    FAILED = "failed"


@dataclass(slots=True, frozen=True)
class ChatMessage:
    """Immutable role-tagged message.

    ``images`` holds base64-encoded payloads and is only serialized for user
    messages; whether they are sent at all is decided by the client.
    """

    role: ChatRole
    content: str
    images: tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        if self.role not in _VALID_ROLES:
            raise ValueError(f"Unsupported chat role: {self.role!r}")
        if not isinstance(self.images, tuple):
            object.__setattr__(self, "images", tuple(self.images))

    @classmethod
    def user(cls, content: str, images: Iterable[str] | None = None) -> ChatMessage:
        return cls(role="user", content=content, images=tuple(images or ()))

    @classmethod
    def assistant(cls, content: str) -> ChatMessage:
        return cls(role="assistant", content=content)

    @classmethod
    def system(cls, content: str) -> ChatMessage:
        return cls(role="system", content=content)

    def without_images(self) -> ChatMessage:
        if not self.images:
            return self
        return ChatMessage(role=self.role, content=self.content)

    def to_payload(self) -> dict[str, Any]:
        """Return a new JSON-ready dict; callers may mutate it freely."""

        payload: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.images and self.role == "user":
            payload["images"] = list(self.images)
        return payload
