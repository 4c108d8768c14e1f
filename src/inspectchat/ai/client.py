"""Streaming chat client for servers speaking the line-delimited JSON chat protocol."""

from __future__ import annotations

import json
import logging
from threading import Lock
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterable, List, Mapping, Sequence

import httpx

from ..services.settings import Settings
from .ai_types import ChatMessage, StreamState
from .errors import (
    NO_ERROR_DETAILS,
    EmptyResponseBody,
    ProtocolError,
    StreamLineSkipped,
    TransportError,
)
from .history import ConversationHistory
from .prompts import format_analysis_prompt
from .transport import TransportFactory, TransportSettings, build_transport

if TYPE_CHECKING:  # pragma: no cover - imported for type checking only
    from ..services.config_store import ConfigurationStore

__all__ = ["ChatClient", "ChunkCallback"]

LOGGER = logging.getLogger(__name__)

ChunkCallback = Callable[[str], None]


class ChatClient:
    """Blocking chat client with conversation memory and hot-reloaded transport.

    The client subscribes to the configuration store and rebuilds its HTTP
    transport inside the change notification, so a call issued after any
    configuration write always sees the new timeouts and proxy. A call that
    is already streaming keeps the transport it started with.

    Calls are serialized per client: a second ``chat``/``analyze`` issued
    while one is in flight waits for it to finish. Chunk callbacks run on
    the thread driving the call; hosts that need UI-thread delivery must
    marshal each chunk themselves. There is no mid-stream cancellation; only
    the transport timeouts bound a call.
    """

    def __init__(
        self,
        config: ConfigurationStore,
        *,
        transport_factory: TransportFactory | None = None,
        history: ConversationHistory | None = None,
    ) -> None:
        self._config = config
        self._transport_factory = transport_factory or build_transport
        self._history = history or ConversationHistory()
        self._transport_lock = Lock()
        self._turn_lock = Lock()
        self._in_use: httpx.Client | None = None
        self._retired: List[httpx.Client] = []
        self._state = StreamState.IDLE
        self._last_skipped: tuple[StreamLineSkipped, ...] = ()
        self._closed = False
        self._http = self._build_http(config.snapshot())
        config.subscribe(self._on_config_changed)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    @property
    def config(self) -> ConfigurationStore:
        return self._config

    @property
    def state(self) -> StreamState:
        return self._state

    @property
    def is_multimodal(self) -> bool:
        return self._config.is_multimodal

    @property
    def history(self) -> list[ChatMessage]:
        return self._history.messages()

    @property
    def last_skipped(self) -> tuple[StreamLineSkipped, ...]:
        """Stream lines ignored during the most recent call."""

        return self._last_skipped

    def chat(
        self,
        prompt: str,
        system_prompt: str | None = "",
        images: Sequence[str] | None = None,
        on_chunk: ChunkCallback | None = None,
    ) -> str:
        """Run one chat turn, streaming chunks to ``on_chunk``; return the full reply.

        Raises:
            TransportError: The server could not be reached or the body
                could not be read.
            ProtocolError: The server answered with a non-2xx status.
        """

        return self._run_turn(prompt, system_prompt, images, on_chunk, analysis=False)

    def chat_text(
        self,
        prompt: str,
        system_prompt: str | None = "",
        images: Sequence[str] | None = None,
    ) -> str:
        """Buffered variant of :meth:`chat` for callers that do not stream."""

        return self.chat(prompt, system_prompt, images)

    def analyze(
        self,
        request_text: str,
        response_text: str,
        question: str,
        images: Sequence[str] | None = None,
        on_chunk: ChunkCallback | None = None,
    ) -> str:
        """Ask a one-shot question about an HTTP exchange.

        The configured system prompt is applied when enabled. Neither the
        prompt nor the reply is added to the conversation history, and the
        existing history is not sent.
        """

        prompt = format_analysis_prompt(request_text, response_text, question)
        system_prompt = self._config.active_system_prompt()
        return self._run_turn(prompt, system_prompt, images, on_chunk, analysis=True)

    def clear_history(self) -> None:
        self._history.clear()

    def build_request(
        self,
        prompt: str,
        system_prompt: str | None = "",
        images: Sequence[str] | None = None,
        *,
        analysis: bool = False,
        settings: Settings | None = None,
    ) -> Dict[str, Any]:
        """Return the JSON envelope that a call with these arguments would send."""

        active = settings or self._config.snapshot()
        user_message = self._build_user_message(prompt, images, active)
        return self._build_payload(user_message, system_prompt, active, analysis=analysis)

    def close(self) -> None:
        """Detach from the configuration store and release network resources."""

        if self._closed:
            return
        self._closed = True
        self._config.unsubscribe(self._on_config_changed)
        with self._transport_lock:
            current = self._http
            retired = [client for client in self._retired if client is not self._in_use]
            self._retired = [client for client in self._retired if client is self._in_use]
            if current is self._in_use:
                self._retired.append(current)
                current = None
        for client in retired:
            client.close()
        if current is not None:
            current.close()

    def __enter__(self) -> ChatClient:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Turn execution
    # ------------------------------------------------------------------
    def _run_turn(
        self,
        prompt: str,
        system_prompt: str | None,
        images: Sequence[str] | None,
        on_chunk: ChunkCallback | None,
        *,
        analysis: bool,
    ) -> str:
        if self._closed:
            raise RuntimeError("ChatClient is closed")
        with self._turn_lock:
            settings = self._config.snapshot()
            user_message = self._build_user_message(prompt, images, settings)
            payload = self._build_payload(user_message, system_prompt, settings, analysis=analysis)
            headers = self._request_headers(settings)
            LOGGER.debug(
                "Starting streamed chat via %s with %s message(s)%s",
                settings.model,
                len(payload["messages"]),
                " (analysis)" if analysis else "",
            )
            if settings.debug_logging:
                self._log_prompt_payload(payload)

            http = self._acquire_http()
            try:
                reply = self._stream(http, settings.chat_url, payload, headers, on_chunk)
            finally:
                self._release_http(http)

            if not analysis and reply:
                self._history.append_turn(user_message, ChatMessage.assistant(reply))
            return reply

    def _stream(
        self,
        http: httpx.Client,
        url: str,
        payload: Mapping[str, Any],
        headers: Sequence[tuple[bytes, bytes]],
        on_chunk: ChunkCallback | None,
    ) -> str:
        self._state = StreamState.CONNECTING
        self._last_skipped = ()
        chunks: List[str] = []
        skipped: List[StreamLineSkipped] = []
        try:
            with http.stream("POST", url, json=payload, headers=list(headers)) as response:
                if not response.is_success:
                    raise ProtocolError(response.status_code, self._read_error_body(response))

                self._state = StreamState.STREAMING
                received_any = False
                for line_number, line in enumerate(response.iter_lines(), start=1):
                    received_any = True
                    if not line.strip():
                        continue
                    try:
                        content = _extract_content(line)
                    except ValueError as exc:
                        entry = StreamLineSkipped(line_number=line_number, reason=str(exc), line=line)
                        skipped.append(entry)
                        LOGGER.debug("Skipping stream line %s: %s", line_number, exc)
                        continue
                    if not content:
                        continue
                    if on_chunk is not None:
                        on_chunk(content)
                    chunks.append(content)
                if not received_any:
                    raise EmptyResponseBody()
        except httpx.TransportError as exc:
            self._state = StreamState.FAILED
            LOGGER.debug("Chat request to %s failed: %s", url, exc)
            raise TransportError(str(exc) or exc.__class__.__name__) from exc
        except httpx.StreamError as exc:
            self._state = StreamState.FAILED
            raise TransportError(str(exc) or exc.__class__.__name__) from exc
        except BaseException:
            self._state = StreamState.FAILED
            raise
        finally:
            self._last_skipped = tuple(skipped)

        if skipped:
            LOGGER.info("Ignored %s malformed stream line(s) from %s", len(skipped), url)
        self._state = StreamState.DONE
        return "".join(chunks)

    @staticmethod
    def _read_error_body(response: httpx.Response) -> str:
        try:
            response.read()
            body = response.text
        except (httpx.HTTPError, httpx.StreamError, UnicodeDecodeError):
            LOGGER.debug("Unable to read error body for status %s", response.status_code)
            return NO_ERROR_DETAILS
        return body or NO_ERROR_DETAILS

    # ------------------------------------------------------------------
    # Request construction
    # ------------------------------------------------------------------
    @staticmethod
    def _build_user_message(prompt: str, images: Sequence[str] | None, settings: Settings) -> ChatMessage:
        attached: Iterable[str] = ()
        if settings.is_multimodal and images:
            attached = images
        return ChatMessage.user(prompt or "", attached)

    def _build_payload(
        self,
        user_message: ChatMessage,
        system_prompt: str | None,
        settings: Settings,
        *,
        analysis: bool,
    ) -> Dict[str, Any]:
        messages: List[Dict[str, Any]] = []
        if system_prompt:
            messages.append(ChatMessage.system(system_prompt).to_payload())
        if not analysis:
            messages.extend(self._history.as_payload(include_images=settings.is_multimodal))
        messages.append(user_message.to_payload())
        return {
            "model": settings.model,
            "stream": True,
            "messages": messages,
        }

    @staticmethod
    def _request_headers(settings: Settings) -> list[tuple[bytes, bytes]]:
        # Names and values go out as UTF-8 bytes; httpx only encodes str as ASCII.
        headers: list[tuple[bytes, bytes]] = []
        for header in settings.custom_headers:
            if not header.is_sendable():
                continue
            value = header.value if header.value is not None else ""
            headers.append((header.name.strip().encode("utf-8"), value.encode("utf-8")))
        return headers

    def _log_prompt_payload(self, payload: Mapping[str, Any]) -> None:
        redacted = dict(payload)
        redacted["messages"] = [
            {**message, "images": f"<{len(message['images'])} image(s)>"} if "images" in message else message
            for message in payload.get("messages", [])
        ]
        try:
            serialized = json.dumps(redacted, ensure_ascii=False, indent=2)
        except (TypeError, ValueError):
            LOGGER.debug("Chat payload (unserializable): %s", redacted)
        else:
            LOGGER.debug("Chat payload:\n%s", serialized)

    # ------------------------------------------------------------------
    # Transport lifecycle
    # ------------------------------------------------------------------
    def _build_http(self, settings: Settings) -> httpx.Client:
        return self._transport_factory(TransportSettings.from_settings(settings))

    def _on_config_changed(self, store: ConfigurationStore) -> None:
        replacement = self._build_http(store.snapshot())
        with self._transport_lock:
            previous = self._http
            self._http = replacement
            if previous is self._in_use:
                self._retired.append(previous)
                previous = None
        if previous is not None:
            previous.close()
        LOGGER.debug("HTTP transport rebuilt after configuration change")

    def _acquire_http(self) -> httpx.Client:
        with self._transport_lock:
            self._in_use = self._http
            return self._http

    def _release_http(self, http: httpx.Client) -> None:
        with self._transport_lock:
            self._in_use = None
            retired, self._retired = self._retired, []
        for client in retired:
            client.close()


def _extract_content(line: str) -> str:
    """Return the content chunk carried by one stream event.

    Raises ``ValueError`` for lines that are not JSON objects of the
    expected shape; events without a ``message`` yield an empty string.
    """

    try:
        event = json.loads(line)
    except json.JSONDecodeError as exc:
        raise ValueError(f"invalid JSON: {exc.msg}") from exc
    if not isinstance(event, dict):
        raise ValueError("event is not a JSON object")
    if event.get("error"):
        raise ValueError(f"server error event: {event['error']}")
    message = event.get("message")
    if message is None:
        return ""
    if not isinstance(message, dict):
        raise ValueError("message is not an object")
    content = message.get("content")
    if content is None:
        return ""
    if not isinstance(content, str):
        raise ValueError("message content is not a string")
    return content
