"""Shared test helpers and stub classes.

Import from here instead of duplicating these classes in individual test files.
"""

from __future__ import annotations

import json
from typing import Any, Iterable

import httpx

from inspectchat.ai.transport import TransportSettings, build_transport


def ndjson_body(*chunks: str, extra_lines: Iterable[str] = ()) -> bytes:
    """Encode content chunks as a line-delimited chat stream.

    ``extra_lines`` are written verbatim after the content events and before
    the closing ``done`` event.
    """

    lines = [json.dumps({"message": {"role": "assistant", "content": chunk}, "done": False}) for chunk in chunks]
    lines.extend(extra_lines)
    lines.append(json.dumps({"message": {"role": "assistant", "content": ""}, "done": True}))
    return ("\n".join(lines) + "\n").encode("utf-8")


class FakeChatServer:
    """Scripted chat endpoint served through ``httpx.MockTransport``.

    Replies are consumed in order; once the script runs out every request
    gets a single ``"ok"`` chunk.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.replies: list[httpx.Response | Exception] = []
        self.built: list[TransportSettings] = []
        self.clients: list[httpx.Client] = []

    def reply_stream(self, *chunks: str, extra_lines: Iterable[str] = ()) -> None:
        self.replies.append(httpx.Response(200, content=ndjson_body(*chunks, extra_lines=extra_lines)))

    def reply_raw(self, status_code: int, body: bytes | str = b"") -> None:
        content = body.encode("utf-8") if isinstance(body, str) else body
        self.replies.append(httpx.Response(status_code, content=content))

    def fail_with(self, error: Exception) -> None:
        self.replies.append(error)

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if not self.replies:
            return httpx.Response(200, content=ndjson_body("ok"))
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    def factory(self, settings: TransportSettings) -> httpx.Client:
        self.built.append(settings)
        client = build_transport(settings, transport=httpx.MockTransport(self.handle))
        self.clients.append(client)
        return client

    def payload(self, index: int = -1) -> dict[str, Any]:
        return json.loads(self.requests[index].content)
