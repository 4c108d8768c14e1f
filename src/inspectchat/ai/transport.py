"""Build HTTP clients from configuration snapshots."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

import httpx

from ..services.settings import Settings, is_valid_port

__all__ = ["TransportSettings", "TransportFactory", "build_transport"]

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class TransportSettings:
    """Point-in-time copy of the fields that shape the HTTP client."""

    connect_timeout: float = 30.0
    write_timeout: float = 30.0
    read_timeout: float = 60.0
    use_proxy: bool = False
    proxy_host: str = ""
    proxy_port: int = 8080

    @classmethod
    def from_settings(cls, settings: Settings) -> TransportSettings:
        return cls(
            connect_timeout=settings.connect_timeout,
            write_timeout=settings.write_timeout,
            read_timeout=settings.read_timeout,
            use_proxy=settings.use_proxy,
            proxy_host=settings.proxy_host,
            proxy_port=settings.proxy_port,
        )

    @property
    def proxy_url(self) -> str | None:
        """Forward proxy address, or ``None`` for a direct connection."""

        if not self.use_proxy:
            return None
        host = (self.proxy_host or "").strip()
        if not host or not is_valid_port(self.proxy_port):
            return None
        return f"http://{host}:{self.proxy_port}"

    def timeout(self) -> httpx.Timeout:
        return httpx.Timeout(
            connect=self.connect_timeout,
            read=self.read_timeout,
            write=self.write_timeout,
            pool=self.connect_timeout,
        )


TransportFactory = Callable[[TransportSettings], httpx.Client]


def build_transport(
    settings: TransportSettings,
    *,
    transport: httpx.BaseTransport | None = None,
) -> httpx.Client:
    """Return a new ``httpx.Client`` honouring the snapshot's timeouts and proxy.

    Environment proxy variables are ignored so that only the configured
    proxy, if any, is used. Redirects are followed; a 307/308 replays the
    POST body, a 301/302/303 turns it into a GET.
    """

    proxy = settings.proxy_url
    if settings.use_proxy and proxy is None:
        LOGGER.debug("Proxy enabled but host/port incomplete; using a direct connection")
    LOGGER.debug(
        "Building HTTP transport (connect=%ss, write=%ss, read=%ss, proxy=%s)",
        settings.connect_timeout,
        settings.write_timeout,
        settings.read_timeout,
        proxy or "direct",
    )
    return httpx.Client(
        timeout=settings.timeout(),
        proxy=proxy,
        transport=transport,
        trust_env=False,
        follow_redirects=True,
    )
