"""Shared pytest fixtures."""

from __future__ import annotations

import pytest

from inspectchat.ai.client import ChatClient
from inspectchat.services.config_store import ConfigurationStore
from tests.helpers import FakeChatServer


@pytest.fixture
def server() -> FakeChatServer:
    return FakeChatServer()


@pytest.fixture
def config() -> ConfigurationStore:
    return ConfigurationStore()


@pytest.fixture
def client(config: ConfigurationStore, server: FakeChatServer):
    chat_client = ChatClient(config, transport_factory=server.factory)
    yield chat_client
    chat_client.close()
