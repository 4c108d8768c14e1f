"""Tests for the observable configuration store."""

from __future__ import annotations

import logging
import threading

import pytest

from inspectchat.ai.errors import ConfigurationRejected
from inspectchat.services.config_store import ConfigurationStore, ValidationResult
from inspectchat.services.settings import CustomHeader, Settings


def _recorder(store: ConfigurationStore) -> list[str]:
    seen: list[str] = []
    store.subscribe(lambda config: seen.append(config.model))
    return seen


def test_defaults_match_settings_defaults() -> None:
    store = ConfigurationStore()

    assert store.snapshot() == Settings()
    assert store.chat_url == "http://localhost:11434/api/chat"
    assert store.custom_headers == []


def test_accepted_write_notifies_with_new_value() -> None:
    store = ConfigurationStore()
    seen = _recorder(store)

    result = store.set_model("llama3")

    assert result.ok
    assert bool(result)
    assert seen == ["llama3"]


def test_observers_run_in_registration_order() -> None:
    store = ConfigurationStore()
    calls: list[str] = []
    store.subscribe(lambda _: calls.append("first"))
    store.subscribe(lambda _: calls.append("second"))

    store.set_server_base_url("http://other:1234")

    assert calls == ["first", "second"]


def test_failing_observer_is_isolated(caplog: pytest.LogCaptureFixture) -> None:
    store = ConfigurationStore()
    calls: list[str] = []

    def _broken(_: ConfigurationStore) -> None:
        raise RuntimeError("observer exploded")

    store.subscribe(_broken)
    store.subscribe(lambda config: calls.append(config.model))

    with caplog.at_level(logging.ERROR):
        result = store.set_model("still-applied")

    assert result.ok
    assert store.model == "still-applied"
    assert calls == ["still-applied"]
    assert "observer" in caplog.text


def test_unsubscribe_stops_notifications() -> None:
    store = ConfigurationStore()
    calls: list[str] = []

    def _observer(config: ConfigurationStore) -> None:
        calls.append(config.model)

    store.subscribe(_observer)
    store.set_model("one")
    store.unsubscribe(_observer)
    store.unsubscribe(_observer)
    store.set_model("two")

    assert calls == ["one"]


@pytest.mark.parametrize(
    ("setter", "value"),
    [
        ("set_connect_timeout", 0),
        ("set_write_timeout", -1),
        ("set_read_timeout", True),
        ("set_proxy_port", 0),
        ("set_proxy_port", 65536),
        ("set_proxy_port", "8080"),
        ("set_chat_path", ""),
        ("set_chat_path", "   "),
        ("set_multimodal", "false"),
        ("set_use_proxy", 1),
        ("set_debug_logging", None),
        ("set_proxy_host", 8080),
        ("set_custom_headers", "garbage"),
        ("set_custom_headers", [42]),
        ("set_custom_headers", [("X-Only-Name",)]),
    ],
)
def test_invalid_writes_change_nothing_and_notify_nobody(setter: str, value: object) -> None:
    store = ConfigurationStore()
    before = store.snapshot()
    seen = _recorder(store)

    result = getattr(store, setter)(value)

    assert not result.ok
    assert result.message
    assert store.snapshot() == before
    assert seen == []


def test_rejection_can_be_raised() -> None:
    store = ConfigurationStore()

    with pytest.raises(ConfigurationRejected) as excinfo:
        store.set_proxy_port(70000).raise_for_error()

    assert excinfo.value.field == "proxy_port"
    assert excinfo.value.value == 70000
    assert isinstance(excinfo.value, ValueError)


def test_accepted_result_passes_through_raise_for_error() -> None:
    result = ConfigurationStore().set_proxy_port(3128)

    assert result.raise_for_error() is result
    assert result == ValidationResult.accepted("proxy_port", 3128)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("api/chat", "/api/chat"),
        ("/v1/chat", "/v1/chat"),
        ("  chat  ", "/chat"),
    ],
)
def test_chat_path_is_normalized(raw: str, expected: str) -> None:
    store = ConfigurationStore()

    store.set_chat_path(raw)

    assert store.chat_path == expected
    assert store.chat_url.endswith(expected)


def test_timeouts_and_port_accept_boundaries() -> None:
    store = ConfigurationStore()

    assert store.set_connect_timeout(0.5).ok
    assert store.set_proxy_port(1).ok
    assert store.set_proxy_port(65535).ok
    assert store.connect_timeout == 0.5
    assert store.proxy_port == 65535


def test_proxy_host_is_trimmed() -> None:
    store = ConfigurationStore()

    store.set_proxy_host("  127.0.0.1 ")

    assert store.proxy_host == "127.0.0.1"


def test_header_edits_notify_each_time() -> None:
    store = ConfigurationStore()
    seen = _recorder(store)

    store.add_custom_header("X-One", "1")
    store.add_custom_header("X-Two", "2")
    store.update_custom_header(0, value="uno")
    store.remove_custom_header(1)

    assert store.custom_headers == [CustomHeader("X-One", "uno")]
    assert len(seen) == 4


def test_header_edits_out_of_range_are_rejected() -> None:
    store = ConfigurationStore()
    seen = _recorder(store)

    assert not store.remove_custom_header(0).ok
    assert not store.update_custom_header(3, name="X").ok
    assert not store.remove_custom_header(CustomHeader("X-Missing")).ok
    assert seen == []


def test_custom_headers_accept_mixed_shapes() -> None:
    store = ConfigurationStore()

    store.set_custom_headers([{"name": "A", "value": "1"}, ("B", "2"), CustomHeader("C")])

    assert store.custom_headers == [CustomHeader("A", "1"), CustomHeader("B", "2"), CustomHeader("C", "")]


def test_custom_headers_property_is_a_copy() -> None:
    store = ConfigurationStore()
    store.add_custom_header("X-Keep", "1")

    store.custom_headers.clear()

    assert len(store.custom_headers) == 1


def test_snapshot_is_detached() -> None:
    store = ConfigurationStore()
    snapshot = store.snapshot()

    snapshot.model = "mutated"
    snapshot.custom_headers.append(CustomHeader("X"))

    assert store.model != "mutated"
    assert store.custom_headers == []


def test_update_applies_all_fields_with_one_notification() -> None:
    store = ConfigurationStore()
    seen = _recorder(store)

    result = store.update(model="mistral", read_timeout=120, chat_path="v2/chat")

    assert result.ok
    assert seen == ["mistral"]
    assert store.read_timeout == 120.0
    assert store.chat_path == "/v2/chat"


def test_update_is_all_or_nothing() -> None:
    store = ConfigurationStore()
    before = store.snapshot()
    seen = _recorder(store)

    result = store.update(model="mistral", proxy_port=0)

    assert not result.ok
    assert result.field == "proxy_port"
    assert store.snapshot() == before
    assert seen == []


def test_update_rejects_unknown_fields() -> None:
    with pytest.raises(TypeError):
        ConfigurationStore().update(api_key="nope")


def test_batch_defers_to_a_single_notification() -> None:
    store = ConfigurationStore()
    seen = _recorder(store)

    with store.batch():
        store.set_model("a")
        with store.batch():
            store.set_model("b")
        assert seen == []
        store.set_use_proxy(True)

    assert seen == ["b"]


def test_batch_without_changes_is_silent() -> None:
    store = ConfigurationStore()
    seen = _recorder(store)

    with store.batch():
        store.set_proxy_port(-1)

    assert seen == []


def test_active_system_prompt_respects_toggle() -> None:
    store = ConfigurationStore()
    store.set_system_prompt("Be precise.")

    assert store.active_system_prompt() == ""
    store.set_use_system_prompt(True)
    assert store.active_system_prompt() == "Be precise."


def test_store_copies_seed_settings() -> None:
    seed = Settings(model="seeded")
    store = ConfigurationStore.from_settings(seed)

    seed.model = "changed"

    assert store.model == "seeded"


def test_malformed_header_list_keeps_configured_headers() -> None:
    store = ConfigurationStore()
    store.add_custom_header("X-A", "1")
    seen = _recorder(store)

    result = store.set_custom_headers("garbage")

    assert not result.ok
    assert store.custom_headers == [CustomHeader("X-A", "1")]
    assert seen == []


def test_flags_require_real_booleans() -> None:
    store = ConfigurationStore()

    assert not store.set_multimodal("false").ok
    assert not store.update(use_proxy="yes").ok
    assert store.is_multimodal is False
    assert store.use_proxy is False
    assert store.set_multimodal(True).ok
    assert store.is_multimodal is True


def test_batch_only_defers_the_owning_thread() -> None:
    store = ConfigurationStore()
    timeouts: list[float] = []
    store.subscribe(lambda config: timeouts.append(config.read_timeout))
    inside = threading.Event()
    release = threading.Event()

    def _hold_batch() -> None:
        with store.batch():
            store.set_model("batched")
            inside.set()
            release.wait(5)

    worker = threading.Thread(target=_hold_batch)
    worker.start()
    try:
        assert inside.wait(5)
        store.set_read_timeout(7)
        assert timeouts == [7.0]
    finally:
        release.set()
        worker.join(5)

    assert timeouts == [7.0, 7.0]
    assert store.model == "batched"
