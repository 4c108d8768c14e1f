"""Observable configuration record shared by the chat engine and its host."""

from __future__ import annotations

import contextlib
import logging
from dataclasses import dataclass, fields
from threading import RLock, local
from typing import Any, Callable, Iterator

from ..ai.errors import ConfigurationRejected
from .settings import (
    CustomHeader,
    Settings,
    coerce_headers,
    is_header_collection,
    is_valid_port,
    is_valid_timeout,
    normalize_chat_path,
)

__all__ = ["ConfigurationStore", "ValidationResult", "ConfigObserver"]

LOGGER = logging.getLogger(__name__)

ConfigObserver = Callable[["ConfigurationStore"], None]

_SETTING_NAMES: frozenset[str] = frozenset(item.name for item in fields(Settings))
_FLAG_NAMES: frozenset[str] = frozenset({"is_multimodal", "use_proxy", "use_system_prompt", "debug_logging"})


@dataclass(slots=True, frozen=True)
class ValidationResult:
    """Outcome of a configuration write.

    Rejected writes are silent by default; call :meth:`raise_for_error` to
    turn a rejection into :class:`ConfigurationRejected`.
    """

    ok: bool
    field: str
    value: Any = None
    message: str = ""

    def __bool__(self) -> bool:
        return self.ok

    def raise_for_error(self) -> ValidationResult:
        if not self.ok:
            raise ConfigurationRejected(self.field, self.value, self.message)
        return self

    @classmethod
    def accepted(cls, field: str, value: Any = None) -> ValidationResult:
        return cls(ok=True, field=field, value=value)

    @classmethod
    def rejected(cls, field: str, value: Any, message: str) -> ValidationResult:
        return cls(ok=False, field=field, value=value, message=message)


class ConfigurationStore:
    """Mutable settings record that broadcasts every successful change.

    Observers are callables taking the store as their only argument. They
    run synchronously, in registration order, after each accepted write. A
    failing observer is logged and skipped; it never reaches the caller of
    the setter and never prevents later observers from running. Rejected
    writes leave the record untouched and notify nobody.
    """

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = (settings or Settings()).copy()
        self._observers: list[ConfigObserver] = []
        self._lock = RLock()
        # Per thread: a batch only defers notifications for the thread that opened it.
        self._batch_state = local()

    @classmethod
    def from_settings(cls, settings: Settings) -> ConfigurationStore:
        return cls(settings)

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------
    def subscribe(self, observer: ConfigObserver) -> None:
        with self._lock:
            self._observers.append(observer)

    def unsubscribe(self, observer: ConfigObserver) -> None:
        with self._lock:
            try:
                self._observers.remove(observer)
            except ValueError:
                return

    def notify(self) -> None:
        """Broadcast the current state to every observer."""

        if getattr(self._batch_state, "depth", 0):
            self._batch_state.dirty = True
            return
        with self._lock:
            observers = list(self._observers)
        for observer in observers:
            try:
                observer(self)
            except Exception:
                LOGGER.exception("Configuration observer %r failed", observer)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def snapshot(self) -> Settings:
        """Return a detached copy of the whole record."""

        with self._lock:
            return self._settings.copy()

    @property
    def server_base_url(self) -> str:
        return self._settings.server_base_url

    @property
    def chat_path(self) -> str:
        return self._settings.chat_path

    @property
    def chat_url(self) -> str:
        with self._lock:
            return self._settings.chat_url

    @property
    def model(self) -> str:
        return self._settings.model

    @property
    def is_multimodal(self) -> bool:
        return self._settings.is_multimodal

    @property
    def connect_timeout(self) -> float:
        return self._settings.connect_timeout

    @property
    def write_timeout(self) -> float:
        return self._settings.write_timeout

    @property
    def read_timeout(self) -> float:
        return self._settings.read_timeout

    @property
    def use_proxy(self) -> bool:
        return self._settings.use_proxy

    @property
    def proxy_host(self) -> str:
        return self._settings.proxy_host

    @property
    def proxy_port(self) -> int:
        return self._settings.proxy_port

    @property
    def custom_headers(self) -> list[CustomHeader]:
        with self._lock:
            return list(self._settings.custom_headers)

    @property
    def use_system_prompt(self) -> bool:
        return self._settings.use_system_prompt

    @property
    def system_prompt(self) -> str:
        return self._settings.system_prompt

    @property
    def debug_logging(self) -> bool:
        return self._settings.debug_logging

    def active_system_prompt(self) -> str:
        """Return the system prompt when enabled, otherwise an empty string."""

        with self._lock:
            if not self._settings.use_system_prompt:
                return ""
            return self._settings.system_prompt or ""

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    def set_server_base_url(self, value: str) -> ValidationResult:
        return self._set("server_base_url", value)

    def set_chat_path(self, value: str) -> ValidationResult:
        return self._set("chat_path", value)

    def set_model(self, value: str) -> ValidationResult:
        return self._set("model", value)

    def set_multimodal(self, value: bool) -> ValidationResult:
        return self._set("is_multimodal", value)

    def set_connect_timeout(self, seconds: float) -> ValidationResult:
        return self._set("connect_timeout", seconds)

    def set_write_timeout(self, seconds: float) -> ValidationResult:
        return self._set("write_timeout", seconds)

    def set_read_timeout(self, seconds: float) -> ValidationResult:
        return self._set("read_timeout", seconds)

    def set_use_proxy(self, value: bool) -> ValidationResult:
        return self._set("use_proxy", value)

    def set_proxy_host(self, value: str) -> ValidationResult:
        return self._set("proxy_host", value)

    def set_proxy_port(self, value: int) -> ValidationResult:
        return self._set("proxy_port", value)

    def set_use_system_prompt(self, value: bool) -> ValidationResult:
        return self._set("use_system_prompt", value)

    def set_system_prompt(self, value: str) -> ValidationResult:
        return self._set("system_prompt", value)

    def set_debug_logging(self, value: bool) -> ValidationResult:
        return self._set("debug_logging", value)

    def set_custom_headers(self, headers: list[CustomHeader]) -> ValidationResult:
        return self._set("custom_headers", headers)

    def add_custom_header(self, name: str, value: str = "") -> ValidationResult:
        """Append a header; blank names are kept here and skipped at send time."""

        header = CustomHeader(name or "", value if value is not None else "")
        with self._lock:
            self._settings.custom_headers.append(header)
        self.notify()
        return ValidationResult.accepted("custom_headers", header)

    def remove_custom_header(self, target: CustomHeader | int) -> ValidationResult:
        with self._lock:
            headers = self._settings.custom_headers
            if isinstance(target, int):
                if not 0 <= target < len(headers):
                    return ValidationResult.rejected("custom_headers", target, "Header index out of range")
                removed = headers.pop(target)
            else:
                try:
                    headers.remove(target)
                except ValueError:
                    return ValidationResult.rejected("custom_headers", target, "Header not configured")
                removed = target
        self.notify()
        return ValidationResult.accepted("custom_headers", removed)

    def update_custom_header(
        self,
        index: int,
        *,
        name: str | None = None,
        value: str | None = None,
    ) -> ValidationResult:
        with self._lock:
            headers = self._settings.custom_headers
            if not 0 <= index < len(headers):
                return ValidationResult.rejected("custom_headers", index, "Header index out of range")
            current = headers[index]
            updated = CustomHeader(
                current.name if name is None else name,
                current.value if value is None else value,
            )
            headers[index] = updated
        self.notify()
        return ValidationResult.accepted("custom_headers", updated)

    def update(self, **changes: Any) -> ValidationResult:
        """Apply several fields at once and notify a single time.

        Every value is validated before anything is written; the first
        rejection aborts the whole update.
        """

        unknown = sorted(set(changes) - _SETTING_NAMES)
        if unknown:
            raise TypeError(f"Unknown configuration field(s): {', '.join(unknown)}")
        normalized: dict[str, Any] = {}
        for name, raw in changes.items():
            result, value = self._validate(name, raw)
            if not result.ok:
                LOGGER.debug("Rejected batch configuration update: %s", result.message)
                return result
            normalized[name] = value
        if not normalized:
            return ValidationResult.accepted("")
        with self._lock:
            for name, value in normalized.items():
                setattr(self._settings, name, value)
        LOGGER.debug("Configuration updated: %s", sorted(normalized))
        self.notify()
        return ValidationResult.accepted(",".join(sorted(normalized)))

    @contextlib.contextmanager
    def batch(self) -> Iterator[ConfigurationStore]:
        """Defer this thread's notifications until the outermost block exits.

        Writes made by other threads meanwhile still notify immediately.
        """

        state = self._batch_state
        state.depth = getattr(state, "depth", 0) + 1
        try:
            yield self
        finally:
            state.depth -= 1
            flush = state.depth == 0 and getattr(state, "dirty", False)
            if flush:
                state.dirty = False
                self.notify()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _set(self, name: str, raw: Any) -> ValidationResult:
        result, value = self._validate(name, raw)
        if not result.ok:
            LOGGER.debug("Rejected configuration write: %s", result.message)
            return result
        with self._lock:
            setattr(self._settings, name, value)
        self.notify()
        return result

    def _validate(self, name: str, raw: Any) -> tuple[ValidationResult, Any]:
        if name == "chat_path":
            path = normalize_chat_path(raw if isinstance(raw, str) else None)
            if path is None:
                return ValidationResult.rejected(name, raw, "Chat API endpoint cannot be empty"), None
            return ValidationResult.accepted(name, path), path
        if name in {"connect_timeout", "write_timeout", "read_timeout"}:
            if not is_valid_timeout(raw):
                return ValidationResult.rejected(name, raw, f"{name} must be a positive number of seconds"), None
            return ValidationResult.accepted(name, float(raw)), float(raw)
        if name == "proxy_port":
            if not is_valid_port(raw):
                return ValidationResult.rejected(name, raw, "Proxy port must be between 1 and 65535"), None
            return ValidationResult.accepted(name, raw), raw
        if name == "proxy_host":
            if raw is not None and not isinstance(raw, str):
                return ValidationResult.rejected(name, raw, "Proxy host must be a string"), None
            host = (raw or "").strip()
            return ValidationResult.accepted(name, host), host
        if name == "custom_headers":
            if not is_header_collection(raw):
                return ValidationResult.rejected(name, raw, "Custom headers must be a list of name/value entries"), None
            headers = coerce_headers(raw)
            return ValidationResult.accepted(name, headers), headers
        if name in _FLAG_NAMES:
            if not isinstance(raw, bool):
                return ValidationResult.rejected(name, raw, f"{name} must be true or false"), None
            return ValidationResult.accepted(name, raw), raw
        value = "" if raw is None else str(raw)
        return ValidationResult.accepted(name, value), value
