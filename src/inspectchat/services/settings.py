"""Settings dataclasses and persistence helpers."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping

__all__ = [
    "CustomHeader",
    "Settings",
    "SettingsStore",
    "DEFAULT_SERVER_URL",
    "DEFAULT_CHAT_PATH",
    "DEFAULT_MODEL",
    "coerce_headers",
    "is_header_collection",
    "normalize_chat_path",
    "is_valid_port",
    "is_valid_timeout",
    "redact_secret",
    "redact_headers",
]

LOGGER = logging.getLogger(__name__)
_SETTINGS_DIR = Path.home() / ".inspectchat"
_DEFAULT_SETTINGS_PATH = _SETTINGS_DIR / "settings.json"
_SETTINGS_VERSION = 1
DEFAULT_SERVER_URL = "http://localhost:11434"
DEFAULT_CHAT_PATH = "/api/chat"
DEFAULT_MODEL = "deepseek-r1:1.5b"
_ENV_OVERRIDES: Mapping[str, str] = {
    "INSPECTCHAT_SERVER_URL": "server_base_url",
    "INSPECTCHAT_MODEL": "model",
    "INSPECTCHAT_CHAT_PATH": "chat_path",
    "INSPECTCHAT_SYSTEM_PROMPT": "system_prompt",
    "INSPECTCHAT_PROXY_HOST": "proxy_host",
}
_BOOL_ENV_OVERRIDES: Mapping[str, str] = {
    "INSPECTCHAT_MULTIMODAL": "is_multimodal",
    "INSPECTCHAT_USE_PROXY": "use_proxy",
    "INSPECTCHAT_USE_SYSTEM_PROMPT": "use_system_prompt",
    "INSPECTCHAT_DEBUG_LOGGING": "debug_logging",
}
_FLOAT_ENV_OVERRIDES: Mapping[str, str] = {
    "INSPECTCHAT_CONNECT_TIMEOUT": "connect_timeout",
    "INSPECTCHAT_WRITE_TIMEOUT": "write_timeout",
    "INSPECTCHAT_READ_TIMEOUT": "read_timeout",
}
_INT_ENV_OVERRIDES: Mapping[str, str] = {
    "INSPECTCHAT_PROXY_PORT": "proxy_port",
}
_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}


@dataclass(slots=True, frozen=True)
class CustomHeader:
    """Static header attached to every chat request."""

    name: str
    value: str = ""

    def is_sendable(self) -> bool:
        return bool((self.name or "").strip())


@dataclass(slots=True)
class Settings:
    """Connection and prompt settings for the chat engine."""

    server_base_url: str = DEFAULT_SERVER_URL
    chat_path: str = DEFAULT_CHAT_PATH
    model: str = DEFAULT_MODEL
    is_multimodal: bool = False
    connect_timeout: float = 30.0
    write_timeout: float = 30.0
    read_timeout: float = 60.0
    use_proxy: bool = False
    proxy_host: str = ""
    proxy_port: int = 8080
    custom_headers: list[CustomHeader] = field(default_factory=list)
    use_system_prompt: bool = False
    system_prompt: str = ""
    debug_logging: bool = False

    @property
    def chat_url(self) -> str:
        return f"{self.server_base_url}{self.chat_path}"

    def copy(self) -> Settings:
        return replace(self, custom_headers=list(self.custom_headers))


def normalize_chat_path(value: str | None) -> str | None:
    """Return ``value`` trimmed with a leading slash, or ``None`` when blank."""

    stripped = (value or "").strip()
    if not stripped:
        return None
    return stripped if stripped.startswith("/") else f"/{stripped}"


def is_valid_port(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, int):
        return False
    return 0 < value <= 65535


def is_valid_timeout(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return value > 0


class SettingsStore:
    """Persistence adapter for :class:`Settings`."""

    def __init__(self, path: Path | None = None) -> None:
        self._path = path or _DEFAULT_SETTINGS_PATH

    @property
    def path(self) -> Path:
        """Return the resolved path backing this store."""

        return self._path

    def load(self, *, overrides: Mapping[str, Any] | None = None) -> Settings:
        """Load settings from disk, applying CLI/environment overrides when present."""

        payload = self._read_payload()
        settings = Settings()
        if payload:
            data = _filter_fields(payload)
            data["custom_headers"] = coerce_headers(data.get("custom_headers"))
            try:
                settings = Settings(**data)
            except TypeError as exc:
                LOGGER.warning("Settings payload contained unexpected data: %s", exc)
                settings = Settings()
            LOGGER.debug("Settings loaded from %s", self._path)

        if overrides:
            settings = self._apply_overrides(settings, overrides, source="CLI")

        return self._apply_env_overrides(settings)

    def save(self, settings: Settings) -> Path:
        """Persist settings to disk with atomic file writes."""

        payload = asdict(settings)
        payload["version"] = _SETTINGS_VERSION
        body = json.dumps(payload, indent=2, sort_keys=True)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".tmp")
        tmp_path.write_text(body, encoding="utf-8")
        tmp_path.replace(self._path)
        LOGGER.debug("Settings saved to %s", self._path)
        return self._path

    def _read_payload(self) -> Dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            text = self._path.read_text(encoding="utf-8")
            payload = json.loads(text)
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as exc:
            LOGGER.warning("Settings file %s is not valid JSON: %s", self._path, exc)
            return {}
        if not isinstance(payload, dict):
            LOGGER.warning("Settings file %s does not contain an object", self._path)
            return {}
        return payload

    def _apply_overrides(
        self,
        settings: Settings,
        overrides: Mapping[str, Any],
        *,
        source: str = "runtime",
    ) -> Settings:
        allowed = {field.name for field in fields(Settings)}
        filtered: Dict[str, Any] = {}
        for key, value in overrides.items():
            if key not in allowed or value is None:
                continue
            filtered[key] = value
        if "custom_headers" in filtered:
            filtered["custom_headers"] = coerce_headers(filtered["custom_headers"])
        if filtered:
            LOGGER.debug("Applying %s settings overrides: %s", source, sorted(filtered))
            settings = replace(settings, **filtered)
        return settings

    def _apply_env_overrides(self, settings: Settings) -> Settings:
        overrides: Dict[str, Any] = {}
        for env_name, field_name in _ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None:
                overrides[field_name] = value
        for env_name, field_name in _BOOL_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None:
                overrides[field_name] = value.strip().lower() in _TRUE_VALUES
        for env_name, field_name in _INT_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is None:
                continue
            try:
                overrides[field_name] = int(value, 10)
            except ValueError:
                LOGGER.warning("Environment override %s=%s is not a valid integer", env_name, value)
        for env_name, field_name in _FLOAT_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is None:
                continue
            try:
                overrides[field_name] = float(value)
            except ValueError:
                LOGGER.warning("Environment override %s=%s is not a valid float", env_name, value)
        if overrides:
            settings = self._apply_overrides(settings, overrides, source="environment")
        return settings


def _filter_fields(payload: Mapping[str, Any]) -> Dict[str, Any]:
    allowed = {field.name for field in fields(Settings)}
    return {key: value for key, value in payload.items() if key in allowed}


def is_header_collection(raw: Any) -> bool:
    """Return True when every entry of ``raw`` can become a :class:`CustomHeader`.

    Accepts ``None``, a name-to-value mapping, or a list/tuple of headers,
    ``{"name", "value"}`` dicts and ``(name, value)`` pairs.
    """

    if raw is None:
        return True
    if isinstance(raw, Mapping):
        return all(isinstance(name, str) for name in raw)
    if not isinstance(raw, (list, tuple)):
        return False
    return all(_is_header_entry(entry) for entry in raw)


def _is_header_entry(entry: Any) -> bool:
    if isinstance(entry, CustomHeader):
        return True
    if isinstance(entry, Mapping):
        return isinstance(entry.get("name"), str)
    return isinstance(entry, (list, tuple)) and len(entry) == 2 and isinstance(entry[0], str)


def coerce_headers(raw: Any) -> list[CustomHeader]:
    if not raw:
        return []
    if isinstance(raw, Mapping):
        raw = list(raw.items())
    headers: list[CustomHeader] = []
    for entry in raw:
        if isinstance(entry, CustomHeader):
            headers.append(entry)
        elif isinstance(entry, Mapping):
            headers.append(CustomHeader(str(entry.get("name", "")), str(entry.get("value", ""))))
        elif isinstance(entry, (list, tuple)) and len(entry) == 2:
            headers.append(CustomHeader(str(entry[0]), str(entry[1])))
        else:
            LOGGER.debug("Ignoring malformed custom header entry: %r", entry)
    return headers


def redact_secret(value: str) -> str:
    stripped = (value or "").strip()
    if not stripped:
        return ""
    if len(stripped) <= 4:
        return "*" * len(stripped)
    return f"{stripped[:2]}{'*' * (len(stripped) - 4)}{stripped[-2:]}"


def redact_headers(headers: Iterable[CustomHeader]) -> list[dict[str, str]]:
    return [{"name": header.name, "value": redact_secret(header.value)} for header in headers]
