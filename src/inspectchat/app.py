"""Terminal host for the inspectchat engine."""

from __future__ import annotations

import argparse
import base64
import json
import logging
import os
import sys
from dataclasses import asdict, fields
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Sequence, TextIO, get_args, get_origin, get_type_hints

from .ai.client import ChatClient
from .ai.errors import ChatError
from .services.config_store import ConfigurationStore
from .services.settings import Settings, SettingsStore, redact_headers
from .utils import logging as logging_utils

_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_FALSE_VALUES = {"0", "false", "no", "off", "disabled"}
_LOGGER = logging.getLogger(__name__)
_EXIT_COMMANDS = {"/quit", "/exit"}


def configure_logging(debug: bool = False) -> None:
    """Configure logging; the console handler is only attached in debug mode."""

    log_path = logging_utils.setup_logging(debug=debug)
    _LOGGER.debug("Logging to %s (debug=%s)", log_path, debug)


def load_settings(
    path: Path | None = None,
    *,
    store: SettingsStore | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> Settings:
    """Load persisted settings or fall back to defaults."""

    active_store = store or SettingsStore(path)
    try:
        return active_store.load(overrides=overrides)
    except OSError as exc:
        _LOGGER.warning("Failed to load settings from %s: %s", active_store.path, exc)
        return Settings()


def build_configuration(settings: Settings) -> ConfigurationStore:
    """Seed a configuration store, dropping values the store would reject."""

    config = ConfigurationStore()
    with config.batch():
        for item in fields(Settings):
            value = getattr(settings, item.name)
            result = config.update(**{item.name: value})
            if not result.ok:
                _LOGGER.warning("Ignoring setting %s: %s", item.name, result.message)
    return config


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point invoked by the `inspectchat` console script."""

    args = _parse_cli_args(argv)

    debug = _env_flag("INSPECTCHAT_DEBUG", default=False)
    configure_logging(debug)

    settings_path = args.settings_path or os.environ.get("INSPECTCHAT_SETTINGS_PATH")
    resolved_path = Path(settings_path).expanduser() if settings_path else None
    settings_store = SettingsStore(resolved_path)
    try:
        cli_overrides = _coerce_cli_overrides(args.overrides or [])
    except ValueError as exc:
        print(f"Invalid --set override: {exc}", file=sys.stderr)
        return 2

    settings = load_settings(resolved_path, store=settings_store, overrides=cli_overrides or None)

    if args.dump_settings:
        _dump_settings(settings, settings_store, overrides=cli_overrides)
        return 0

    if settings.debug_logging and not debug:
        logging_utils.set_debug_logging(True)

    try:
        images = [_encode_image(Path(item)) for item in args.images or []]
    except OSError as exc:
        print(f"Error reading image file: {exc}", file=sys.stderr)
        return 2

    config = build_configuration(settings)
    config.subscribe(_sync_debug_logging)

    with ChatClient(config) as client:
        if args.request_file or args.response_file:
            if not args.prompt:
                print("A question is required when analyzing a request/response pair.", file=sys.stderr)
                return 2
            try:
                request_text = _read_text(args.request_file)
                response_text = _read_text(args.response_file)
            except OSError as exc:
                print(f"Error reading exchange file: {exc}", file=sys.stderr)
                return 2
            return _run_once(
                lambda on_chunk: client.analyze(request_text, response_text, args.prompt, images, on_chunk)
            )
        if args.prompt:
            return _run_once(
                lambda on_chunk: client.chat(args.prompt, config.active_system_prompt(), images, on_chunk)
            )
        return run_interactive(client, images=images)


def run_interactive(
    client: ChatClient,
    *,
    images: Sequence[str] = (),
    stdin: TextIO | None = None,
    stdout: TextIO | None = None,
) -> int:
    """Read prompts line by line until EOF or ``/quit``.

    ``/clear`` empties the conversation; ``/set KEY=VALUE`` changes a
    setting for the following turns. Attached images go with the first
    prompt only.
    """

    source = stdin or sys.stdin
    out = stdout or sys.stdout
    pending_images = list(images)
    failures = 0
    for raw in source:
        line = raw.strip()
        if not line:
            continue
        if line in _EXIT_COMMANDS:
            break
        if line == "/clear":
            client.clear_history()
            out.write("History cleared.\n")
            continue
        if line.startswith("/set "):
            _apply_runtime_override(client.config, line[5:], out)
            continue

        def _write_chunk(chunk: str) -> None:
            out.write(chunk)
            out.flush()

        try:
            client.chat(line, client.config.active_system_prompt(), pending_images, _write_chunk)
        except ChatError as exc:
            failures += 1
            out.write(f"\nError: {exc}\n")
            _LOGGER.error("Chat failed: %s", exc)
        else:
            out.write("\n\n")
        finally:
            pending_images = []
        out.flush()
    return 1 if failures else 0


def _run_once(call: Callable[[Callable[[str], None]], str]) -> int:
    def _write_chunk(chunk: str) -> None:
        sys.stdout.write(chunk)
        sys.stdout.flush()

    try:
        call(_write_chunk)
    except ChatError as exc:
        print(f"\nError: {exc}", file=sys.stderr)
        _LOGGER.error("Chat failed: %s", exc)
        return 1
    sys.stdout.write("\n")
    return 0


def _apply_runtime_override(config: ConfigurationStore, entry: str, out: TextIO) -> None:
    try:
        overrides = _coerce_cli_overrides([entry])
    except ValueError as exc:
        out.write(f"Invalid setting: {exc}\n")
        return
    result = config.update(**overrides)
    if result.ok:
        out.write(f"Updated {result.field}.\n")
    else:
        out.write(f"Rejected: {result.message}\n")


def _sync_debug_logging(config: ConfigurationStore) -> None:
    logging_utils.set_debug_logging(config.debug_logging or _env_flag("INSPECTCHAT_DEBUG"))


def _encode_image(path: Path) -> str:
    return base64.b64encode(path.expanduser().read_bytes()).decode("ascii")


def _read_text(path: str | None) -> str:
    if not path:
        return ""
    return Path(path).expanduser().read_text(encoding="utf-8", errors="replace")


def _env_flag(name: str, *, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _parse_cli_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="inspectchat",
        description="Chat with a local or remote model, or ask it about a captured HTTP exchange.",
    )
    parser.add_argument("prompt", nargs="?", help="Send a single prompt and exit (question when analyzing).")
    parser.add_argument(
        "--dump-settings",
        action="store_true",
        help="Print the effective settings payload (header values redacted) and exit.",
    )
    parser.add_argument(
        "--settings-path",
        metavar="PATH",
        help="Override the default ~/.inspectchat/settings.json path.",
    )
    parser.add_argument(
        "--set",
        dest="overrides",
        metavar="KEY=VALUE",
        action="append",
        default=[],
        help="Override persisted settings for this run (repeatable).",
    )
    parser.add_argument(
        "--image",
        dest="images",
        metavar="PATH",
        action="append",
        default=[],
        help="Attach an image to the first prompt (multimodal models only; repeatable).",
    )
    parser.add_argument("--request-file", metavar="PATH", help="Raw HTTP request to analyze.")
    parser.add_argument("--response-file", metavar="PATH", help="Raw HTTP response to analyze.")
    return parser.parse_args(argv)


def _coerce_cli_overrides(items: Sequence[str]) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    if not items:
        return overrides

    known = {item.name: item for item in fields(Settings)}
    type_hints = get_type_hints(Settings)
    for entry in items:
        if "=" not in entry:
            raise ValueError(f"Override '{entry}' must use KEY=VALUE syntax.")
        key, raw_value = entry.split("=", 1)
        key = key.strip()
        if not key:
            raise ValueError("Override is missing a field name.")
        if key not in known:
            raise ValueError(f"Unknown setting '{key}'.")
        annotation = type_hints.get(key, known[key].type)
        overrides[key] = _coerce_value(annotation, raw_value.strip())
    return overrides


def _coerce_value(annotation: Any, raw_value: str) -> Any:
    target = _resolve_annotation(annotation)
    normalized = raw_value.strip()

    if target is str or target is Any:
        return normalized
    if target is bool:
        return _parse_bool(normalized)
    if target is int:
        return int(normalized, 10)
    if target is float:
        return float(normalized)
    if target is list:
        try:
            payload = json.loads(normalized or "[]")
        except json.JSONDecodeError as exc:
            raise ValueError("List overrides must be valid JSON arrays") from exc
        if not isinstance(payload, list):
            raise ValueError("List overrides must be valid JSON arrays")
        return payload
    return normalized


def _resolve_annotation(annotation: Any) -> Any:
    origin = get_origin(annotation)
    if origin is None:
        return annotation
    if origin in {list, dict}:
        return origin
    args = [arg for arg in get_args(annotation) if arg is not type(None)]
    if not args:
        return origin
    return args[0]


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"Cannot coerce '{value}' to a boolean.")


def _dump_settings(
    settings: Settings,
    store: SettingsStore,
    *,
    overrides: Mapping[str, Any],
    stream: TextIO | None = None,
) -> None:
    destination = stream or sys.stdout
    payload = asdict(settings)
    payload["custom_headers"] = redact_headers(settings.custom_headers)
    metadata = {
        "path": str(store.path),
        "cli_overrides": sorted(overrides.keys()),
        "environment_variables": _active_env_overrides(),
    }
    json.dump({"settings": payload, "meta": metadata}, destination, indent=2)
    destination.write("\n")


def _active_env_overrides() -> list[str]:
    return sorted(name for name in os.environ if name.startswith("INSPECTCHAT_"))


if __name__ == "__main__":  # pragma: no cover - manual invocation
    raise SystemExit(main())
