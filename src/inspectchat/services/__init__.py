"""Service layer helpers (settings persistence, observable configuration)."""

from .config_store import ConfigObserver, ConfigurationStore, ValidationResult
from .settings import CustomHeader, Settings, SettingsStore

__all__ = [
    "ConfigObserver",
    "ConfigurationStore",
    "CustomHeader",
    "Settings",
    "SettingsStore",
    "ValidationResult",
]
