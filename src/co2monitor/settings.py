"""Durable typed key-value settings store."""

import json
import logging
import os
from collections.abc import Callable
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

SETTINGS_ENV = "CO2MONITOR_SETTINGS"

SCHEMA: dict[str, tuple[type, Any]] = {
    # Sampling and model
    "update-interval": (int, 10),
    "carbon-intensity": (int, 400),
    "cpu-profile": (str, "desktop"),
    "safe-mode": (bool, False),
    # Intensity provider
    "use-online-intensity": (bool, False),
    "intensity-provider": (str, "electricitymaps"),
    "electricitymaps-api-key": (str, ""),
    "electricitymaps-zone": (str, ""),
    "auto-detect-zone": (bool, True),
    "provider-cache-ttl": (int, 300),
    # Smoothing and per-process attribution
    "smoothing-enabled": (bool, False),
    "smoothing-window": (int, 5),
    "per-software-monitoring": (bool, True),
    "per-process-sample-ms": (int, 250),
    "per-process-top-n": (int, 10),
    "overall-show-all": (bool, True),
    # Display
    "show-trend": (bool, True),
    "history-length": (int, 60),
    "show-intensity": (bool, True),
    "display-unit": (str, "g"),
    "color-coding": (bool, True),
    "monochrome-mode": (bool, False),
    "week-start-day": (str, "monday"),
    # Profiles, history and export
    "profile-name": (str, "default"),
    "export-directory": (str, ""),
    "history-days": (int, 30),
    "auto-export-history": (bool, False),
    "enable-periodic-export": (bool, False),
    "export-interval-min": (int, 30),
    # Accounting state
    "daily-total-g": (float, 0.0),
    "weekly-total-g": (float, 0.0),
    "monthly-total-g": (float, 0.0),
    "cumulative-total-g": (float, 0.0),
    "daily-epoch-day": (int, 0),
    "weekly-epoch-week": (int, 0),
    "monthly-epoch-ym": (int, 0),
    "software-totals-json": (str, "{}"),
    "daily-history-json": (str, "{}"),
}

# Keys written by the engine itself rather than by the user
STATE_KEYS = frozenset(
    {
        "daily-total-g",
        "weekly-total-g",
        "monthly-total-g",
        "cumulative-total-g",
        "daily-epoch-day",
        "weekly-epoch-week",
        "monthly-epoch-ym",
        "software-totals-json",
        "daily-history-json",
    }
)


class SettingsWriteError(OSError):
    """The settings file could not be written. In-memory values are kept."""


def default_settings_path() -> Path:
    """Settings file from $CO2MONITOR_SETTINGS or ~/.config/co2monitor."""
    override = os.environ.get(SETTINGS_ENV)
    if override:
        return Path(override).expanduser()
    return Path.home() / ".config" / "co2monitor" / "settings.json"


def _coerce(key: str, value: Any) -> Any:
    kind, _ = SCHEMA[key]
    if kind is bool:
        if isinstance(value, bool):
            return value
    elif kind is int:
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    elif kind is float:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
    elif isinstance(value, str):
        return value
    raise TypeError(f"{key} expects {kind.__name__}, got {type(value).__name__}")


class Settings:
    """
    Typed settings backed by a JSON file.

    Values are held in memory and written through on every change. A failed
    write raises SettingsWriteError but the in-memory value stays updated, so
    the next successful save persists it. Listeners registered with
    ``connect`` are called with the key after each change.
    """

    def __init__(self, path: Path | None = None) -> None:
        """
        Initialize the Settings.

        Args:
            path: JSON file to persist to. None keeps everything in memory.
        """
        self._path = Path(path) if path is not None else None
        self._values: dict[str, Any] = {key: default for key, (_, default) in SCHEMA.items()}
        self._listeners: dict[int, Callable[[str], None]] = {}
        self._next_id = 1

    @property
    def path(self) -> Path | None:
        return self._path

    def load(self) -> None:
        """Read the file, keeping defaults for missing, unknown or mistyped keys."""
        if self._path is None or not self._path.exists():
            return
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable settings file %s: %s", self._path, exc)
            return
        if not isinstance(data, dict):
            logger.warning("Ignoring settings file %s: not a JSON object", self._path)
            return
        for key, value in data.items():
            if key not in SCHEMA:
                continue
            try:
                self._values[key] = _coerce(key, value)
            except TypeError:
                logger.warning("Ignoring mistyped setting %s=%r", key, value)

    def save(self) -> None:
        """Write all values to the file atomically."""
        if self._path is None:
            return
        tmp = self._path.with_name(self._path.name + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(json.dumps(self._values, indent=2, sort_keys=True), encoding="utf-8")
            os.replace(tmp, self._path)
        except OSError as exc:
            raise SettingsWriteError(f"cannot write settings to {self._path}: {exc}") from exc

    def get(self, key: str) -> Any:
        if key not in SCHEMA:
            raise KeyError(key)
        return self._values[key]

    def get_int(self, key: str) -> int:
        return int(self.get(key))

    def get_double(self, key: str) -> float:
        return float(self.get(key))

    def get_boolean(self, key: str) -> bool:
        return bool(self.get(key))

    def get_string(self, key: str) -> str:
        return str(self.get(key))

    def set(self, key: str, value: Any) -> None:
        """Set one value, notify listeners, then persist."""
        self.set_many({key: value})

    def set_many(self, values: dict[str, Any]) -> None:
        """
        Set several values with a single write.

        Raises:
            KeyError: Unknown key.
            TypeError: Value of the wrong type.
            SettingsWriteError: The file could not be written.
        """
        coerced = {}
        for key, value in values.items():
            if key not in SCHEMA:
                raise KeyError(key)
            coerced[key] = _coerce(key, value)

        changed = [key for key, value in coerced.items() if self._values[key] != value]
        self._values.update(coerced)
        for key in changed:
            self._notify(key)
        self.save()

    def reset(self, key: str) -> None:
        """Restore a key's default."""
        if key not in SCHEMA:
            raise KeyError(key)
        self.set(key, SCHEMA[key][1])

    def connect(self, callback: Callable[[str], None]) -> int:
        """Register a change listener and return its handler id."""
        handler_id = self._next_id
        self._next_id += 1
        self._listeners[handler_id] = callback
        return handler_id

    def disconnect(self, handler_id: int) -> None:
        self._listeners.pop(handler_id, None)

    def _notify(self, key: str) -> None:
        for callback in list(self._listeners.values()):
            try:
                callback(key)
            except Exception:
                logger.exception("Settings listener failed for %s", key)
