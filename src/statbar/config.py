"""Configuration for statbar.

A single immutable ``MonitorConfig`` value is built (and validated) at load
time and handed to the components that need it. Runtime changes go through a
``ConfigStore``, which swaps in a new validated value and notifies
subscribers with the old and new config.
"""

import logging
import threading
import tomllib
from collections.abc import Callable, Mapping
from dataclasses import dataclass, fields, replace
from enum import Enum
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class ConfigError(ValueError):
    """Raised when a configuration value is missing or invalid."""


class TextFormat(Enum):
    """Width/precision used when rendering speeds."""

    THREE_DIGITS = "3 Digits"
    FOUR_DIGITS = "4 Digits"
    TWO_DIGITS_DECIMAL = "2 Digits + Decimal"


class UnitStyle(Enum):
    """How speed units are spelled."""

    STANDARD = "standard"
    LOWERCASE = "lowercase"
    SUFFIX = "suffix"
    LOWERCASE_SUFFIX = "lowercase_suffix"

    @property
    def lowercase(self) -> bool:
        return self in (UnitStyle.LOWERCASE, UnitStyle.LOWERCASE_SUFFIX)

    @property
    def per_second(self) -> bool:
        return self in (UnitStyle.SUFFIX, UnitStyle.LOWERCASE_SUFFIX)


class MemoryStrategy(Enum):
    """Heuristic used to turn page counters into "memory used".

    APP_MEMORY: (internal - purgeable + wired + compressed) pages.
    RECLAIMABLE: (total - free - inactive - speculative - purgeable) pages.
    """

    APP_MEMORY = "app_memory"
    RECLAIMABLE = "reclaimable"


_ENUM_FIELDS: dict[str, type[Enum]] = {
    "text_format": TextFormat,
    "unit_style": UnitStyle,
    "memory_strategy": MemoryStrategy,
}


@dataclass(frozen=True)
class MonitorConfig:
    """Sampling and display settings."""

    network_update_interval: float = 1.0  # seconds
    system_info_update_interval: float = 2.0
    temperature_update_interval: float = 5.0
    use_efficient_timers: bool = True  # timer coalescing
    timer_leeway: float = 0.5
    pause_when_panel_closed: bool = True
    show_top_processes: bool = True
    text_format: TextFormat = TextFormat.FOUR_DIGITS
    unit_style: UnitStyle = UnitStyle.STANDARD
    memory_strategy: MemoryStrategy = MemoryStrategy.APP_MEMORY
    history_capacity: int = 40
    disk_path: str = "/"

    def __post_init__(self) -> None:
        for name in (
            "network_update_interval",
            "system_info_update_interval",
            "temperature_update_interval",
        ):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
                raise ConfigError(f"{name} must be a positive number, got {value!r}")
        if isinstance(self.timer_leeway, bool) or not isinstance(self.timer_leeway, (int, float)):
            raise ConfigError(f"timer_leeway must be a number, got {self.timer_leeway!r}")
        if self.timer_leeway < 0:
            raise ConfigError("timer_leeway must not be negative")
        if isinstance(self.history_capacity, bool) or not isinstance(self.history_capacity, int):
            raise ConfigError(f"history_capacity must be an integer, got {self.history_capacity!r}")
        if self.history_capacity < 1:
            raise ConfigError("history_capacity must be at least 1")
        for name in ("use_efficient_timers", "pause_when_panel_closed", "show_top_processes"):
            if not isinstance(getattr(self, name), bool):
                raise ConfigError(f"{name} must be a boolean")
        for name, enum_type in _ENUM_FIELDS.items():
            if not isinstance(getattr(self, name), enum_type):
                raise ConfigError(f"{name} must be a {enum_type.__name__}")
        if not self.disk_path:
            raise ConfigError("disk_path must not be empty")

    @property
    def nettop_interval(self) -> int:
        """Reporting interval for the accounting subprocess, whole seconds >= 1."""
        return max(1, round(self.network_update_interval))

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "MonitorConfig":
        """Build a config from plain values, e.g. a parsed TOML table."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(f"Unknown configuration keys: {', '.join(unknown)}")

        values: dict[str, Any] = {}
        for key, value in data.items():
            enum_type = _ENUM_FIELDS.get(key)
            if enum_type is not None and not isinstance(value, enum_type):
                value = _parse_enum(enum_type, key, value)
            values[key] = value
        return cls(**values)


def _parse_enum(enum_type: type[Enum], key: str, value: Any) -> Enum:
    for member in enum_type:
        if value == member.value or (isinstance(value, str) and value.upper() == member.name):
            return member
    choices = ", ".join(repr(m.value) for m in enum_type)
    raise ConfigError(f"{key} must be one of {choices}, got {value!r}")


def load_config(path: str | Path | None) -> MonitorConfig:
    """
    Load a config from a TOML file.

    Settings may sit at the top level or under a ``[statbar]`` table.
    A missing file yields the defaults.

    Raises:
        ConfigError: If the file cannot be parsed or holds invalid values.
    """
    if path is None:
        return MonitorConfig()

    config_path = Path(path)
    if not config_path.exists():
        logger.info("Config file %s not found, using defaults", config_path)
        return MonitorConfig()

    try:
        with config_path.open("rb") as fh:
            data = tomllib.load(fh)
    except (OSError, tomllib.TOMLDecodeError) as exc:
        raise ConfigError(f"Cannot read config file {config_path}: {exc}") from exc

    table = data.get("statbar", data)
    if not isinstance(table, dict):
        raise ConfigError("[statbar] must be a table")
    return MonitorConfig.from_mapping(table)


ConfigListener = Callable[[MonitorConfig, MonitorConfig], None]


class ConfigStore:
    """
    Holds the current config and notifies subscribers of changes.

    Listeners are called on the thread that performed the update, with
    ``(old, new)``. A listener raising does not stop the others.
    """

    def __init__(self, config: MonitorConfig | None = None) -> None:
        self._config = config or MonitorConfig()
        self._lock = threading.Lock()
        self._listeners: list[ConfigListener] = []

    @property
    def current(self) -> MonitorConfig:
        return self._config

    def update(self, **changes: Any) -> MonitorConfig:
        """Apply changes, validate them and notify listeners if anything changed."""
        with self._lock:
            old = self._config
            try:
                new = replace(old, **changes)
            except TypeError as exc:
                raise ConfigError(str(exc)) from exc
            if new == old:
                return old
            self._config = new
            listeners = list(self._listeners)

        for listener in listeners:
            try:
                listener(old, new)
            except Exception:
                logger.exception("Config listener %r failed", listener)
        return new

    def subscribe(self, listener: ConfigListener) -> Callable[[], None]:
        """Register a listener; returns a function that removes it."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe
