from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional

from ..contracts.v1 import PomodoroConfig, SessionOptions

CONFIG_KEYS = ("work", "break", "long", "cycles", "auto", "popup", "sound")

_INT_KEYS = {
    "work": "work_minutes",
    "break": "break_minutes",
    "long": "long_break_minutes",
    "cycles": "cycles",
}
_BOOL_KEYS = {
    "auto": "auto_advance",
    "popup": "popup",
    "sound": "sound",
}
_TRUE = ("true", "1", "yes")
_FALSE = ("false", "0", "no")


@dataclass(frozen=True)
class ConfigUpdateResult:
    """Either the updated config or a user-facing validation error."""

    config: Optional[PomodoroConfig] = None
    error: str = ""

    @property
    def ok(self) -> bool:
        return self.config is not None and not self.error


def _parse_int(raw: Optional[str]) -> Optional[int]:
    s = str(raw or "").strip()
    try:
        return int(s)
    except ValueError:
        return None


def _parse_bool(raw: str) -> Optional[bool]:
    s = str(raw or "").strip().lower()
    if s in _TRUE:
        return True
    if s in _FALSE:
        return False
    return None


def update_config(config: PomodoroConfig, key: str, value: str) -> ConfigUpdateResult:
    k = str(key or "").strip().lower()
    if k in _INT_KEYS:
        n = _parse_int(value)
        if n is None:
            return ConfigUpdateResult(error=f"Invalid number: {value}")
        return ConfigUpdateResult(config=config.model_copy(update={_INT_KEYS[k]: n}))
    if k in _BOOL_KEYS:
        b = _parse_bool(value)
        if b is None:
            return ConfigUpdateResult(error=f"Invalid boolean: {value}")
        return ConfigUpdateResult(config=config.model_copy(update={_BOOL_KEYS[k]: b}))
    return ConfigUpdateResult(error=f"Unknown config key: {key}")


def options_from_config(
    config: PomodoroConfig,
    overrides: Optional[Mapping[str, Optional[str]]] = None,
) -> SessionOptions:
    """Merge per-invocation CLI flags over the stored defaults.

    Unparseable numbers fall back to the config value; every duration is at
    least one minute and there is at least one cycle.
    """
    flags = dict(overrides or {})

    def number(flag: str, fallback: int) -> int:
        n = _parse_int(flags.get(flag))
        return fallback if n is None else n

    def switch(on: str, off: str, fallback: bool) -> bool:
        if on in flags:
            return True
        if off in flags:
            return False
        return fallback

    work = number("--work", config.work_minutes)
    brk = number("--break", config.break_minutes)
    lng = number("--long", config.long_break_minutes)
    cycles = number("--cycles", config.cycles)

    return SessionOptions(
        work_seconds=max(1, work) * 60,
        break_seconds=max(1, brk) * 60,
        long_break_seconds=max(1, lng) * 60,
        cycles=max(1, cycles),
        auto_advance=switch("--auto", "--no-auto", config.auto_advance),
        popup=switch("--popup", "--no-popup", config.popup),
        sound=switch("--sound", "--no-sound", config.sound),
    )
