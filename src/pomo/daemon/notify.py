from __future__ import annotations

import logging
import sys
from typing import Optional, Protocol, TextIO


class Notifier(Protocol):
    """Side effects the resident triggers; windows and tray icons live behind this."""

    def sound(self) -> None: ...

    def popup(self, title: str, message: str) -> None: ...

    def status(self, text: str) -> None: ...

    def open_window(self) -> None: ...


class LoggingNotifier:
    """Headless resident: effects become log records."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self._logger = logger or logging.getLogger("pomo.notify")
        self.last_status = ""

    def sound(self) -> None:
        self._logger.info("sound")

    def popup(self, title: str, message: str) -> None:
        self._logger.info("%s: %s", title, message)

    def status(self, text: str) -> None:
        if text != self.last_status:
            self._logger.debug("status: %s", text)
        self.last_status = text

    def open_window(self) -> None:
        self._logger.info("open requested (no window in headless mode)")


class ConsoleNotifier:
    """Foreground resident: a single rewritten status line plus popup lines."""

    def __init__(self, stream: Optional[TextIO] = None):
        self._out = stream or sys.stdout
        self._status_width = 0

    def _clear_status(self) -> None:
        if self._status_width:
            self._out.write("\r" + " " * self._status_width + "\r")
            self._status_width = 0

    def sound(self) -> None:
        self._out.write("\a")
        self._out.flush()

    def popup(self, title: str, message: str) -> None:
        self._clear_status()
        self._out.write(f"[{title}] {message}\n")
        self._out.flush()

    def status(self, text: str) -> None:
        self._clear_status()
        self._out.write(text)
        self._out.flush()
        self._status_width = len(text)

    def open_window(self) -> None:
        self.popup("Pomodoro", "Already open in this terminal.")
