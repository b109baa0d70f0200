from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import ConfigDict

from ._base import WireModel
from .session import PomodoroState


LogEventType = Literal[
    "session_started",
    "paused",
    "resumed",
    "stopped",
    "skipped",
    "phase_ended",
    "phase_started",
    "session_completed",
]


class LogEvent(WireModel):
    """Audit record appended to log.jsonl."""

    type: LogEventType
    at_utc: datetime
    state: PomodoroState

    model_config = ConfigDict(frozen=True)
