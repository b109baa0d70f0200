from __future__ import annotations

from .event import LogEvent, LogEventType
from .ipc import CHANNEL_NAME, IpcRequest, IpcResponse
from .session import PomodoroConfig, PomodoroPhase, PomodoroState, SessionOptions

__all__ = [
    "CHANNEL_NAME",
    "IpcRequest",
    "IpcResponse",
    "LogEvent",
    "LogEventType",
    "PomodoroConfig",
    "PomodoroPhase",
    "PomodoroState",
    "SessionOptions",
]
