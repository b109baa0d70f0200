from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import ConfigDict, Field, field_validator, model_validator

from ...util.time import as_utc
from ._base import WireModel


class PomodoroPhase(str, Enum):
    WORK = "Work"
    BREAK = "Break"
    LONG_BREAK = "LongBreak"


_PHASE_BY_INDEX = {0: PomodoroPhase.WORK, 1: PomodoroPhase.BREAK, 2: PomodoroPhase.LONG_BREAK}


class PomodoroConfig(WireModel):
    """User defaults, persisted in config.json independently of any session."""

    work_minutes: int = 25
    break_minutes: int = 5
    long_break_minutes: int = 15
    cycles: int = 4
    auto_advance: bool = True
    popup: bool = True
    sound: bool = True

    model_config = ConfigDict(frozen=True)


class SessionOptions(WireModel):
    work_seconds: int = Field(gt=0)
    break_seconds: int = Field(gt=0)
    long_break_seconds: int = Field(gt=0)
    cycles: int = Field(ge=1)
    auto_advance: bool = True
    popup: bool = True
    sound: bool = True

    model_config = ConfigDict(frozen=True)


class PomodoroState(WireModel):
    session_id: uuid.UUID
    phase: PomodoroPhase
    cycle_index: int = Field(ge=1)
    cycles: int = Field(ge=1)
    work_seconds: int = Field(ge=0)
    break_seconds: int = Field(ge=0)
    long_break_seconds: int = Field(ge=0)
    auto_advance: bool
    popup: bool
    sound: bool
    phase_started_at_utc: datetime
    phase_duration_seconds: int = Field(ge=0)
    is_paused: bool = False
    paused_at_utc: Optional[datetime] = None
    paused_remaining_seconds: Optional[int] = Field(default=None, ge=0)

    model_config = ConfigDict(frozen=True)

    @field_validator("phase", mode="before")
    @classmethod
    def _phase_from_index(cls, v: Any) -> Any:
        if isinstance(v, int) and not isinstance(v, bool):
            return _PHASE_BY_INDEX.get(v, v)
        return v

    @field_validator("phase_started_at_utc", "paused_at_utc")
    @classmethod
    def _to_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return None if v is None else as_utc(v)

    @model_validator(mode="after")
    def _check_invariants(self) -> "PomodoroState":
        if self.cycle_index > self.cycles:
            raise ValueError(f"cycle_index {self.cycle_index} exceeds cycles {self.cycles}")
        frozen = (self.paused_at_utc is not None, self.paused_remaining_seconds is not None)
        if self.is_paused and not all(frozen):
            raise ValueError("paused state requires paused_at_utc and paused_remaining_seconds")
        if not self.is_paused and any(frozen):
            raise ValueError("running state must not carry pause fields")
        return self
