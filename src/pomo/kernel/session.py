"""Phase state machine.

Every function here is pure: it takes a `PomodoroState` and a UTC instant and
returns a new state (frozen models are replaced, never mutated). Only the
resident service holds and swaps the current value.
"""
from __future__ import annotations

import math
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from ..contracts.v1 import PomodoroPhase, PomodoroState, SessionOptions


@dataclass(frozen=True)
class AdvanceResult:
    """Outcome of catching a state up to `now`; `state` is None once the session finished."""

    state: Optional[PomodoroState]
    phases_advanced: int
    completed: bool


def new_session(options: SessionOptions, now: datetime) -> PomodoroState:
    return PomodoroState(
        session_id=uuid.uuid4(),
        phase=PomodoroPhase.WORK,
        cycle_index=1,
        cycles=options.cycles,
        work_seconds=options.work_seconds,
        break_seconds=options.break_seconds,
        long_break_seconds=options.long_break_seconds,
        auto_advance=options.auto_advance,
        popup=options.popup,
        sound=options.sound,
        phase_started_at_utc=now,
        phase_duration_seconds=options.work_seconds,
        is_paused=False,
    )


def remaining_seconds(state: PomodoroState, now: datetime) -> int:
    """Seconds left in the current phase. Negative once the deadline passed."""
    if state.is_paused and state.paused_remaining_seconds is not None:
        return state.paused_remaining_seconds
    elapsed = math.floor((now - state.phase_started_at_utc).total_seconds())
    return state.phase_duration_seconds - elapsed


def ends_at(state: PomodoroState) -> datetime:
    return state.phase_started_at_utc + timedelta(seconds=state.phase_duration_seconds)


def pause(state: PomodoroState, now: datetime) -> PomodoroState:
    if state.is_paused:
        return state
    return state.model_copy(
        update={
            "is_paused": True,
            "paused_at_utc": now,
            "paused_remaining_seconds": max(0, remaining_seconds(state, now)),
        }
    )


def resume(state: PomodoroState, now: datetime) -> PomodoroState:
    if not state.is_paused:
        return state
    remaining = state.paused_remaining_seconds
    if remaining is None:
        remaining = max(0, remaining_seconds(state, now))
    return state.model_copy(
        update={
            "is_paused": False,
            "paused_at_utc": None,
            "paused_remaining_seconds": None,
            "phase_started_at_utc": now,
            "phase_duration_seconds": remaining,
        }
    )


def next_phase(state: PomodoroState, next_start: datetime) -> Optional[PomodoroState]:
    """The phase following `state`, starting at `next_start`; None after the long break."""
    update = {
        "phase_started_at_utc": next_start,
        "is_paused": False,
        "paused_at_utc": None,
        "paused_remaining_seconds": None,
    }
    if state.phase == PomodoroPhase.WORK:
        if state.cycle_index >= state.cycles:
            update.update(phase=PomodoroPhase.LONG_BREAK, phase_duration_seconds=state.long_break_seconds)
        else:
            update.update(phase=PomodoroPhase.BREAK, phase_duration_seconds=state.break_seconds)
        return state.model_copy(update=update)
    if state.phase == PomodoroPhase.BREAK:
        update.update(
            phase=PomodoroPhase.WORK,
            cycle_index=state.cycle_index + 1,
            phase_duration_seconds=state.work_seconds,
        )
        return state.model_copy(update=update)
    return None


def advance_to(state: PomodoroState, now: datetime) -> AdvanceResult:
    """Catch `state` up to `now`, chaining every phase that has fully elapsed.

    Each next phase is anchored at the nominal end of the previous one, so a
    resident that was suspended (or a host that slept) across several phases
    lands on the same timeline it would have followed while awake. A paused
    state never advances.
    """
    if state.is_paused:
        return AdvanceResult(state=state, phases_advanced=0, completed=False)

    current = state
    advanced = 0
    while not current.is_paused and remaining_seconds(current, now) <= 0:
        following = next_phase(current, ends_at(current))
        advanced += 1
        if following is None:
            return AdvanceResult(state=None, phases_advanced=advanced, completed=True)
        current = following

    return AdvanceResult(state=current, phases_advanced=advanced, completed=False)


def phase_label(phase: PomodoroPhase) -> str:
    return phase.value


def format_duration(seconds: int) -> str:
    seconds = max(0, int(seconds))
    return f"{seconds // 60:02d}:{seconds % 60:02d}"


def describe(state: PomodoroState, now: datetime) -> str:
    head = f"{phase_label(state.phase)} {state.cycle_index}/{state.cycles}"
    if state.is_paused:
        return f"{head} (paused)"
    return f"{head} - {format_duration(remaining_seconds(state, now))} left"
