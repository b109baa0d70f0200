"""The resident's session owner.

`PomodoroService` is built once per resident process and handed to the
control loop (tick), the IPC server (commands) and any interface layer. It is
the only writer of state.json, intent.json and log.jsonl; callers must invoke
it from the control loop thread.
"""
from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Callable, Dict, List, Mapping, Optional, Tuple

from ..contracts.v1 import IpcRequest, IpcResponse, LogEvent, LogEventType, PomodoroState
from ..kernel import session as sm
from ..kernel.config import options_from_config
from ..kernel.intent import TaskIntentState
from ..kernel.store import Store
from ..util.time import utc_now
from .notify import LoggingNotifier, Notifier

logger = logging.getLogger("pomo.daemon")

TITLE = "Pomodoro"
IDLE_STATUS = "Pomodoro (no active session)"

IntentListener = Callable[[TaskIntentState], None]


def _ok(message: str, payload: Optional[str] = None) -> IpcResponse:
    return IpcResponse(ok=True, message=message, payload=payload)


def _fail(message: str) -> IpcResponse:
    return IpcResponse(ok=False, message=message)


class PomodoroService:
    def __init__(
        self,
        store: Store,
        *,
        notifier: Optional[Notifier] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.notifier: Notifier = notifier or LoggingNotifier()
        self._clock = clock
        self.intents = store.load_intents()
        self._intent_listeners: List[IntentListener] = []

    # -- helpers ----------------------------------------------------------

    def _log(self, kind: LogEventType, at: datetime, state: PomodoroState) -> None:
        self.store.append_log(LogEvent(type=kind, at_utc=at, state=state))
        logger.info(
            kind,
            extra={
                "event": kind,
                "session_id": str(state.session_id),
                "phase": state.phase.value,
                "cycle": state.cycle_index,
            },
        )

    def _popup(self, state: Optional[PomodoroState], message: str) -> None:
        if state is None or state.popup:
            self.notifier.popup(TITLE, message)

    # -- session commands -------------------------------------------------

    def start(
        self,
        *,
        force: bool = False,
        overrides: Optional[Mapping[str, Optional[str]]] = None,
        intent_words: Optional[List[str]] = None,
    ) -> IpcResponse:
        """Start a new session; trailing words, when given, become the current intent."""
        existing = self.store.try_load_state()
        if existing is not None and not force:
            return _fail("Session already running. Use --force to replace.")

        if intent_words and " ".join(intent_words).strip():
            self.set_current_intent(" ".join(intent_words))

        config = self.store.load_or_create_config()
        options = options_from_config(config, overrides)
        now = self._clock()
        state = sm.new_session(options, now)

        self.store.save_state(state)
        self._log("session_started", now, state)
        message = f"Started: {state.phase.value} ({options.work_seconds // 60} min)"
        self._popup(state, message)
        return _ok(message)

    def pause(self) -> IpcResponse:
        state = self.store.try_load_state()
        if state is None:
            return _fail("No active session.")
        if state.is_paused:
            return _fail("Already paused.")

        now = self._clock()
        paused = sm.pause(state, now)
        self.store.save_state(paused)
        self._log("paused", now, paused)
        return _ok("Paused.")

    def resume(self) -> IpcResponse:
        state = self.store.try_load_state()
        if state is None:
            return _fail("No active session.")
        if not state.is_paused:
            return _fail("Not paused.")

        now = self._clock()
        resumed = sm.resume(state, now)
        self._log("resumed", now, resumed)
        if sm.remaining_seconds(resumed, now) > 0:
            self.store.save_state(resumed)
            return _ok("Resumed.")

        # Frozen at zero (phase ended with auto-advance off): move on now.
        self._advance(resumed, now)
        return _ok("Resumed.")

    def stop(self) -> IpcResponse:
        state = self.store.try_load_state()
        if state is None:
            return _fail("No active session.")

        self._log("stopped", self._clock(), state)
        self.store.delete_state()
        return _ok("Stopped.")

    def skip(self) -> IpcResponse:
        """End the current phase now and advance, even when paused or auto-advance is off."""
        state = self.store.try_load_state()
        if state is None:
            return _fail("No active session.")

        now = self._clock()
        forced = state.model_copy(
            update={
                "is_paused": False,
                "paused_at_utc": None,
                "paused_remaining_seconds": None,
                "phase_started_at_utc": now,
                "phase_duration_seconds": 0,
            }
        )
        self._log("skipped", now, state)
        self.handle_phase_end(forced, now, force_advance=True)
        return _ok("Skipped.")

    def status(self) -> IpcResponse:
        state = self.store.try_load_state()
        now = self._clock()
        payload: Dict[str, object] = {"state": None, "remaining_seconds": None, "intent": self.intents.current_intent}
        if state is None:
            self._popup(None, "No active session.")
            return _ok("No active session.", json.dumps(payload, ensure_ascii=False))

        payload["state"] = state.to_wire()
        payload["remaining_seconds"] = max(0, sm.remaining_seconds(state, now))
        text = sm.describe(state, now)
        self._popup(None, text)
        return _ok(text, json.dumps(payload, ensure_ascii=False))

    # -- time-driven transitions ------------------------------------------

    def tick(self) -> None:
        state = self.store.try_load_state()
        if state is None:
            self.notifier.status(IDLE_STATUS)
            return

        now = self._clock()
        self.notifier.status(sm.describe(state, now))
        if state.is_paused or sm.remaining_seconds(state, now) > 0:
            return
        self.handle_phase_end(state, now)

    def handle_phase_end(self, state: PomodoroState, now: datetime, *, force_advance: bool = False) -> None:
        self._log("phase_ended", now, state)
        if state.sound:
            self.notifier.sound()
        self._popup(state, f"{state.phase.value} complete.")

        if not state.auto_advance and not force_advance:
            self.store.save_state(sm.pause(state, now))
            return

        self._advance(state, now)

    def _advance(self, state: PomodoroState, now: datetime) -> None:
        result = sm.advance_to(state, now)
        if result.completed:
            self._log("session_completed", now, state)
            self.store.delete_state()
            self._popup(state, "Session complete.")
            return

        nxt = result.state
        if nxt is None:
            return
        self.store.save_state(nxt)
        if result.phases_advanced:
            self._log("phase_started", now, nxt)
            self._popup(nxt, f"Now: {nxt.phase.value} ({nxt.cycle_index}/{nxt.cycles})")

    # -- intent -----------------------------------------------------------

    def subscribe_intent_changed(self, listener: IntentListener) -> Callable[[], None]:
        self._intent_listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._intent_listeners:
                self._intent_listeners.remove(listener)

        return _unsubscribe

    def _intent_changed(self) -> None:
        self.store.save_intents(self.intents)
        for listener in list(self._intent_listeners):
            try:
                listener(self.intents)
            except Exception:
                logger.exception("intent listener failed")

    def set_current_intent(self, raw: Optional[str], *, add_to_recents: bool = True) -> bool:
        before = self.intents.to_dict()
        changed = self.intents.set_current_intent(raw, add_to_recents)
        if changed or self.intents.to_dict() != before:
            self._intent_changed()
        return changed

    def pin_intent(self, raw: Optional[str]) -> bool:
        changed = self.intents.pin(raw)
        if changed:
            self._intent_changed()
        return changed

    def unpin_intent(self, raw: Optional[str]) -> bool:
        changed = self.intents.unpin(raw)
        if changed:
            self._intent_changed()
        return changed

    def intent_command(self, positionals: List[str]) -> IpcResponse:
        action = positionals[0].lower() if positionals else "show"
        text = " ".join(positionals[1:])

        if action == "show":
            current = self.intents.current_intent
            return _ok(
                f"Working on: {current}" if current else "No current intent.",
                json.dumps(self.intents.to_dict(), ensure_ascii=False),
            )
        if action == "set":
            if not text.strip():
                return _fail("Usage: intent set <text>")
            self.set_current_intent(text)
            return _ok(f"Working on: {self.intents.current_intent}")
        if action == "clear":
            self.set_current_intent(None, add_to_recents=False)
            return _ok("Intent cleared.")
        if action == "pin":
            if not text.strip():
                return _fail("Usage: intent pin <text>")
            self.set_current_intent(text)
            self.pin_intent(text)
            return _ok(f"Pinned: {self.intents.current_intent}")
        if action == "unpin":
            if self.unpin_intent(text):
                return _ok("Unpinned.")
            return _fail("Not pinned.")
        return _fail(f"Unknown intent action: {action}")

    # -- IPC dispatch -----------------------------------------------------

    def handle_request(self, req: IpcRequest) -> Tuple[IpcResponse, bool]:
        """Execute one IPC command; the flag asks the resident to exit."""
        cmd = (req.command or "").strip().lower()

        if cmd == "ping":
            return _ok("pong"), False
        if cmd == "open":
            self.notifier.open_window()
            return _ok("Opened."), False
        if cmd == "start":
            return (
                self.start(
                    force=req.has_option("--force"),
                    overrides=req.options,
                    intent_words=list(req.positionals or []),
                ),
                False,
            )
        if cmd == "pause":
            return self.pause(), False
        if cmd == "resume":
            return self.resume(), False
        if cmd == "stop":
            return self.stop(), False
        if cmd == "skip":
            return self.skip(), False
        if cmd == "status":
            return self.status(), False
        if cmd == "intent":
            return self.intent_command(list(req.positionals or [])), False
        if cmd == "exit":
            return _ok("Exiting."), True
        return _fail(f"Unknown IPC command: {req.command}"), False
