import json
import tempfile
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path


T0 = datetime(2026, 3, 2, 9, 0, 0, tzinfo=timezone.utc)


def _state():
    from pomo.contracts.v1 import SessionOptions
    from pomo.kernel import session as sm

    opts = SessionOptions(
        work_seconds=1500,
        break_seconds=300,
        long_break_seconds=900,
        cycles=4,
        auto_advance=False,
        popup=True,
        sound=False,
    )
    return sm.new_session(opts, T0)


class TestStore(unittest.TestCase):
    def setUp(self) -> None:
        from pomo.kernel.store import Store

        self._td = tempfile.TemporaryDirectory()
        self.addCleanup(self._td.cleanup)
        self.dir = Path(self._td.name)
        self.store = Store(self.dir)

    def test_load_or_create_config_writes_defaults(self) -> None:
        from pomo.contracts.v1 import PomodoroConfig

        self.assertFalse(self.store.config_path.exists())
        cfg = self.store.load_or_create_config()
        self.assertEqual(cfg, PomodoroConfig())
        doc = json.loads(self.store.config_path.read_text(encoding="utf-8"))
        self.assertEqual(doc["WorkMinutes"], 25)
        self.assertEqual(doc["LongBreakMinutes"], 15)
        self.assertIs(doc["AutoAdvance"], True)

    def test_config_round_trip(self) -> None:
        from pomo.contracts.v1 import PomodoroConfig

        cfg = PomodoroConfig(work_minutes=50, break_minutes=10, long_break_minutes=30, cycles=2, sound=False)
        self.store.save_config(cfg)
        self.assertEqual(self.store.load_or_create_config(), cfg)

    def test_corrupt_config_falls_back_to_defaults_and_is_rewritten(self) -> None:
        from pomo.contracts.v1 import PomodoroConfig

        self.store.config_path.write_text("{not json", encoding="utf-8")
        self.assertEqual(self.store.load_or_create_config(), PomodoroConfig())
        doc = json.loads(self.store.config_path.read_text(encoding="utf-8"))
        self.assertEqual(doc["Cycles"], 4)

    def test_config_ignores_unknown_keys(self) -> None:
        self.store.config_path.write_text(json.dumps({"WorkMinutes": 40, "Theme": "dark"}), encoding="utf-8")
        cfg = self.store.load_or_create_config()
        self.assertEqual(cfg.work_minutes, 40)
        self.assertEqual(cfg.break_minutes, 5)

    def test_state_round_trip(self) -> None:
        from pomo.kernel import session as sm

        state = sm.pause(_state(), T0 + timedelta(seconds=61))
        self.store.save_state(state)
        loaded = self.store.try_load_state()
        self.assertEqual(loaded, state)

        doc = json.loads(self.store.state_path.read_text(encoding="utf-8"))
        self.assertEqual(doc["Phase"], "Work")
        self.assertEqual(doc["PausedRemainingSeconds"], 1439)
        self.assertEqual(doc["SessionId"], str(state.session_id))

    def test_missing_state_is_absent(self) -> None:
        self.assertIsNone(self.store.try_load_state())

    def test_corrupt_state_is_absent(self) -> None:
        self.store.state_path.write_text('{"SessionId": "abc", "Phase": ', encoding="utf-8")
        self.assertIsNone(self.store.try_load_state())

    def test_state_violating_pause_invariant_is_absent(self) -> None:
        doc = _state().to_wire()
        doc["IsPaused"] = True
        self.store.state_path.write_text(json.dumps(doc), encoding="utf-8")
        self.assertIsNone(self.store.try_load_state())

    def test_state_with_cycle_beyond_total_is_absent(self) -> None:
        doc = _state().to_wire()
        doc["CycleIndex"] = 9
        self.store.state_path.write_text(json.dumps(doc), encoding="utf-8")
        self.assertIsNone(self.store.try_load_state())

    def test_state_accepts_numeric_phase(self) -> None:
        from pomo.contracts.v1 import PomodoroPhase

        doc = _state().to_wire()
        doc["Phase"] = 2
        doc["PhaseStartedAtUtc"] = "2026-03-02T09:00:00+00:00"
        self.store.state_path.write_text(json.dumps(doc), encoding="utf-8")
        loaded = self.store.try_load_state()
        self.assertEqual(loaded.phase, PomodoroPhase.LONG_BREAK)
        self.assertEqual(loaded.phase_started_at_utc, T0)

    def test_save_leaves_no_temp_files(self) -> None:
        self.store.save_state(_state())
        self.store.save_state(_state())
        names = sorted(p.name for p in self.dir.iterdir())
        self.assertEqual(names, ["state.json"])

    def test_delete_state_tolerates_missing_file(self) -> None:
        self.store.delete_state()
        self.store.save_state(_state())
        self.store.delete_state()
        self.assertFalse(self.store.state_path.exists())

    def test_append_log_writes_one_compact_line_per_event(self) -> None:
        from pomo.contracts.v1 import LogEvent

        state = _state()
        self.store.append_log(LogEvent(type="session_started", at_utc=T0, state=state))
        self.store.append_log(LogEvent(type="stopped", at_utc=T0 + timedelta(seconds=5), state=state))

        lines = self.store.log_path.read_text(encoding="utf-8").splitlines()
        self.assertEqual(len(lines), 2)
        first = json.loads(lines[0])
        self.assertEqual(set(first), {"Type", "AtUtc", "State"})
        self.assertEqual(first["Type"], "session_started")
        self.assertTrue(first["AtUtc"].startswith("2026-03-02T09:00:00"))
        self.assertEqual(first["State"]["CycleIndex"], 1)
        self.assertEqual(json.loads(lines[1])["Type"], "stopped")

    def test_intents_round_trip_and_tolerate_garbage(self) -> None:
        from pomo.kernel.intent import TaskIntentState

        intents = TaskIntentState()
        intents.set_current_intent("Write report", add_to_recents=True)
        intents.pin("Inbox zero")
        self.store.save_intents(intents)
        loaded = self.store.load_intents()
        self.assertEqual(loaded.current_intent, "Write report")
        self.assertEqual(loaded.pinned, ["Inbox zero"])
        self.assertEqual(loaded.recents, ["Write report"])

        self.store.intent_path.write_text("[1, 2", encoding="utf-8")
        empty = self.store.load_intents()
        self.assertIsNone(empty.current_intent)
        self.assertEqual(empty.pinned, [])


if __name__ == "__main__":
    unittest.main()
