"""Durable mirror of the resident's state.

Every write goes through a temp file + rename, and every read tolerates a
missing or corrupt file, so neither a crash nor a concurrent reader can turn
a half-written file into an error.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from ..contracts.v1 import LogEvent, PomodoroConfig, PomodoroState
from ..paths import ensure_home
from ..util.fs import append_jsonl, atomic_write_json, read_json
from .intent import TaskIntentState

logger = logging.getLogger("pomo.store")


class Store:
    def __init__(self, data_dir: Optional[Path] = None):
        self.data_dir = Path(data_dir) if data_dir is not None else ensure_home()
        self.data_dir.mkdir(parents=True, exist_ok=True)

    @property
    def config_path(self) -> Path:
        return self.data_dir / "config.json"

    @property
    def state_path(self) -> Path:
        return self.data_dir / "state.json"

    @property
    def log_path(self) -> Path:
        return self.data_dir / "log.jsonl"

    @property
    def intent_path(self) -> Path:
        return self.data_dir / "intent.json"

    def load_or_create_config(self) -> PomodoroConfig:
        if not self.config_path.exists():
            created = PomodoroConfig()
            self.save_config(created)
            return created

        doc = read_json(self.config_path)
        try:
            if doc:
                return PomodoroConfig.model_validate(doc)
        except ValidationError as e:
            logger.warning("invalid config %s, restoring defaults: %s", self.config_path, e)
        created = PomodoroConfig()
        self.save_config(created)
        return created

    def save_config(self, config: PomodoroConfig) -> None:
        atomic_write_json(self.config_path, config.to_wire())

    def try_load_state(self) -> Optional[PomodoroState]:
        """The persisted session, or None when there is none or it cannot be read."""
        doc = read_json(self.state_path)
        if not doc:
            return None
        try:
            return PomodoroState.model_validate(doc)
        except ValidationError as e:
            logger.warning("ignoring invalid state file %s: %s", self.state_path, e)
            return None

    def save_state(self, state: PomodoroState) -> None:
        atomic_write_json(self.state_path, state.to_wire())

    def delete_state(self) -> None:
        self.state_path.unlink(missing_ok=True)

    def append_log(self, event: LogEvent) -> None:
        append_jsonl(self.log_path, event.to_wire())

    def load_intents(self) -> TaskIntentState:
        return TaskIntentState.from_dict(read_json(self.intent_path))

    def save_intents(self, intents: TaskIntentState) -> None:
        atomic_write_json(self.intent_path, intents.to_dict())
