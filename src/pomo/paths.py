from __future__ import annotations

import os
from pathlib import Path
from typing import Optional


HOME_ENV = "POMO_HOME"


def pomo_home(override: Optional[str] = None) -> Path:
    raw = (override or "").strip() or os.environ.get(HOME_ENV, "").strip()
    if raw:
        return Path(raw).expanduser().resolve()
    return (Path.home() / ".pomodoro").resolve()


def ensure_home(override: Optional[str] = None) -> Path:
    home = pomo_home(override)
    home.mkdir(parents=True, exist_ok=True)
    return home
