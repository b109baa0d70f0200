from __future__ import annotations

import logging
import os
import signal
import subprocess
import sys
import threading
from typing import Any, Optional

from .daemon.loop import ControlLoop
from .daemon.notify import ConsoleNotifier, LoggingNotifier, Notifier
from .daemon.resident import PomodoroService
from .daemon.server import DaemonPaths, IpcServer
from .kernel.store import Store
from .paths import HOME_ENV
from .util.fs import atomic_write_text
from .util.obslog import LOGGER_ROOT, setup_resident_logging

logger = logging.getLogger("pomo.daemon")

TICK_INTERVAL_S = 1.0


def spawn_background(paths: DaemonPaths) -> int:
    """Start a detached headless resident for `paths.home`; returns its pid."""
    paths.daemon_dir.mkdir(parents=True, exist_ok=True)
    env = os.environ.copy()
    env[HOME_ENV] = str(paths.home)
    with paths.log_path.open("a", encoding="utf-8") as log_f:
        p = subprocess.Popen(
            [sys.executable, "-m", "pomo", "--background"],
            stdout=log_f,
            stderr=log_f,
            stdin=subprocess.DEVNULL,
            env=env,
            start_new_session=True,
            cwd=str(paths.home),
        )
    return int(p.pid)


def read_pid(paths: DaemonPaths) -> int:
    try:
        txt = paths.pid_path.read_text(encoding="utf-8").strip()
    except OSError:
        return 0
    return int(txt) if txt.isdigit() else 0


def run_resident(paths: DaemonPaths, *, headless: bool, notifier: Optional[Notifier] = None) -> int:
    """Run tick + IPC server until `exit`, SIGINT or SIGTERM. Caller holds the lock."""
    paths.daemon_dir.mkdir(parents=True, exist_ok=True)
    # Foreground keeps the terminal for status output; diagnostics go to the log file.
    log_stream = None if headless else paths.log_path.open("a", encoding="utf-8")
    handler = setup_resident_logging(level=os.environ.get("POMO_LOG_LEVEL"), stream=log_stream)

    service = PomodoroService(
        Store(paths.home),
        notifier=notifier or (LoggingNotifier() if headless else ConsoleNotifier()),
    )
    loop = ControlLoop(tick=service.tick, interval_s=TICK_INTERVAL_S)
    server = IpcServer(paths.sock_path, loop=loop, handler=service.handle_request)

    def _signal_handler(signum: int, frame: Any) -> None:
        loop.stop()

    signal.signal(signal.SIGTERM, _signal_handler)
    signal.signal(signal.SIGINT, _signal_handler)

    atomic_write_text(paths.pid_path, f"{os.getpid()}\n")
    ipc_thread = threading.Thread(target=server.serve_forever, name="pomo-ipc", daemon=True)
    ipc_thread.start()
    logger.info("resident started pid=%s headless=%s home=%s", os.getpid(), headless, paths.home)
    if not headless:
        print(f"Pomodoro running (data: {paths.home}). Ctrl+C to exit.")

    try:
        loop.run()
    finally:
        server.stop()
        ipc_thread.join(timeout=2.0)
        paths.pid_path.unlink(missing_ok=True)
        logger.info("resident stopped")
        if log_stream is not None:
            if getattr(handler, "stream", None) is log_stream:
                logging.getLogger(LOGGER_ROOT).removeHandler(handler)
            log_stream.close()
    if not headless:
        print()
    return 0
