"""Single-instance policy: who becomes the resident, and how everyone else
reaches it."""
from __future__ import annotations

import os
import sys
import time
from typing import IO, Callable, Optional

from ..contracts.v1 import IpcRequest, IpcResponse
from ..util.file_lock import LockUnavailableError, acquire_lockfile, release_lockfile, write_lock_owner
from .server import DaemonPaths, send_request

FORWARD_ATTEMPTS = 20
FORWARD_DELAY_S = 0.1

MSG_RUNNING_UNREACHABLE = "Pomodoro is running, but failed to send command (is it still starting?)."
MSG_STARTED_UNREACHABLE = "Started Pomodoro, but couldn't deliver the command. Try again in a second."


def try_acquire_instance_lock(paths: DaemonPaths) -> Optional[IO[bytes]]:
    """Take the per-home resident lock, or None when another process holds it."""
    try:
        f = acquire_lockfile(paths.lock_path, blocking=False)
    except LockUnavailableError:
        return None
    write_lock_owner(f, os.getpid())
    return f


def forward_request(
    req: IpcRequest,
    *,
    paths: DaemonPaths,
    attempts: int = FORWARD_ATTEMPTS,
    delay_s: float = FORWARD_DELAY_S,
    sleep: Callable[[float], None] = time.sleep,
) -> Optional[IpcResponse]:
    """Deliver `req`, retrying while the resident is unreachable.

    Only transport failures are retried: once a response arrives (even
    ok=False) the command has been executed and must not be sent again.
    """
    for attempt in range(max(1, attempts)):
        resp = send_request(req, paths=paths)
        if resp is not None:
            return resp
        if attempt + 1 < attempts:
            sleep(delay_s)
    return None


def forward_and_report(req: IpcRequest, *, paths: DaemonPaths, unreachable_message: str) -> int:
    resp = forward_request(req, paths=paths)
    if resp is None:
        print(unreachable_message, file=sys.stderr)
        return 1
    if resp.ok:
        if resp.message.strip():
            print(resp.message)
        return 0
    print(resp.message or "Command failed.", file=sys.stderr)
    return 1


def run_invocation(
    req: Optional[IpcRequest],
    *,
    paths: DaemonPaths,
    background: bool = False,
    run_resident: Callable[..., int],
    spawn_background: Callable[[DaemonPaths], int],
) -> int:
    """Become the resident, or hand the command to the one that exists.

    - another resident holds the lock: no command -> `open`; else forward.
    - resident, no command or `--background`: run the resident loop.
    - resident with a command: release the lock, spawn a headless resident,
      forward the command to it.
    """
    lock = try_acquire_instance_lock(paths)

    if lock is None:
        if background:
            return 0
        if req is None:
            send_request(IpcRequest(command="open"), paths=paths)
            return 0
        return forward_and_report(req, paths=paths, unreachable_message=MSG_RUNNING_UNREACHABLE)

    if req is None or background:
        try:
            return run_resident(paths, headless=background)
        finally:
            release_lockfile(lock)

    release_lockfile(lock)
    try:
        spawn_background(paths)
    except OSError as e:
        print(f"Failed to start Pomodoro: {e}", file=sys.stderr)
        return 1
    return forward_and_report(req, paths=paths, unreachable_message=MSG_STARTED_UNREACHABLE)
