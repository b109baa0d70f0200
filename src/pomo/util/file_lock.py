"""Cross-process exclusive lock backed by a lock file.

The OS drops the lock when the holding process exits, so a crashed resident
never leaves a stale lock behind.
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import IO


class LockUnavailableError(RuntimeError):
    """Raised when a non-blocking lock is already held by another process."""


def _ensure_lock_region(f: IO[bytes]) -> None:
    # msvcrt locks a byte range; make sure byte 0 exists.
    f.seek(0, os.SEEK_END)
    if f.tell() <= 0:
        f.write(b"\0")
        f.flush()
    f.seek(0)


def _lock(fd: int, *, blocking: bool) -> None:
    if os.name == "nt":
        import msvcrt  # Windows only

        msvcrt.locking(fd, msvcrt.LK_LOCK if blocking else msvcrt.LK_NBLCK, 1)
        return

    import fcntl  # POSIX only

    flags = fcntl.LOCK_EX
    if not blocking:
        flags |= fcntl.LOCK_NB
    fcntl.flock(fd, flags)


def _unlock(fd: int) -> None:
    if os.name == "nt":
        import msvcrt  # Windows only

        msvcrt.locking(fd, msvcrt.LK_UNLCK, 1)
        return

    import fcntl  # POSIX only

    fcntl.flock(fd, fcntl.LOCK_UN)


def acquire_lockfile(path: Path, *, blocking: bool = False) -> IO[bytes]:
    """Open and lock `path`. Keep the returned handle open to hold the lock."""
    path.parent.mkdir(parents=True, exist_ok=True)
    f = path.open("r+b") if path.exists() else path.open("w+b")
    try:
        _ensure_lock_region(f)
        _lock(f.fileno(), blocking=blocking)
    except OSError as e:
        f.close()
        if not blocking:
            raise LockUnavailableError(str(e)) from e
        raise
    except BaseException:
        f.close()
        raise
    return f


def write_lock_owner(f: IO[bytes], pid: int) -> None:
    """Record the holder pid after the lock region (best-effort diagnostics)."""
    try:
        f.seek(1)
        f.truncate()
        f.write(str(int(pid)).encode("ascii"))
        f.flush()
    except OSError:
        pass


def release_lockfile(f: IO[bytes]) -> None:
    try:
        _unlock(f.fileno())
    except (OSError, ValueError):
        pass
    try:
        f.close()
    except OSError:
        pass
