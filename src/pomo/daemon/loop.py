"""The resident's single control-flow thread.

The periodic tick and every state-mutating command run here, one at a time.
Other threads hand work over with `post()`/`call()` and wait on a future.
"""
from __future__ import annotations

import logging
import queue
import threading
import time
from concurrent.futures import Future
from typing import Any, Callable, Optional, Tuple

logger = logging.getLogger("pomo.loop")

_WorkItem = Tuple[Callable[[], Any], "Future[Any]"]


class ControlLoop:
    def __init__(self, *, tick: Optional[Callable[[], None]] = None, interval_s: float = 1.0):
        self._tick = tick
        self._interval_s = max(0.05, float(interval_s))
        self._inbox: "queue.Queue[Optional[_WorkItem]]" = queue.Queue()
        self._stop = threading.Event()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def post(self, fn: Callable[[], Any]) -> "Future[Any]":
        fut: "Future[Any]" = Future()
        self._inbox.put((fn, fut))
        return fut

    def call(self, fn: Callable[[], Any], *, timeout_s: float) -> Any:
        """Run `fn` on the loop thread and wait for its result.

        Raises `concurrent.futures.TimeoutError` when the loop does not get to
        it in time; the work item stays queued and still runs later.
        """
        return self.post(fn).result(timeout=timeout_s)

    def stop(self) -> None:
        self._stop.set()
        self._inbox.put(None)

    def _run_tick(self) -> None:
        if self._tick is None:
            return
        try:
            self._tick()
        except Exception:
            logger.exception("tick failed")

    def _run_item(self, item: _WorkItem) -> None:
        fn, fut = item
        if not fut.set_running_or_notify_cancel():
            return
        try:
            fut.set_result(fn())
        except Exception as e:
            logger.exception("posted work failed")
            fut.set_exception(e)

    def run(self) -> None:
        next_tick = time.monotonic()
        while not self._stop.is_set():
            now = time.monotonic()
            if now >= next_tick:
                self._run_tick()
                next_tick = now + self._interval_s
                continue
            try:
                item = self._inbox.get(timeout=next_tick - now)
            except queue.Empty:
                continue
            if item is not None:
                self._run_item(item)

        # Drain so no caller waits on work that will never run.
        while True:
            try:
                item = self._inbox.get_nowait()
            except queue.Empty:
                break
            if item is not None:
                item[1].cancel()
