"""Background timers for debounced snapshots and idle polling."""

from __future__ import annotations

import logging
import threading
from typing import Callable

logger = logging.getLogger(__name__)


class DebounceTimer:
    """Run a callback once mutations have settled for ``delay`` seconds.

    Each ``trigger()`` replaces any pending run with a fresh one, so a burst
    of triggers produces a single call after the last of them.
    """

    def __init__(self, delay: float, callback: Callable[[], None], *, name: str = "codetime-debounce") -> None:
        self.delay = delay
        self._callback = callback
        self._name = name
        self._lock = threading.Lock()
        self._timer: threading.Timer | None = None

    def trigger(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self.delay, self._fire)
            self._timer.name = self._name
            self._timer.daemon = True
            self._timer.start()

    def cancel(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._timer is not None

    def _fire(self) -> None:
        with self._lock:
            # A trigger() that raced with this run has already replaced us
            if self._timer is not threading.current_thread():
                return
            self._timer = None
        try:
            self._callback()
        except Exception:
            logger.exception("Debounced callback %s failed", self._name)


class Heartbeat:
    """Call ``callback`` every ``interval`` seconds on a daemon thread."""

    def __init__(self, interval: float, callback: Callable[[], None], *, name: str = "codetime-heartbeat") -> None:
        self.interval = interval
        self._callback = callback
        self._name = name
        self._thread: threading.Thread | None = None
        self._stop_event = threading.Event()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        thread = self._thread
        self._thread = None
        # The callback may itself stop the heartbeat
        if thread is not None and thread is not threading.current_thread() and thread.is_alive():
            thread.join(timeout=2.0)

    def _run(self) -> None:
        while not self._stop_event.wait(timeout=self.interval):
            try:
                self._callback()
            except Exception:
                logger.exception("Heartbeat callback %s failed", self._name)
