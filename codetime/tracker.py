"""Session state machine: turns editor activity into per-file sessions."""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass
from typing import Callable, Iterable

from codetime.config import HEARTBEAT_INTERVAL_MS, IDLE_TIMEOUT_MS
from codetime.events import ActivityEvent, EventSource
from codetime.store import SessionStore, now_ms
from codetime.timers import Heartbeat

logger = logging.getLogger(__name__)

WorkspaceRoots = Callable[[], Iterable[str]]

_SEPARATORS = tuple({"/", os.sep})


def resolve_project_path(file_path: str, roots: Iterable[str]) -> str | None:
    """Return the longest workspace root containing file_path, if any.

    Matching is on whole path segments, so /ws/a does not claim /ws/abc/x.py.
    Roots are normally disjoint; the longest match wins when they nest.
    """
    best: str | None = None
    best_len = -1
    for root in roots:
        if not root:
            continue
        prefix = root if root.endswith(_SEPARATORS) else None
        if prefix is not None:
            matched = file_path.startswith(prefix)
        else:
            matched = file_path == root or any(file_path.startswith(root + sep) for sep in _SEPARATORS)
        if matched and len(root) > best_len:
            best, best_len = root, len(root)
    return best


@dataclass(frozen=True)
class OpenSession:
    session_id: int
    file_path: str
    opened_at: int


class SessionTracker:
    """Map activity signals to non-overlapping sessions in the store.

    At most one session is open at a time. A session ends when activity moves
    to another file, when the heartbeat finds no activity for idle_timeout_ms,
    or when the tracker stops. Public methods never raise: store failures are
    logged and the tracker carries on.
    """

    def __init__(
        self,
        store: SessionStore,
        *,
        workspace_roots: WorkspaceRoots | None = None,
        idle_timeout_ms: int = IDLE_TIMEOUT_MS,
        heartbeat_interval_ms: int = HEARTBEAT_INTERVAL_MS,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._store = store
        self._workspace_roots = workspace_roots
        self.idle_timeout_ms = idle_timeout_ms
        self.heartbeat_interval_ms = heartbeat_interval_ms
        self._clock = clock
        self._lock = threading.RLock()
        self._current: OpenSession | None = None
        self._last_activity_at = 0
        self._heartbeat = Heartbeat(heartbeat_interval_ms / 1000, self.check_idle)
        self._unsubscribers: list[Callable[[], None]] = []
        self._listeners: list[Callable[[], None]] = []

    def start(self, source: EventSource | None = None, *, active_file: str | None = None) -> None:
        """Start the idle heartbeat and listen to source.

        If a file is already active in the editor, tracking starts on it
        right away.
        """
        with self._lock:
            if source is not None:
                self._unsubscribers.append(source.subscribe(self.dispatch))
        self._heartbeat.start()
        if active_file:
            self.on_activity(active_file)

    def stop(self) -> None:
        """Stop the heartbeat, end any open session and detach from sources.

        Safe to call more than once, including during interpreter shutdown.
        """
        # Outside the lock: a heartbeat tick may be waiting on it
        self._heartbeat.stop()
        with self._lock:
            self._end_current_session()
            unsubscribers, self._unsubscribers = self._unsubscribers, []
        for unsubscribe in unsubscribers:
            try:
                unsubscribe()
            except Exception:
                logger.exception("Failed to detach from activity source")

    # Activity signals

    def dispatch(self, event: ActivityEvent) -> None:
        """Route a host event to the matching signal handler."""
        if event.kind == "window_focus_change":
            if event.focused:
                self.on_window_focus(event.file_path)
            else:
                self.on_window_blur()
        elif event.kind == "active_file_change":
            self.on_editor_focus_change(event.file_path)
        else:
            self.on_activity(event.file_path)

    def on_activity(self, file_path: str) -> None:
        """Record activity on file_path, switching sessions if it changed."""
        with self._lock:
            now = self._clock()
            self._last_activity_at = now
            if self._current is not None and self._current.file_path == file_path:
                return
            self._switch_session(file_path, now)

    def on_editor_focus_change(self, file_path: str) -> None:
        self.on_activity(file_path)

    def on_window_focus(self, file_path: str | None = None) -> None:
        if file_path:
            self.on_activity(file_path)

    def on_window_blur(self) -> None:
        """Back-date the last activity so the next heartbeat ends the session.

        Brief focus losses (alt-tab and back) cost nothing, since any activity
        before the next tick resets the clock.
        """
        with self._lock:
            self._last_activity_at = self._clock() - self.idle_timeout_ms

    def check_idle(self) -> None:
        """End the open session if the idle timeout has elapsed."""
        with self._lock:
            if self._current is None:
                return
            idle_ms = self._clock() - self._last_activity_at
            if idle_ms >= self.idle_timeout_ms:
                logger.info("Idle for %d ms, ending session for %s", idle_ms, self._current.file_path)
                self._end_current_session()

    # Observers

    def on_session_change(self, callback: Callable[[], None]) -> None:
        """Register a callback run on every session open and close."""
        with self._lock:
            self._listeners.append(callback)

    def _notify_session_change(self) -> None:
        for callback in list(self._listeners):
            try:
                callback()
            except Exception:
                logger.exception("Session change listener failed")

    # Introspection

    def is_tracking(self) -> bool:
        with self._lock:
            return self._current is not None

    def get_current_file_path(self) -> str | None:
        with self._lock:
            return self._current.file_path if self._current else None

    def get_session_start_time(self) -> int | None:
        with self._lock:
            return self._current.opened_at if self._current else None

    @property
    def current_session(self) -> OpenSession | None:
        with self._lock:
            return self._current

    @property
    def last_activity_at(self) -> int:
        with self._lock:
            return self._last_activity_at

    # Transitions

    def _switch_session(self, file_path: str, now: int) -> None:
        self._end_current_session(end_time=now)

        project_path = self._resolve_project_path(file_path)
        try:
            session_id = self._store.start_session(file_path, project_path, start_time=now)
        except Exception:
            logger.exception("Failed to start session for %s", file_path)
            return

        self._current = OpenSession(session_id=session_id, file_path=file_path, opened_at=now)
        logger.debug("Tracking %s (project %s)", file_path, project_path)
        self._notify_session_change()

    def _end_current_session(self, end_time: int | None = None) -> None:
        current = self._current
        if current is None:
            return
        # Cleared first so a failing store can't leave us stuck in a session
        self._current = None
        try:
            self._store.end_session(current.session_id, end_time=end_time)
        except Exception:
            logger.exception("Failed to end session %s for %s", current.session_id, current.file_path)
        self._notify_session_change()

    def _resolve_project_path(self, file_path: str) -> str | None:
        if self._workspace_roots is None:
            return None
        try:
            return resolve_project_path(file_path, self._workspace_roots())
        except Exception:
            logger.warning("Could not resolve project for %s", file_path, exc_info=True)
            return None
