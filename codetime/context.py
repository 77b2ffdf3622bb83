"""Lifecycle owner for the store and tracker of one tracking run."""

from __future__ import annotations

import logging
from typing import Callable

from codetime.config import Settings
from codetime.events import EventSource
from codetime.store import SessionStore, StoreWriteError, now_ms
from codetime.tracker import SessionTracker, WorkspaceRoots

logger = logging.getLogger(__name__)


def recover_dangling_sessions(store: SessionStore) -> int:
    """End sessions left open by a previous run that did not shut down cleanly.

    Their duration runs up to now, which overstates the real time but keeps
    it from being lost. Returns the number of sessions ended.
    """
    dangling = store.get_ongoing_sessions()
    for session in dangling:
        store.end_session(session.id)
    if dangling:
        logger.warning("Recovered %d unterminated session(s) from a previous run", len(dangling))
    return len(dangling)


class TrackerContext:
    """Owns a SessionStore and the SessionTracker writing to it.

    Build one with open(), hand it to whatever needs the store or tracker,
    and close() it on shutdown. Closing stops the tracker first so its open
    session is ended before the final snapshot.
    """

    def __init__(self, settings: Settings, store: SessionStore, tracker: SessionTracker) -> None:
        self.settings = settings
        self.store = store
        self.tracker = tracker
        self.events = EventSource()
        self._closed = False

    @classmethod
    def open(
        cls,
        settings: Settings | None = None,
        *,
        workspace_roots: WorkspaceRoots | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> TrackerContext:
        """Open the store, recover dangling sessions and build the tracker.

        Raises:
            StoreInitializationError: If the store cannot be opened.
        """
        settings = settings or Settings.from_env()
        store = SessionStore.open(settings.db_path, save_delay_ms=settings.save_delay_ms, clock=clock)
        recover_dangling_sessions(store)
        tracker = SessionTracker(
            store,
            workspace_roots=workspace_roots,
            idle_timeout_ms=settings.idle_timeout_ms,
            heartbeat_interval_ms=settings.heartbeat_interval_ms,
            clock=clock,
        )
        return cls(settings, store, tracker)

    def __enter__(self) -> TrackerContext:
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        self.close()

    def start(self, *, active_file: str | None = None) -> None:
        """Start tracking events published on self.events."""
        self.tracker.start(self.events, active_file=active_file)

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Stop the tracker and flush and release the store.

        Raises:
            StoreWriteError: If the final snapshot could not be written.
        """
        if self._closed:
            return
        self._closed = True
        self.tracker.stop()
        try:
            self.store.close()
        except StoreWriteError:
            logger.error("Final snapshot failed; recent sessions may be lost")
            raise
