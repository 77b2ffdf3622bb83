"""Editor activity events consumed by the tracker."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Literal

from pydantic import BaseModel, model_validator

logger = logging.getLogger(__name__)

EventKind = Literal["text_change", "active_file_change", "selection_change", "window_focus_change"]

# Event kinds that always name the file being worked on
FILE_EVENT_KINDS = {"text_change", "active_file_change", "selection_change"}


class ActivityEvent(BaseModel):
    """One raw signal from the host editor.

    Every kind counts as activity on file_path, except a window_focus_change
    with focused=False, which marks the window as blurred.
    """

    kind: EventKind
    file_path: str | None = None
    focused: bool | None = None

    @model_validator(mode="after")
    def _check_fields(self) -> ActivityEvent:
        if self.kind in FILE_EVENT_KINDS and not self.file_path:
            raise ValueError(f"{self.kind} event requires file_path")
        if self.kind == "window_focus_change" and self.focused is None:
            raise ValueError("window_focus_change event requires focused")
        return self


Listener = Callable[[ActivityEvent], None]


class EventSource:
    """In-process publisher of activity events.

    Stands in for the editor's subscription API: subscribe() returns the
    function that detaches the listener again.
    """

    def __init__(self) -> None:
        self._listeners: list[Listener] = []
        self._lock = threading.Lock()

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    @property
    def listener_count(self) -> int:
        with self._lock:
            return len(self._listeners)

    def emit(self, event: ActivityEvent) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                logger.exception("Activity listener failed for %s event", event.kind)
