"""Settings-changed notifications.

Every successful write, reset, delete or migration emits one
:class:`SettingsChanged`.  UI collaborators (tree decorations, open report
panels) subscribe and re-render; the engine itself never depends on who is
listening.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Callable, Literal

import structlog

logger = structlog.get_logger()

ChangeReason = Literal["write", "reset", "delete", "migrate"]


@dataclass(frozen=True)
class SettingsChanged:
    project_root: str
    directories: tuple[str, ...]
    fields: tuple[str, ...]
    reason: ChangeReason


Listener = Callable[[SettingsChanged], None]


class SettingsChangeBus:
    """Synchronous fan-out of :class:`SettingsChanged` events."""

    def __init__(self) -> None:
        self._listeners: list[Listener] = []
        self._lock = threading.Lock()

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register *listener*; the returned callable unsubscribes it."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def emit(self, event: SettingsChanged) -> None:
        """Deliver *event* to every listener.

        A listener that raises is logged with its traceback; the others
        still receive the event.
        """
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                logger.exception(
                    "settings_listener_failed",
                    listener=getattr(listener, "__qualname__", repr(listener)),
                    reason=event.reason,
                )

    def __len__(self) -> int:
        return len(self._listeners)
