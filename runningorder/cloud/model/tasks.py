"""
Contains classes which publish the outcome of cloud operations, and run them in a separate thread.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, List


class EventKind(Enum):
    ZONE_CREATION = "zone_creation"
    SUBSCRIPTION_CREATION = "subscription_creation"
    SUBSCRIPTION_REMOVAL = "subscription_removal"
    PERMISSION_REQUEST = "permission_request"


@dataclass(frozen=True)
class SyncEvent:
    """
    The outcome of a cloud operation.
    """

    #: What the operation was
    kind: EventKind
    #: True if the operation succeeded
    success: bool
    #: Result of the operation on success, or error message on failure
    data: Any = None
    #: The zone or scope the operation was for, if any
    target: str = ''


class EventSignal:
    """
    A list of callbacks which are called each time an event is emitted. Callbacks run on the thread which emits the
    event.
    """

    def __init__(self):
        self._callbacks: List[Callable[[SyncEvent], Any]] = []
        self._lock = threading.Lock()

    def connect(self, callback: Callable[[SyncEvent], Any]) -> None:
        with self._lock:
            self._callbacks.append(callback)

    def disconnect(self, callback: Callable[[SyncEvent], Any]) -> None:
        with self._lock:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

    def emit(self, event: SyncEvent) -> None:
        """
        Call every connected callback with ``event``. A failing callback is logged and does not prevent the remaining
        callbacks from being called.

        :param event: the event to publish.
        """
        with self._lock:
            callbacks = list(self._callbacks)
        for callback in callbacks:
            try:
                callback(event)
            except Exception:
                logging.exception('Event callback {} failed for {}'.format(callback, event.kind.value))


class BackgroundTask(threading.Thread):
    """
    Runs a cloud operation in a separate thread and publishes its outcome on an ``EventSignal``.
    """

    def __init__(self, kind: EventKind, func: Callable[[], tuple[bool, Any]], signal: EventSignal, target: str = ''):
        """
        Initialises the task.

        :param kind: the kind of event published when the operation completes.
        :param func: the operation. It must return a ``(success, data)`` tuple.
        :param signal: where the outcome is published.
        :param target: the zone or scope the operation is for.
        """
        super().__init__(name="runningorder-{}".format(kind.value), daemon=True)
        self.kind: EventKind = kind
        self.func: Callable[[], tuple[bool, Any]] = func
        self.signal: EventSignal = signal
        self.target: str = target
        self.result: SyncEvent | None = None

    def run(self) -> None:
        try:
            success, data = self.func()
        except Exception as e:
            logging.exception('Task {} failed'.format(self.name))
            success, data = False, 'Unexpected error: {}'.format(e)
        self.result = SyncEvent(self.kind, success, data, self.target)
        self.signal.emit(self.result)
