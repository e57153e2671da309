import logging
import threading
from contextlib import contextmanager
from enum import Enum

from ..exceptions import SyncInProgressError


class ActivityState(Enum):
    IDLE = "idle"
    SYNCING = "syncing"
    RECONCILING = "reconciling"


class SyncCoordinator:
    """
    Single owner of the "something is mutating the mapping" state.
    A sync run and a device-management operation never overlap.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._state = ActivityState.IDLE

    @property
    def state(self) -> ActivityState:
        with self._lock:
            return self._state

    @property
    def is_busy(self) -> bool:
        return self.state != ActivityState.IDLE

    @contextmanager
    def activity(self, state: ActivityState):
        if state == ActivityState.IDLE:
            raise ValueError("activity() needs a busy state")
        with self._lock:
            if self._state != ActivityState.IDLE:
                raise SyncInProgressError(f"Cannot start {state.value}: already {self._state.value}")
            self._state = state
        logging.debug(f"Coordinator: idle -> {state.value}")
        try:
            yield
        finally:
            with self._lock:
                self._state = ActivityState.IDLE
            logging.debug(f"Coordinator: {state.value} -> idle")
