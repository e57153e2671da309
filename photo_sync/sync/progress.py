import logging
import queue
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional


class SyncPhase(Enum):
    PREPARE = "prepare"
    PUBLISH_LOCAL = "publish_local"
    MERGE_PEERS = "merge_peers"
    CREATE_DIRECTORIES = "create_directories"
    UPLOAD = "upload"
    DOWNLOAD = "download"
    PERSIST = "persist"
    DONE = "done"
    RECONCILE = "reconcile"


@dataclass
class SyncEvent:
    """
    One progress notification.

    kind: 'phase' (a phase started), 'progress' (a transfer finished),
          'warning', or 'done' (terminal; `success` is set).
    """
    kind: str
    message: str
    phase: Optional[SyncPhase] = None
    progress: Optional[int] = None
    success: Optional[bool] = None
    timestamp: datetime = field(default_factory=datetime.now)


class ProgressChannel:
    """
    Fan-out of SyncEvents to subscribers.

    subscribe() hands out a Queue that a UI thread drains at its own pace;
    listen() registers a callback invoked on the publishing thread.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._queues: List[queue.Queue] = []
        self._callbacks: List[Callable[[SyncEvent], None]] = []

    def subscribe(self) -> queue.Queue:
        q: queue.Queue = queue.Queue()
        with self._lock:
            self._queues.append(q)
        return q

    def unsubscribe(self, q: queue.Queue):
        with self._lock:
            if q in self._queues:
                self._queues.remove(q)

    def listen(self, callback: Callable[[SyncEvent], None]):
        with self._lock:
            self._callbacks.append(callback)

    def publish(self, event: SyncEvent):
        with self._lock:
            queues = list(self._queues)
            callbacks = list(self._callbacks)
        for q in queues:
            q.put(event)
        for cb in callbacks:
            try:
                cb(event)
            except Exception:
                # A broken listener must not break the sync run
                logging.exception("Progress listener failed")
