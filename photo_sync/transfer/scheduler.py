import logging
import threading
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Callable, Dict, List, Optional

from .. import config
from ..models import TransferStatus, TransferTask
from ..sync.progress import ProgressChannel, SyncEvent

TransferOperation = Callable[[TransferTask], None]


class TransferScheduler:
    """
    Runs upload/download tasks with bounded parallelism.

    Submissions beyond `max_concurrent` wait in FIFO order. Every registry
    and counter below is touched only while holding `_lock`, so worker
    threads never race on progress. Nothing is retried here: the next sync
    run decides what to try again from the mapping status.
    """

    def __init__(self,
                 max_concurrent: int = config.DEFAULT_MAX_CONCURRENT_TASKS,
                 history_size: int = config.TRANSFER_HISTORY_SIZE,
                 channel: Optional[ProgressChannel] = None):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be >= 1")
        self.max_concurrent = max_concurrent
        self.channel = channel
        self._executor: Optional[ThreadPoolExecutor] = None
        self._lock = threading.Lock()

        self._pending: List[TransferTask] = []
        self._active: List[TransferTask] = []
        self._history: deque = deque(maxlen=history_size)
        self._futures: Dict[Future, TransferTask] = {}

        self._expected = 0
        self._submitted = 0
        self._finished = 0
        self._progress = 0
        self._current_item = ""

    # --- Submission ---

    def expect(self, total: int):
        """Starts a new progress window of `total` planned tasks."""
        with self._lock:
            self._expected = total
            self._submitted = 0
            self._finished = 0
            self._progress = 0 if total else 100

    def submit(self, task: TransferTask, operation: TransferOperation) -> Future:
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=self.max_concurrent,
                                                    thread_name_prefix="transfer")
            task.status = TransferStatus.PENDING
            self._pending.append(task)
            self._submitted += 1
            future = self._executor.submit(self._run, task, operation)
            self._futures[future] = task
        return future

    def _run(self, task: TransferTask, operation: TransferOperation):
        with self._lock:
            if task.status != TransferStatus.PENDING:
                return
            self._pending.remove(task)
            self._active.append(task)
            task.mark_in_progress()
            self._current_item = f"{task.type.value}: {task.file_name}"

        error = None
        try:
            operation(task)
        except Exception as e:
            # One failed file never stops the others
            error = str(e) or e.__class__.__name__
            logging.error(f"{task.type.value.capitalize()} failed for {task.file_name}: {error}")

        with self._lock:
            self._active.remove(task)
            if error is None:
                task.mark_completed()
            else:
                task.mark_failed(error)
            event = self._finish_locked(task)
        self._publish(event)

    def _finish_locked(self, task: TransferTask) -> SyncEvent:
        self._history.append(task)
        self._finished += 1
        total = max(self._expected, self._submitted)
        self._progress = int(self._finished * 100 / total) if total else 100
        outcome = "done" if task.status == TransferStatus.COMPLETED else "failed"
        self._current_item = f"{task.file_name} {outcome} ({self._finished}/{total})"
        return SyncEvent(kind="progress", message=self._current_item, progress=self._progress)

    def _publish(self, event: SyncEvent):
        if self.channel is not None:
            self.channel.publish(event)

    # --- Control ---

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Blocks until every submitted task is final. False on timeout."""
        with self._lock:
            futures = list(self._futures)
        if not futures:
            return True
        _, not_done = wait(futures, timeout=timeout)
        with self._lock:
            for f in futures:
                if f.done():
                    self._futures.pop(f, None)
        return not not_done

    def cancel_pending(self) -> int:
        """
        Fails every task that has not started. Running tasks finish
        naturally so no half-written file is left on the remote.
        """
        events = []
        with self._lock:
            for future, task in list(self._futures.items()):
                if task.status == TransferStatus.PENDING and future.cancel():
                    self._pending.remove(task)
                    task.mark_failed("cancelled")
                    events.append(self._finish_locked(task))
                    del self._futures[future]
        for event in events:
            self._publish(event)
        if events:
            logging.info(f"Cancelled {len(events)} pending transfers")
        return len(events)

    def shutdown(self, wait: bool = True):
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=wait)

    # --- Status ---

    def pending_tasks(self) -> List[TransferTask]:
        with self._lock:
            return list(self._pending)

    def active_tasks(self) -> List[TransferTask]:
        with self._lock:
            return list(self._active)

    def completed_tasks(self) -> List[TransferTask]:
        """Finished tasks (completed or failed), newest first, capped."""
        with self._lock:
            return list(reversed(self._history))

    @property
    def progress(self) -> int:
        with self._lock:
            return self._progress

    @property
    def current_item(self) -> str:
        with self._lock:
            return self._current_item
