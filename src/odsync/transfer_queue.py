#!/usr/bin/env python3
"""Bounded producer/consumer queue for transfers.

This module provides:
- BoundedTransferQueue: fixed-capacity queue drained by a fixed-size pool
  of worker threads

The producer decides *what* needs transferring and calls ``submit``; the
worker count decides *how many* transfers run at once. ``submit`` blocks while
the queue is full, so the producer never races ahead of the workers.

Usage:
    with BoundedTransferQueue(download_one, workers=8, capacity=32, cancel=token) as q:
        for item in batch:
            if not q.submit(item):
                break
        q.join()
"""

import logging
import queue
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Generic, Optional, TypeVar

from .cancellation import CancellationToken

logger = logging.getLogger(__name__)

T = TypeVar('T')

_STOP = object()

# Seconds between cancellation checks while the producer is blocked
PUT_POLL_INTERVAL = 0.1


class BoundedTransferQueue(Generic[T]):
    """Queue with backpressure and a fixed worker pool.

    Items are handled in no particular order. Once the cancellation token
    fires, or a handler raises, items still waiting in the queue are dropped
    while handlers already running are allowed to finish.
    """

    def __init__(
        self,
        handler: Callable[[T], None],
        workers: int,
        capacity: int,
        cancel: Optional[CancellationToken] = None,
        name: str = "transfer",
    ):
        """Initialize the queue and start its workers.

        Args:
            handler: Called once per submitted item on a worker thread
            workers: Number of worker threads
            capacity: Maximum number of items waiting in the queue
            cancel: Cancellation token
            name: Label used for thread names and logs
        """
        if workers < 1:
            raise ValueError(f"workers must be at least 1, got: {workers}")
        if capacity < 1:
            raise ValueError(f"capacity must be at least 1, got: {capacity}")

        self._handler = handler
        self._workers = workers
        self._cancel = cancel or CancellationToken.none()
        self._name = name

        self._queue: 'queue.Queue[object]' = queue.Queue(maxsize=capacity)
        self._lock = threading.Lock()
        self._error: Optional[Exception] = None
        self._closed = False

        self._submitted = 0
        self._completed = 0
        self._active = 0

        self._executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix=f"odsync-{name}")
        for _ in range(workers):
            self._executor.submit(self._work)
        logger.debug(f"Started {name} queue: {workers} workers, capacity {capacity}")

    @property
    def submitted(self) -> int:
        return self._submitted

    @property
    def completed(self) -> int:
        with self._lock:
            return self._completed

    @property
    def active(self) -> int:
        """Number of items currently being handled."""
        with self._lock:
            return self._active

    def _stopping(self) -> bool:
        return self._error is not None or self._cancel.cancelled

    def submit(self, item: T) -> bool:
        """Queue an item, blocking while the queue is full.

        Returns:
            False if the item was not queued because the queue is stopping
        """
        if self._closed:
            raise RuntimeError(f"{self._name} queue is closed")

        while not self._stopping():
            try:
                self._queue.put(item, timeout=PUT_POLL_INTERVAL)
            except queue.Full:
                continue
            self._submitted += 1
            return True
        return False

    def join(self) -> None:
        """Wait until every submitted item has been handled or dropped.

        Raises:
            Exception: The first error raised by a handler
        """
        self._queue.join()
        self._raise_error()

    def close(self, raise_errors: bool = True) -> None:
        """Stop the workers after the queue drains."""
        if not self._closed:
            self._closed = True
            for _ in range(self._workers):
                self._queue.put(_STOP)
            self._executor.shutdown(wait=True)
            logger.debug(f"Stopped {self._name} queue after {self._completed} items")
        if raise_errors:
            self._raise_error()

    def _raise_error(self) -> None:
        if self._error is not None:
            raise self._error

    def _work(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                if self._stopping():
                    continue
                self._run(item)
            finally:
                self._queue.task_done()

    def _run(self, item: T) -> None:
        with self._lock:
            self._active += 1
        try:
            self._handler(item)
        except Exception as e:
            with self._lock:
                if self._error is None:
                    self._error = e
            logger.error(f"{self._name} worker stopped the queue: {e}", exc_info=True)
        finally:
            with self._lock:
                self._active -= 1
                self._completed += 1

    def __enter__(self) -> 'BoundedTransferQueue[T]':
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close(raise_errors=exc_type is None)

