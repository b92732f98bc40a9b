#!/usr/bin/env python3
"""Sync progress events and their broadcast channel."""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, List

from .models import utc_now

logger = logging.getLogger(__name__)


class SyncStatus(Enum):
    """Steps of the sync engine state machine."""

    IDLE = 'Idle'
    DELTA_ENUMERATION = 'DeltaEnumeration'
    TRANSFER_PROCESSING = 'TransferProcessing'
    COMPLETED = 'Completed'
    CANCELLED = 'Cancelled'
    FAILED = 'Failed'


@dataclass(frozen=True)
class SyncProgress:
    """A progress event.

    Attributes:
        status: Engine step the event belongs to
        operation: Short label of the running operation (e.g. "Downloading")
        processed: Items finished so far in this operation
        total: Items expected, 0 if unknown
        pending_downloads: Downloads still pending in the repository
        pending_uploads: Uploads still pending in the repository
        message: Human readable detail
        timestamp: When the event was created (UTC)
    """

    status: SyncStatus
    operation: str
    processed: int = 0
    total: int = 0
    pending_downloads: int = 0
    pending_uploads: int = 0
    message: str = ''
    timestamp: datetime = field(default_factory=utc_now)

    @property
    def percent_complete(self) -> float:
        if self.total <= 0:
            return 0.0
        return self.processed / self.total * 100


@dataclass(frozen=True)
class SyncStats:
    """Point-in-time health snapshot."""

    pending_downloads: int
    pending_uploads: int
    active_downloads: int
    active_uploads: int
    failed_transfers: int


ProgressCallback = Callable[[SyncProgress], None]


class ProgressBroadcaster:
    """Publish/subscribe channel for progress events.

    Every subscriber registered when an event is published receives it.
    Events are not stored, so a late subscriber only sees later events.
    Publishing may happen from worker threads; consumers that drive a UI are
    expected to throttle on their side.
    """

    def __init__(self):
        self._subscribers: List[ProgressCallback] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: ProgressCallback) -> Callable[[], None]:
        """Register a subscriber.

        Args:
            callback: Called with every published SyncProgress

        Returns:
            Function that removes the subscription
        """
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def publish(self, event: SyncProgress) -> None:
        """Deliver an event to every current subscriber."""
        with self._lock:
            subscribers = list(self._subscribers)

        for callback in subscribers:
            try:
                callback(event)
            except Exception as e:
                logger.warning(f"Progress subscriber raised: {e}", exc_info=True)
