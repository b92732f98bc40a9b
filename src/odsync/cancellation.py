"""Cooperative cancellation shared by every sync operation."""

import threading
from typing import Optional

from .exceptions import SyncCancelledError


class CancellationToken:
    """Signal checked at every suspension point of a sync run.

    Usage:
        token = CancellationToken()
        worker = threading.Thread(target=engine.initial_full_sync, args=(token,))
        worker.start()
        token.cancel()  # from any thread
    """

    def __init__(self, event: Optional[threading.Event] = None):
        self._event = event or threading.Event()

    @classmethod
    def none(cls) -> 'CancellationToken':
        """Get a token that is never cancelled."""
        return cls()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        """Raise SyncCancelledError if cancellation was requested."""
        if self._event.is_set():
            raise SyncCancelledError()

    def wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``, waking early on cancellation.

        Returns:
            True if the token was cancelled
        """
        if seconds <= 0:
            return self._event.is_set()
        return self._event.wait(seconds)
