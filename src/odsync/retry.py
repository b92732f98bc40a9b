#!/usr/bin/env python3
"""Retry with exponential backoff for transfer operations."""

import logging
from typing import Any, Callable, Optional, Tuple, Type, TYPE_CHECKING

from .cancellation import CancellationToken
from .exceptions import SyncCancelledError

if TYPE_CHECKING:
    from .config import SyncSettings

logger = logging.getLogger(__name__)


def exponential_backoff(base_delay: float) -> Callable[[int], float]:
    """Build a backoff function: base_delay * 2^attempt.

    Args:
        base_delay: Delay in seconds after the first failed attempt

    Returns:
        Function mapping a zero-based failed attempt index to a delay
    """
    def backoff(attempt: int) -> float:
        return base_delay * (2 ** attempt)
    return backoff


class RetryPolicy:
    """Runs an operation up to ``max_attempts`` times.

    The policy is generic over the wrapped callable, so one policy instance is
    shared by downloads and uploads instead of each call site looping on its
    own. Sleeps go through the cancellation token so a cancelled run does not
    sit out a backoff.
    """

    def __init__(
        self,
        max_attempts: int,
        backoff: Callable[[int], float],
        retry_on: Tuple[Type[BaseException], ...] = (Exception,),
        sleep: Optional[Callable[[float, CancellationToken], bool]] = None,
    ):
        """Initialize retry policy.

        Args:
            max_attempts: Total attempts including the first one (at least 1)
            backoff: Delay in seconds after failed attempt N (zero-based)
            retry_on: Exception types that trigger another attempt
            sleep: Optional sleep override taking (seconds, token) and
                   returning True if cancelled
        """
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got: {max_attempts}")
        self.max_attempts = max_attempts
        self.backoff = backoff
        self.retry_on = retry_on
        self._sleep = sleep or (lambda seconds, cancel: cancel.wait(seconds))

    @classmethod
    def from_settings(cls, settings: 'SyncSettings') -> 'RetryPolicy':
        return cls(
            max_attempts=settings.max_retries + 1,
            backoff=exponential_backoff(settings.retry_base_delay_ms / 1000.0),
        )

    def execute(self, func: Callable[[], Any], cancel: Optional[CancellationToken] = None,
                description: str = "operation") -> Any:
        """Execute ``func`` with retries.

        Args:
            func: Zero-argument callable to run
            cancel: Cancellation token checked before every attempt
            description: Name used in log messages

        Returns:
            Result of ``func``

        Raises:
            SyncCancelledError: If cancelled before or between attempts
            Exception: The last error once all attempts are exhausted
        """
        cancel = cancel or CancellationToken.none()

        for attempt in range(self.max_attempts):
            cancel.raise_if_cancelled()
            try:
                return func()
            except SyncCancelledError:
                raise
            except self.retry_on as e:
                if attempt == self.max_attempts - 1:
                    logger.error(f"{description} failed after {self.max_attempts} attempts: {e}")
                    raise

                delay = self.backoff(attempt)
                logger.warning(
                    f"{description} attempt {attempt + 1}/{self.max_attempts} failed, "
                    f"retrying in {delay:.2f}s: {e}"
                )
                if self._sleep(delay, cancel):
                    raise SyncCancelledError() from e

        raise RuntimeError("Unexpected retry loop exit")

