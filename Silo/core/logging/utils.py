"""
Timing helper for backend round-trips.
"""

import logging
import time
from typing import Optional

from Silo.core.logging import get_logger


class LogTimer:
    """
    Logs how long the wrapped block took.

    Success is logged at ``level``; a block slower than ``slow_after``
    seconds is logged as a warning instead, and a block that raises is
    logged as a warning naming the exception type. The exception itself
    propagates.

    Example:
        with LogTimer("rpc total_dm_unread", logger):
            count = await client.total_unread()
    """

    def __init__(
        self,
        operation: str,
        logger: Optional[logging.Logger] = None,
        level: int = logging.DEBUG,
        slow_after: Optional[float] = 5.0,
    ):
        self.operation = operation
        self.logger = logger or get_logger(__name__)
        self.level = level
        self.slow_after = slow_after
        self._started: Optional[float] = None
        self.duration: Optional[float] = None

    @property
    def slow(self) -> bool:
        return (
            self.duration is not None
            and self.slow_after is not None
            and self.duration > self.slow_after
        )

    def __enter__(self) -> 'LogTimer':
        self._started = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.duration = time.perf_counter() - self._started
        extra = {"operation": self.operation, "duration": round(self.duration, 4)}
        if exc_type is not None:
            self.logger.warning("%s failed after %.3fs: %s",
                                self.operation, self.duration, exc_type.__name__, extra=extra)
        elif self.slow:
            self.logger.warning("%s slow: %.3fs", self.operation, self.duration, extra=extra)
        else:
            self.logger.log(self.level, "%s took %.3fs", self.operation, self.duration, extra=extra)


__all__ = ['LogTimer']
