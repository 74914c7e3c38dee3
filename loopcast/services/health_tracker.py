"""
Aggregated health of the streaming service.

The tracker owns the retry counter and a bounded error history. It is mutated
only from the supervisor's event loop; callers that poll health get immutable
snapshots and never the live error list.
"""
import time
from collections import deque
from datetime import datetime
from typing import Deque, Optional

from loguru import logger

from ..config.common import ERROR_HISTORY_CAPACITY
from ..domain.models import ErrorRecord, HealthCheckResult, HealthStatus, RetryState


class HealthTracker:
    """
    Tracks uptime, the current item, the retry counter and recent errors.

    Args:
        max_retries: Consecutive failures allowed before the service gives up.
        retry_base_delay_ms: Base backoff delay, kept for status reporting.
        capacity: How many error records are kept; older ones are evicted.
    """

    def __init__(
        self,
        max_retries: int,
        retry_base_delay_ms: int = 5_000,
        capacity: int = ERROR_HISTORY_CAPACITY,
    ):
        self.retry = RetryState(count=0, cap=max_retries, base_delay_ms=retry_base_delay_ms)
        self._errors: Deque[ErrorRecord] = deque(maxlen=capacity)
        self._started_at: Optional[float] = None
        self._streaming = False
        self._current_item: Optional[str] = None

    # --- Lifecycle ---
    def start(self):
        """Marks the service as streaming and starts the uptime clock."""
        self._started_at = time.monotonic()
        self._streaming = True

    def stop(self):
        self._streaming = False

    def set_current_item(self, name: Optional[str]):
        """
        Sets the display name of the item being streamed.

        Args:
            name: The item name, or None when nothing is streaming.
        """
        self._current_item = name

    # --- Errors and retries ---
    def record_error(self, message: str):
        """
        Appends an error; the oldest entry is evicted beyond capacity.

        Args:
            message: The failure summary, possibly multi-line.
        """
        self._errors.append(ErrorRecord(timestamp=datetime.now(), message=message))
        logger.debug(f"Error recorded ({len(self._errors)}/{self._errors.maxlen} kept)")

    def increment_retry(self) -> int:
        """
        Counts one more consecutive failure.

        Returns:
            int: The new retry count.
        """
        self.retry.count += 1
        return self.retry.count

    def reset_retry(self):
        self.retry.count = 0

    @property
    def retry_count(self) -> int:
        return self.retry.count

    def should_retry(self) -> bool:
        """
        Returns:
            bool: True while the retry count is below `max_retries`.
        """
        return self.retry.count < self.retry.cap

    # --- Snapshots ---
    def uptime_ms(self) -> int:
        if self._started_at is None:
            return 0
        return int((time.monotonic() - self._started_at) * 1000)

    def snapshot(self) -> HealthStatus:
        """
        Returns:
            HealthStatus: An immutable copy of the tracked state, errors included.
        """
        return HealthStatus(
            streaming=self._streaming,
            current_item=self._current_item,
            uptime_ms=self.uptime_ms(),
            retry_count=self.retry.count,
            errors=tuple(self._errors),
        )

    def health_check(self) -> HealthCheckResult:
        """
        Summarizes the service health.

        The service is healthy while it is streaming and still has retries left.

        Returns:
            HealthCheckResult: The verdict with uptime, error count and last error.
        """
        return HealthCheckResult(
            healthy=self._streaming and self.should_retry(),
            uptime_ms=self.uptime_ms(),
            current_item=self._current_item,
            error_count=len(self._errors),
            last_error=self._errors[-1].message if self._errors else None,
        )
