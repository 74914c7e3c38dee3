"""
Exponential backoff between failed encoder sessions.
"""
from ..config.common import BACKOFF_CAP_MULTIPLIER


class BackoffPolicy:
    """
    Computes `min(base * 2**retry_count, base * cap_multiplier)` milliseconds.

    The delay doubles with every consecutive failure until it reaches the cap,
    then stays constant. The policy is pure: it holds no retry state itself.
    """

    def __init__(self, base_delay_ms: int, cap_multiplier: int = BACKOFF_CAP_MULTIPLIER):
        if base_delay_ms < 0:
            raise ValueError(f"base_delay_ms must not be negative, got {base_delay_ms}")
        self.base_delay_ms = base_delay_ms
        self.cap_ms = base_delay_ms * cap_multiplier

    def delay_ms(self, retry_count: int) -> int:
        if retry_count < 0:
            raise ValueError(f"retry_count must not be negative, got {retry_count}")
        # 2**6 already exceeds the default cap; avoid building huge ints for long outages.
        if retry_count >= 64:
            return self.cap_ms
        return min(self.base_delay_ms * 2 ** retry_count, self.cap_ms)
