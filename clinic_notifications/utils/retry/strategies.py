from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta


@dataclass(frozen=True, slots=True)
class BackoffPolicy:
    """Exponential backoff for scheduled (non-blocking) delivery retries.

    ``delay(n)`` is the wait before the retry that follows the n-th failure
    (n counted from zero): ``base_delay * exponential_base**n`` capped at
    ``max_delay``. The retry budget lives on each attempt, not here.
    """

    base_delay: float = 1.0
    max_delay: float = 300.0
    exponential_base: float = 2.0

    def calculate_delay(self, retry_count: int) -> float:
        return min(self.base_delay * (self.exponential_base**retry_count), self.max_delay)

    def next_attempt_at(self, now: datetime, retry_count: int) -> datetime:
        return now + timedelta(seconds=self.calculate_delay(retry_count))
