"""Injectable time source.

Every component that compares against "now" takes a ``Clock`` so reminder
triggers, quiet hours and retry backoff can be driven deterministically.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime

type Clock = Callable[[], datetime]


def system_clock() -> datetime:
    """Current wall-clock time in UTC."""
    return datetime.now(UTC)
