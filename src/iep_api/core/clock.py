"""
Clock

Services take a ``Clock`` so that expiry and cooldown checks can be tested
against a fixed instant. Each operation reads the clock once.
"""

from collections.abc import Callable
from datetime import UTC, datetime

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Current time, timezone-aware UTC."""
    return datetime.now(UTC)
