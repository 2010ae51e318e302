from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime

Clock = Callable[[], int]


def utc_now() -> int:
    """Current time as integer epoch seconds, the unit every table stores."""
    return int(datetime.now(UTC).timestamp())
