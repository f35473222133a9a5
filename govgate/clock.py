"""
Clock

Time source injected into the cache and the session manager so expiry
and inactivity transitions can be driven deterministically in tests.
"""

from datetime import datetime, timezone
from typing import Callable


Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)
