"""Monotonic model version strings"""

import threading
from datetime import datetime, timedelta, timezone

_lock = threading.Lock()
_last: datetime = datetime.min.replace(tzinfo=timezone.utc)

VERSION_FORMAT = "%Y.%m.%d-%H%M%S%f"


def next_version() -> str:
    """
    Fixed-width, lexically sortable version derived from the UTC clock.

    Two calls in the same microsecond (or a clock step backwards) still yield
    strictly increasing values within this process.
    """
    global _last
    with _lock:
        now = datetime.now(timezone.utc)
        if now <= _last:
            now = _last + timedelta(microseconds=1)
        _last = now
        return now.strftime(VERSION_FORMAT)
