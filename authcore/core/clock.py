from datetime import datetime, timezone
from typing import Protocol


def utcnow() -> datetime:
    """Timezone-aware UTC timestamp; the columns reject naive values."""
    return datetime.now(timezone.utc)


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    def now(self) -> datetime:
        return utcnow()
