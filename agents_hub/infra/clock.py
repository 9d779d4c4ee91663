"""Wall clock used by caches, budgets and telemetry; replaced by a fake in tests."""

import time
from datetime import datetime, timezone


class SystemClock:
    def now_ms(self) -> int:
        return int(time.time() * 1000)

    def utcnow(self) -> datetime:
        return datetime.now(timezone.utc)

    def start_of_day_utc(self) -> datetime:
        return self.utcnow().replace(hour=0, minute=0, second=0, microsecond=0)
