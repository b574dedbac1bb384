from datetime import UTC, datetime, timedelta


class SystemClock:
    def now_utc(self) -> datetime:
        return datetime.now(UTC)


class FixedClock:
    """Clock pinned to a given instant; advance it explicitly in tests."""

    def __init__(self, now: datetime | None = None) -> None:
        self._now = now or datetime(2025, 1, 1, tzinfo=UTC)

    def now_utc(self) -> datetime:
        return self._now

    def advance(self, **kwargs: float) -> datetime:
        self._now = self._now + timedelta(**kwargs)
        return self._now

    def set(self, now: datetime) -> None:
        self._now = now
