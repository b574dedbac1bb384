from datetime import UTC, datetime

from src.adapters.clock import FixedClock, SystemClock


def test_system_clock():
    clock = SystemClock()
    now = clock.now_utc()
    assert now.tzinfo is not None
    # Sanity check: is it close to real now?
    diff = abs((datetime.now(UTC) - now).total_seconds())
    assert diff < 1.0


def test_fixed_clock_advance_and_set():
    clock = FixedClock(datetime(2025, 1, 1, tzinfo=UTC))
    assert clock.now_utc() == datetime(2025, 1, 1, tzinfo=UTC)

    assert clock.advance(hours=2) == datetime(2025, 1, 1, 2, tzinfo=UTC)
    assert clock.now_utc() == datetime(2025, 1, 1, 2, tzinfo=UTC)

    clock.set(datetime(2024, 12, 31, tzinfo=UTC))
    assert clock.now_utc() == datetime(2024, 12, 31, tzinfo=UTC)
