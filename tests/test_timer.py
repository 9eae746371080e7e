"""
Tests for countdown and elapsed-time tracking.
"""

import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path

import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from assessment.timer import (
    LOW_TIME_WARNING,
    TIME_EXPIRED,
    CountdownTimer,
    ElapsedCounter,
    Ticker,
    compute_remaining_seconds,
    format_clock,
)

NOW = datetime(2025, 3, 1, 9, 0, 0, tzinfo=timezone.utc)


class TestComputeRemaining:
    """Test seeding from server time."""

    def test_datetime_window(self):
        assert compute_remaining_seconds(NOW, NOW + timedelta(minutes=30)) == 1800

    def test_floors_partial_seconds(self):
        assert compute_remaining_seconds(NOW, NOW + timedelta(milliseconds=2999)) == 2

    def test_epoch_milliseconds(self):
        assert compute_remaining_seconds(1_000_000, 1_090_500) == 90

    def test_past_deadline_is_zero(self):
        assert compute_remaining_seconds(NOW, NOW - timedelta(seconds=5)) == 0

    def test_no_end_time(self):
        assert compute_remaining_seconds(NOW, None) is None


class TestFormatClock:
    def test_minutes_and_seconds(self):
        assert format_clock(125) == "02:05"

    def test_zero(self):
        assert format_clock(0) == "00:00"

    def test_none(self):
        assert format_clock(None) == "--:--"


class TestCountdownTimer:
    """Test tick semantics."""

    def test_tick_decrements(self):
        timer = CountdownTimer(10)
        timer.start()
        assert timer.tick() == []
        assert timer.remaining_seconds == 9

    def test_not_running_before_start(self):
        timer = CountdownTimer(10)
        assert timer.tick() == []
        assert timer.remaining_seconds == 10

    def test_low_time_warning_once_at_threshold(self):
        timer = CountdownTimer(62, low_time_warning_seconds=60)
        timer.start()
        events = [timer.tick() for _ in range(4)]
        assert events == [[], [LOW_TIME_WARNING], [], []]

    def test_warning_not_fired_when_starting_below_threshold(self):
        timer = CountdownTimer(30, low_time_warning_seconds=60)
        timer.start()
        fired = [e for _ in range(5) for e in timer.tick()]
        assert LOW_TIME_WARNING not in fired

    def test_expires_exactly_once(self):
        timer = CountdownTimer(2)
        timer.start()
        fired = [e for _ in range(5) for e in timer.tick()]
        assert fired.count(TIME_EXPIRED) == 1
        assert timer.remaining_seconds == 0
        assert timer.running is False

    def test_never_negative(self):
        timer = CountdownTimer(1)
        timer.start()
        for _ in range(3):
            timer.tick()
        assert timer.remaining_seconds == 0

    def test_start_with_closed_window_expires(self):
        timer = CountdownTimer(0)
        assert timer.start() == [TIME_EXPIRED]
        assert timer.start() == []

    def test_inactive_without_deadline(self):
        timer = CountdownTimer.from_window(NOW, None)
        assert timer.active is False
        assert timer.start() == []
        assert timer.tick() == []

    def test_stop_freezes_remaining(self):
        timer = CountdownTimer(10)
        timer.start()
        timer.tick()
        timer.stop()
        timer.tick()
        assert timer.remaining_seconds == 9


class TestElapsedCounter:
    def test_counts_only_while_running(self):
        counter = ElapsedCounter()
        counter.tick()
        counter.start()
        counter.tick(3)
        counter.stop()
        counter.tick()
        assert counter.seconds == 3


class TestTicker:
    """Test the background tick thread."""

    def test_emits_until_stopped(self):
        ticks = []
        enough = threading.Event()

        def emit():
            ticks.append(1)
            if len(ticks) >= 3:
                enough.set()

        ticker = Ticker(emit, interval=0.01)
        ticker.start()
        assert enough.wait(5.0)
        ticker.stop()
        ticker.join()

        count = len(ticks)
        assert count >= 3
        assert ticker.active is False
        assert len(ticks) == count

    def test_stop_from_inside_emit(self):
        ticker = None
        calls = []

        def emit():
            calls.append(1)
            ticker.stop()

        ticker = Ticker(emit, interval=0.01)
        ticker.start()
        ticker._thread.join(timeout=5.0)

        assert calls == [1]
