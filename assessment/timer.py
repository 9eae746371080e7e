"""
Countdown and elapsed-time tracking.

The countdown is seeded once from a trusted server time and then free-runs on
a single periodic tick. The Ticker thread only posts Tick events; the engine
applies them to CountdownTimer and ElapsedCounter.
"""

import math
import time
import threading
from datetime import datetime
from typing import Callable, List, Optional, Union

TimeValue = Union[datetime, int, float]

LOW_TIME_WARNING = "low_time_warning"
TIME_EXPIRED = "time_expired"


def _to_millis(value: TimeValue) -> float:
    if isinstance(value, datetime):
        return value.timestamp() * 1000.0
    return float(value)


def compute_remaining_seconds(server_now: TimeValue, end_time: Optional[TimeValue]) -> Optional[int]:
    """
    Seconds left until end_time, never negative.

    Both values are datetimes or epoch milliseconds. None when there is no
    end time.
    """
    if end_time is None:
        return None
    delta_ms = _to_millis(end_time) - _to_millis(server_now)
    return max(0, math.floor(delta_ms / 1000))


def format_clock(seconds: Optional[int]) -> str:
    """Format seconds as MM:SS."""
    if seconds is None:
        return "--:--"
    seconds = max(0, int(seconds))
    return f"{seconds // 60:02d}:{seconds % 60:02d}"


class CountdownTimer:
    """Remaining-time state for one session."""

    def __init__(self, remaining_seconds: Optional[int], low_time_warning_seconds: int = 60):
        self.remaining_seconds = remaining_seconds
        self.low_time_warning_seconds = low_time_warning_seconds
        self.warning_fired = False
        self.expired_fired = False
        self.running = False

    @classmethod
    def from_window(
        cls,
        server_now: TimeValue,
        end_time: Optional[TimeValue],
        low_time_warning_seconds: int = 60
    ) -> 'CountdownTimer':
        return cls(compute_remaining_seconds(server_now, end_time), low_time_warning_seconds)

    @property
    def active(self) -> bool:
        """False when there is no deadline at all."""
        return self.remaining_seconds is not None

    def start(self) -> List[str]:
        """Begin counting. A window that already closed expires immediately."""
        if not self.active:
            return []
        self.running = True
        if self.remaining_seconds <= 0:
            return self._expire()
        return []

    def stop(self):
        self.running = False

    def tick(self) -> List[str]:
        """
        Advance one second.

        Returns:
            Events fired by this tick: LOW_TIME_WARNING at most once per
            session, TIME_EXPIRED exactly once when zero is reached.
        """
        if not self.running or not self.active:
            return []

        events = []
        self.remaining_seconds = max(0, self.remaining_seconds - 1)

        if self.remaining_seconds == self.low_time_warning_seconds and not self.warning_fired:
            self.warning_fired = True
            events.append(LOW_TIME_WARNING)

        if self.remaining_seconds == 0:
            events.extend(self._expire())
        return events

    def _expire(self) -> List[str]:
        self.running = False
        self.remaining_seconds = 0
        if self.expired_fired:
            return []
        self.expired_fired = True
        return [TIME_EXPIRED]


class ElapsedCounter:
    """Seconds spent in the Running state."""

    def __init__(self):
        self.seconds = 0
        self.running = False

    def start(self):
        self.running = True

    def stop(self):
        self.running = False

    def tick(self, count: int = 1):
        if self.running:
            self.seconds += count


class Ticker:
    """Background thread that calls emit() once per interval."""

    def __init__(self, emit: Callable[[], None], interval: float = 1.0):
        self.emit = emit
        self.interval = interval
        self.active = False
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

    def start(self):
        if self.active:
            return
        self.active = True
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._thread.start()

    def stop(self):
        """Ask the thread to exit. Safe to call from the tick handler itself."""
        self.active = False
        self._stop_event.set()

    def join(self, timeout: float = 2.0):
        thread = self._thread
        if thread and thread.is_alive() and thread is not threading.current_thread():
            thread.join(timeout=timeout)

    def _run(self):
        # Schedule against deadlines so a tick delayed by a slow handler is
        # caught up instead of dropped.
        next_due = time.monotonic() + self.interval
        while self.active:
            delay = next_due - time.monotonic()
            if delay > 0 and self._stop_event.wait(delay):
                break
            if not self.active:
                break
            self.emit()
            next_due += self.interval
