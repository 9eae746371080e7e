"""
Integrity monitoring for running exams.

Observes environment signals (tab visibility, window focus, full-screen exit)
and posts ViolationDetected events to the engine. Escalation policies decide
what a given violation count leads to.
"""

import sys
import time
import threading
from enum import Enum
from typing import Callable, Dict, List, Optional

from .errors import EnvironmentFault
from .events import ViolationDetected
from .models import QuestionType


class Signal(str, Enum):
    VISIBILITY_HIDDEN = "visibility_hidden"
    FOCUS_LOST = "focus_lost"
    FULLSCREEN_EXIT = "fullscreen_exit"
    FULLSCREEN_ENTER = "fullscreen_enter"
    ESCAPE_KEY = "escape_key"
    REFRESH_KEY = "refresh_key"
    CONTEXT_MENU = "context_menu"


REASONS = {
    Signal.VISIBILITY_HIDDEN: "Tab switch detected",
    Signal.FOCUS_LOST: "Window lost focus",
    Signal.FULLSCREEN_EXIT: "Exited full-screen mode",
    Signal.ESCAPE_KEY: "Escape key pressed",
}

# Signals that fire together for one physical action collapse inside the
# debounce window.
SIGNAL_GROUPS = {
    Signal.VISIBILITY_HIDDEN: "attention",
    Signal.FOCUS_LOST: "attention",
    Signal.FULLSCREEN_EXIT: "fullscreen",
    Signal.ESCAPE_KEY: "fullscreen",
}


class EnvironmentEvent:
    """One signal as delivered to listeners."""

    def __init__(self, signal: Signal):
        self.signal = signal
        self.default_prevented = False

    def prevent_default(self):
        self.default_prevented = True


class Environment:
    """
    The host the exam is presented in.

    Listeners are attached with subscribe() and removed with unsubscribe();
    nothing is registered globally.
    """

    def __init__(self):
        self._handlers: Dict[Signal, List[Callable[[EnvironmentEvent], None]]] = {}
        self._handlers_lock = threading.Lock()
        self.is_fullscreen = False

    def subscribe(self, signal: Signal, handler: Callable[[EnvironmentEvent], None]):
        with self._handlers_lock:
            self._handlers.setdefault(signal, []).append(handler)

    def unsubscribe(self, signal: Signal, handler: Callable[[EnvironmentEvent], None]):
        with self._handlers_lock:
            handlers = self._handlers.get(signal, [])
            if handler in handlers:
                handlers.remove(handler)

    def listener_count(self) -> int:
        with self._handlers_lock:
            return sum(len(h) for h in self._handlers.values())

    def emit(self, signal: Signal) -> EnvironmentEvent:
        """Deliver a signal to every listener."""
        event = EnvironmentEvent(signal)
        with self._handlers_lock:
            handlers = list(self._handlers.get(signal, []))
        for handler in handlers:
            handler(event)
        return event

    def request_fullscreen(self):
        """Enter full-screen presentation. Raises EnvironmentFault if unsupported."""
        raise EnvironmentFault("Full-screen presentation is not supported")

    def exit_fullscreen(self):
        self.is_fullscreen = False

    def beep(self):
        """Play an audible cue."""


class HeadlessEnvironment(Environment):
    """Terminal host: no full-screen, signals are injected by the front end."""

    def __init__(self, stream=None):
        super().__init__()
        self.stream = stream or sys.stdout

    def request_fullscreen(self):
        raise EnvironmentFault("Full-screen presentation is not available in a terminal")

    def beep(self):
        self.stream.write("\a")
        self.stream.flush()


class SimulatedEnvironment(Environment):
    """Scriptable host that behaves like a browser window."""

    def __init__(self, fullscreen_available: bool = True):
        super().__init__()
        self.fullscreen_available = fullscreen_available
        self.fullscreen_requests = 0
        self.beeps = 0

    def request_fullscreen(self):
        self.fullscreen_requests += 1
        if not self.fullscreen_available:
            raise EnvironmentFault("Full-screen request was denied")
        if not self.is_fullscreen:
            self.is_fullscreen = True
            self.emit(Signal.FULLSCREEN_ENTER)

    def exit_fullscreen(self):
        if self.is_fullscreen:
            self.is_fullscreen = False
            self.emit(Signal.FULLSCREEN_EXIT)

    def beep(self):
        self.beeps += 1

    # Candidate actions

    def switch_tab(self) -> EnvironmentEvent:
        return self.emit(Signal.VISIBILITY_HIDDEN)

    def blur(self) -> EnvironmentEvent:
        return self.emit(Signal.FOCUS_LOST)

    def leave_fullscreen(self) -> EnvironmentEvent:
        self.is_fullscreen = False
        return self.emit(Signal.FULLSCREEN_EXIT)

    def press_escape(self) -> EnvironmentEvent:
        return self.emit(Signal.ESCAPE_KEY)

    def press_refresh(self) -> EnvironmentEvent:
        return self.emit(Signal.REFRESH_KEY)

    def right_click(self) -> EnvironmentEvent:
        return self.emit(Signal.CONTEXT_MENU)


# ===== ESCALATION POLICIES =====

class Escalation(str, Enum):
    ADVISE = "advise"    # banner with a resume-full-screen action
    WARN = "warn"        # final warning, full-screen re-acquired
    REJECT = "reject"


class AdvisoryEscalation:
    """Coding rounds: violations are recorded for review, never fatal."""

    def decide(self, violation_count: int) -> Escalation:
        return Escalation.ADVISE


class StrictEscalation:
    """MCQ rounds: warn once, then reject."""

    def __init__(self, reject_after: int = 2):
        self.reject_after = reject_after

    def decide(self, violation_count: int) -> Escalation:
        if violation_count >= self.reject_after:
            return Escalation.REJECT
        return Escalation.WARN


def escalation_policy_for(kind: QuestionType, mcq_reject_after: int = 2):
    if kind == QuestionType.MCQ:
        return StrictEscalation(mcq_reject_after)
    return AdvisoryEscalation()


# ===== MONITOR =====

class IntegrityMonitor:
    """Turns environment signals into violation events while attached."""

    def __init__(
        self,
        environment: Environment,
        emit: Callable[[ViolationDetected], None],
        kind: QuestionType,
        debounce_ms: int = 500,
        sound_enabled: bool = True,
        clock: Callable[[], float] = time.monotonic,
        session_logger: Optional[Callable[[str, str], None]] = None
    ):
        self.environment = environment
        self.emit = emit
        self.kind = kind
        self.debounce_seconds = max(500, debounce_ms) / 1000.0
        self.sound_enabled = sound_enabled
        self.clock = clock
        self.session_logger = session_logger
        self.active = False
        self._last_counted: Dict[str, float] = {}
        self._subscriptions: List[tuple] = []

    def _watched_signals(self) -> Dict[Signal, Callable[[EnvironmentEvent], None]]:
        watched = {
            Signal.VISIBILITY_HIDDEN: self._on_violation_signal,
            Signal.FOCUS_LOST: self._on_violation_signal,
            Signal.FULLSCREEN_EXIT: self._on_violation_signal,
            Signal.CONTEXT_MENU: self._on_context_menu,
        }
        if self.kind == QuestionType.MCQ:
            watched[Signal.ESCAPE_KEY] = self._on_escape
            watched[Signal.REFRESH_KEY] = self._on_refresh
        return watched

    def attach(self):
        """Subscribe to the environment. Called on entering Running."""
        if self.active:
            return
        self.active = True
        self._last_counted.clear()
        for signal, handler in self._watched_signals().items():
            self.environment.subscribe(signal, handler)
            self._subscriptions.append((signal, handler))
        self._log("MONITOR_ATTACHED", f"Watching: {', '.join(s.value for s, _ in self._subscriptions)}")

    def detach(self):
        """Remove every listener. Called on any terminal transition."""
        if not self.active:
            return
        self.active = False
        for signal, handler in self._subscriptions:
            self.environment.unsubscribe(signal, handler)
        self._subscriptions = []
        self._log("MONITOR_DETACHED", "Integrity monitoring stopped")

    # ===== SIGNAL HANDLERS =====

    def _on_violation_signal(self, event: EnvironmentEvent):
        if not self.active:
            return
        group = SIGNAL_GROUPS.get(event.signal, event.signal.value)
        now = self.clock()
        last = self._last_counted.get(group)
        if last is not None and now - last < self.debounce_seconds:
            self._log("VIOLATION_DEBOUNCED", f"{REASONS.get(event.signal, event.signal.value)}")
            return
        self._last_counted[group] = now
        self.emit(ViolationDetected(signal=event.signal.value, reason=REASONS[event.signal]))

    def _on_escape(self, event: EnvironmentEvent):
        event.prevent_default()
        self._on_violation_signal(event)

    def _on_refresh(self, event: EnvironmentEvent):
        event.prevent_default()

    def _on_context_menu(self, event: EnvironmentEvent):
        event.prevent_default()

    # ===== BEST-EFFORT SIDE EFFECTS =====

    def alert(self):
        """Audible cue. Failures are swallowed."""
        if not self.sound_enabled:
            return
        try:
            self.environment.beep()
        except Exception as e:
            self._log("ALERT_FAILED", str(e))

    def reacquire_fullscreen(self) -> bool:
        """Try to re-enter full-screen. Failures are logged, never raised."""
        try:
            if not self.environment.is_fullscreen:
                self.environment.request_fullscreen()
            return True
        except Exception as e:
            self._log("FULLSCREEN_UNAVAILABLE", str(e))
            return False

    def _log(self, event: str, details: str):
        if self.session_logger:
            try:
                self.session_logger(event, details)
            except OSError:
                pass
