"""
Events posted to the ExamEngine.

The timer and the integrity monitor never touch the session directly; they
post one of these and the engine applies it.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class Tick:
    """One period of the 1 Hz clock elapsed."""
    count: int = 1


@dataclass(frozen=True)
class ViolationDetected:
    """An environment signal that counts against the candidate."""
    signal: str
    reason: str


@dataclass(frozen=True)
class SubmitRequested:
    """A submission request from outside the engine lock."""
    question_id: Optional[str] = None
