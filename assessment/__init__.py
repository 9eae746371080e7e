"""
Timed Assessment Engine - Core Package

This package contains the components that run a proctored, time-boxed exam:
- models: Data structures for questions, results, sessions and engine config
- sandbox: Per-language runtimes that execute candidate code
- grader: Test case execution and verdicts
- session: The exam state machine that owns the session
- timer: Server-anchored countdown and elapsed-time counter
- integrity: Violation detection and escalation
- submitter: Idempotent persistence of final results
"""

__version__ = "1.0.0"
