"""
Exception types raised across engine boundaries.

Candidate code faults never show up here: they are folded into verdicts.
Integrity violations are events, not exceptions.
"""


class EngineError(Exception):
    """Base class for engine errors."""


class EnvironmentFault(EngineError):
    """The host environment could not provide a capability (interpreter, full-screen)."""


class RuntimeUnavailableError(EnvironmentFault):
    """A language runtime never became ready."""

    def __init__(self, language_id: str, reason: str = ""):
        self.language_id = language_id
        self.reason = reason
        message = f"Runtime for '{language_id}' is not available"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class PersistenceError(EngineError):
    """Writing a submission to the document store failed. Safe to retry."""

    def __init__(self, key: str, cause: Exception):
        self.key = key
        self.cause = cause
        super().__init__(f"Failed to persist '{key}': {cause}")
