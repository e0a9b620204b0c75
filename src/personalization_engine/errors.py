"""Exception taxonomy for the personalization engine.

Evaluation errors never escape the evaluator. Dispatch errors are split into
transient (retried) and permanent (recorded, not retried). Persistence errors
propagate to the caller of the mutating operation.
"""

from __future__ import annotations


class EngineError(Exception):
    """Base class for engine errors."""


class PathSyntaxError(EngineError):
    """Raised when a condition field path cannot be parsed."""

    def __init__(self, path: str, message: str) -> None:
        self.path = path
        self.message = message
        super().__init__(f"{path!r}: {message}")


class DispatchError(EngineError):
    """Raised by a collaborator when an action could not be delivered."""

    transient: bool = False

    def __init__(self, message: str, *, collaborator: str | None = None) -> None:
        self.message = message
        self.collaborator = collaborator
        self.attempts = 1
        super().__init__(message)


class TransientDispatchError(DispatchError):
    """Network failure, timeout or 5xx. Safe to retry."""

    transient = True


class PermanentDispatchError(DispatchError):
    """Validation failure, unknown template or other 4xx. Never retried."""


class PersistenceError(EngineError):
    """Raised when a repository write or read fails."""


class DefinitionNotFoundError(EngineError):
    """Raised by administrative operations for an unknown rule/segment/automation."""

    def __init__(self, kind: str, definition_id: str) -> None:
        self.kind = kind
        self.definition_id = definition_id
        super().__init__(f"{kind} {definition_id!r} not found")
