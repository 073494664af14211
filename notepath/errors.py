"""
Exception taxonomy for path generation.

Only ``NoNotesFound`` and ``GoalNotFound`` ever reach the caller of
``generate_learning_path`` (as a failed result).  The rest are raised by
the analyzer or the external-service adapters and absorbed by the
orchestrator into warnings plus a fallback computation.
"""

from typing import Optional


class NotePathError(Exception):
    """Base class for all notepath errors."""


class NoNotesFound(NotePathError):
    """The note source returned no candidate notes."""


class GoalNotFound(NotePathError):
    """The goal note id is not part of the candidate set / graph."""

    def __init__(self, goal_id: str) -> None:
        self.goal_id = goal_id
        super().__init__(f"Goal note not found: {goal_id}")


class CircularDependency(NotePathError):
    """A strict ordering was requested over a graph containing a cycle."""


class ExternalServiceUnavailable(NotePathError):
    """The language model or semantic search is not configured/reachable.

    Attributes:
        service: Short service name, e.g. ``'llm'`` or ``'semantic_search'``.
        original: The underlying exception, if any.
    """

    def __init__(self, service: str, original: Optional[Exception] = None) -> None:
        self.service = service
        self.original = original
        detail = f": {original}" if original is not None else ""
        super().__init__(f"{service} unavailable{detail}")


class MalformedModelResponse(NotePathError):
    """The language model answered with something that is not the expected JSON."""

    def __init__(self, message: str, raw_response: Optional[str] = None) -> None:
        self.raw_response = raw_response
        super().__init__(message)


class NoMatchingNotes(NotePathError):
    """Semantic search matched zero existing notes for every concept/keyword."""
