"""Domain exceptions raised by synchronous write paths.

Event handlers never raise these back to the originating write; they log
and abort instead (see ``learnsphere.events.processor``).
"""

from __future__ import annotations


class LearnSphereError(Exception):
    """Base class for domain errors."""


class NotFoundError(LearnSphereError, LookupError):
    """A referenced user, course, lesson, quiz or enrollment does not exist."""


class PreconditionError(LearnSphereError, ValueError):
    """The operation is not allowed in the current state (not retried)."""


class DuplicateError(LearnSphereError, ValueError):
    """The entity already exists."""
