"""Error taxonomy shared by every visualheal component.

Each error carries the identifiers it concerns so that callers can render a
precise message (record id, selector, property, file and line) instead of a
stack trace.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any


class VisualHealError(Exception):
    """Base class for all visualheal errors."""

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = {k: v for k, v in details.items() if v is not None}

    def __str__(self) -> str:
        if not self.details:
            return self.message
        extra = ", ".join(f"{k}={v}" for k, v in self.details.items())
        return f"{self.message} ({extra})"


class NotFoundError(VisualHealError):
    """Unknown record id, selector, property or artifact. Never retried."""


class ArtifactNotFoundError(NotFoundError):
    """A screenshot artifact is missing from the artifact store."""


class InvalidStateError(VisualHealError):
    """Operation attempted against a record in the wrong lifecycle state."""


class RunInProgressError(InvalidStateError):
    """A pipeline run for the same record is already in flight."""


class DuplicateIdError(VisualHealError):
    """Insertion collided with an existing record id."""


class StorageIOError(VisualHealError, OSError):
    """Filesystem failure that persisted after one retry."""

    def __init__(self, message: str, path: Path | str | None = None, **details: Any):
        VisualHealError.__init__(self, message, path=path, **details)
        self.path = Path(path) if path is not None else None


class VerificationFailure(VisualHealError):
    """Post-patch diff exceeded the threshold. Triggers rollback, not abort."""


class ExternalServiceError(VisualHealError):
    """A collaborator (capture, compare, fix generation) failed or timed out."""


class CorruptStateError(VisualHealError):
    """A persisted store or a stylesheet could not be read or parsed."""
