"""Error types raised by the saturation protocol components.

The pure parts of the protocol (scoring, classification, measure
selection, ordering) never raise on validated input; every failure a
caller sees originates in input parsing/validation or at the storage,
authorization or rendering boundary.
"""

from __future__ import annotations

from typing import Optional, Sequence, Tuple


class SaturationError(Exception):
    """Base class for all protocol errors."""


class SnapshotParseError(SaturationError):
    """A form field could not be read as a non-negative integer."""

    def __init__(self, field: str, value: object) -> None:
        self.field = field
        self.value = value
        super().__init__(f"{field} must be a non-negative integer (got {value!r})")


class SnapshotValidationError(SaturationError):
    """The snapshot is incomplete or internally inconsistent."""

    def __init__(self, message: str, fields: Sequence[str] = ()) -> None:
        self.message = message
        self.fields: Tuple[str, ...] = tuple(fields)
        super().__init__(message)


class EvaluationResultsError(SaturationError):
    """Analysis/decision fields are missing or not valid for the alert level."""


class ForbiddenError(SaturationError):
    """The principal may not perform the operation.

    `reason` is meant to be shown to the user verbatim.
    """

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


class NotFoundError(SaturationError):
    """The referenced evaluation or measure no longer exists."""

    def __init__(self, kind: str, identifier: object) -> None:
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} {identifier} not found")


class CollaboratorUnavailable(SaturationError):
    """Storage or rendering collaborator failed or could not be reached."""

    def __init__(self, message: str = "could not reach server", cause: Optional[BaseException] = None) -> None:
        self.cause = cause
        super().__init__(message)
