"""
Error taxonomy for snaptrack.

DataError: malformed/legacy snapshot payloads (recovered locally, logged)
ParameterError: per-parameter restore failures (collected, restore continues)
StructuralError: transaction/store failures (fatal to the operation, rollback)
IdentifierError: duplicate/missing identifiers (downgraded to Skipped)
"""

from dataclasses import dataclass, asdict
from enum import Enum
from typing import Dict, Any, Optional


class ErrorKind(str, Enum):
    """Kinds of errors reported in outcomes."""
    DATA = "DATA"
    PARAMETER = "PARAMETER"
    STRUCTURAL = "STRUCTURAL"
    IDENTIFIER = "IDENTIFIER"


class SnapTrackError(Exception):
    """Base class for all snaptrack errors."""

    kind = ErrorKind.STRUCTURAL


class DataError(SnapTrackError):
    """A stored payload could not be interpreted."""

    kind = ErrorKind.DATA


class ParameterError(SnapTrackError):
    """A single parameter could not be read or written."""

    kind = ErrorKind.PARAMETER

    def __init__(self, message: str, parameter: Optional[str] = None):
        super().__init__(message)
        self.parameter = parameter


class PlacementError(SnapTrackError):
    """The host could not place an entity at the requested position."""

    kind = ErrorKind.PARAMETER


class IdentifierError(SnapTrackError):
    """Missing or conflicting persistent identifier."""

    kind = ErrorKind.IDENTIFIER


class VersionNotFoundError(SnapTrackError):
    """No record exists under the requested version name."""

    kind = ErrorKind.DATA


class StructuralError(SnapTrackError):
    """Failure that invalidates the whole operation."""


class TransactionError(StructuralError):
    """Document transaction could not be started, committed or rolled back."""


class StoreError(StructuralError):
    """Snapshot store unreachable or rejected a request."""


class ImmutableVersionError(StoreError):
    """Attempt to overwrite, rename or delete an official version."""


@dataclass
class RestoreError:
    """One entry of the error list returned by a restore."""
    message: str
    track_id: Optional[str] = None
    element_id: Optional[int] = None
    parameter: Optional[str] = None
    kind: str = ErrorKind.PARAMETER.value

    def __str__(self) -> str:
        subject = self.track_id or (f"#{self.element_id}" if self.element_id is not None else "?")
        if self.parameter:
            return f"{subject}: {self.parameter}: {self.message}"
        return f"{subject}: {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
