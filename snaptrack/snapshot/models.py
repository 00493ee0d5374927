"""
Data models for comparison, duplicate resolution and restore.
"""

from dataclasses import dataclass, field, asdict
from enum import Enum, auto
from typing import Dict, List, Optional, Any, Iterable

from ..errors import RestoreError
from .records import Category, XYZ
from .values import ParameterValue, UNSET_DISPLAY


# =============================================================================
# Comparison
# =============================================================================

class EntityStatus(str, Enum):
    """Outcome of comparing one tracked entity."""
    UNCHANGED = "Unchanged"
    MODIFIED = "Modified"
    NEW = "New"
    DELETED = "Deleted"
    UNPLACED = "Unplaced"


STATUS_LABELS = {
    EntityStatus.UNCHANGED: "Unchanged",
    EntityStatus.MODIFIED: "Modified",
    EntityStatus.NEW: "New (not in snapshot)",
    EntityStatus.DELETED: "Deleted (missing from model)",
    EntityStatus.UNPLACED: "Unplaced",
}


@dataclass
class ParameterChange:
    """A single parameter that differs between two states."""
    name: str
    current_value: Optional[ParameterValue]
    snapshot_value: Optional[ParameterValue]
    is_read_only: bool = False
    is_type_level: bool = False

    @property
    def current_display(self) -> str:
        return _display(self.current_value)

    @property
    def snapshot_display(self) -> str:
        return _display(self.snapshot_value)

    @property
    def display_text(self) -> str:
        suffix = " (read-only)" if self.is_read_only else ""
        return f"{self.name}: {self.current_display} -> {self.snapshot_display}{suffix}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "current": self.current_value.to_dict() if self.current_value else None,
            "snapshot": self.snapshot_value.to_dict() if self.snapshot_value else None,
            "is_read_only": self.is_read_only,
            "is_type_level": self.is_type_level,
        }


@dataclass
class ComparisonItem:
    """Comparison result for one tracked entity."""
    track_id: str
    status: EntityStatus
    category: Category = Category.ROOM
    label: str = ""
    changes: List[ParameterChange] = field(default_factory=list)
    is_placed_now: bool = False
    was_placed_in_snapshot: bool = False
    snapshot_location: Optional[XYZ] = None
    inapplicable_parameters: List[str] = field(default_factory=list)

    @property
    def status_display(self) -> str:
        return STATUS_LABELS[self.status]

    @property
    def restorable_changes(self) -> List[ParameterChange]:
        return [c for c in self.changes if not c.is_read_only and not c.is_type_level]

    @property
    def display_text(self) -> str:
        head = f"{self.track_id} [{self.status_display}]"
        if self.label:
            head = f"{self.track_id} {self.label} [{self.status_display}]"
        if not self.changes:
            return head
        return head + "\n" + "\n".join("  " + c.display_text for c in self.changes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "track_id": self.track_id,
            "status": self.status.value,
            "category": self.category.value,
            "label": self.label,
            "changes": [c.to_dict() for c in self.changes],
            "is_placed_now": self.is_placed_now,
            "was_placed_in_snapshot": self.was_placed_in_snapshot,
            "snapshot_location": self.snapshot_location.to_list() if self.snapshot_location else None,
            "inapplicable_parameters": list(self.inapplicable_parameters),
        }


def summarize(items: Iterable[ComparisonItem]) -> Dict[EntityStatus, int]:
    """Count items per status (every status present, zero when absent)."""
    counts = {status: 0 for status in EntityStatus}
    for item in items:
        counts[item.status] += 1
    return counts


# =============================================================================
# Duplicate identifiers
# =============================================================================

class DuplicateAction(str, Enum):
    KEEP = "Keep"
    REGENERATE = "Regenerate"


class MatchReason(str, Enum):
    """Why a duplicate member was chosen as canonical."""
    CODE = "code match"
    NAME = "name match"
    ORDINAL = "lowest element id"


@dataclass
class DuplicateMember:
    element_id: int
    code: str = ""
    name: str = ""
    action: DuplicateAction = DuplicateAction.KEEP
    new_track_id: Optional[str] = None
    match_reason: Optional[MatchReason] = None


@dataclass
class DuplicateGroup:
    """Live entities sharing one identifier."""
    track_id: str
    category: Category
    members: List[DuplicateMember] = field(default_factory=list)
    lookup_failed: bool = False

    @property
    def canonical(self) -> Optional[DuplicateMember]:
        for member in self.members:
            if member.action == DuplicateAction.KEEP:
                return member
        return None

    @property
    def regenerated(self) -> List[DuplicateMember]:
        return [m for m in self.members if m.action == DuplicateAction.REGENERATE]


# =============================================================================
# Restore
# =============================================================================

class RestoreScope(str, Enum):
    """Which targets a restore operates on."""
    ALL = "all"
    DELETED = "deleted"
    UNPLACED = "unplaced"

    @classmethod
    def parse(cls, value: Any) -> "RestoreScope":
        if isinstance(value, RestoreScope):
            return value
        text = str(value or "").strip().lower()
        aliases = {
            "all": cls.ALL,
            "selected": cls.ALL,
            "deleted": cls.DELETED,
            "deleted-only": cls.DELETED,
            "unplaced": cls.UNPLACED,
            "unplaced-only": cls.UNPLACED,
        }
        if text not in aliases:
            raise ValueError(f"Unknown restore scope: {value!r}")
        return aliases[text]


class BackupFailurePolicy(str, Enum):
    """What a restore does when its backup snapshot cannot be written."""
    WARN = "warn"
    ABORT = "abort"


class EntityRestoreState(Enum):
    """Per-entity restore state."""
    PENDING = auto()
    SKIPPED = auto()
    UPDATED = auto()
    RECREATED = auto()


# Valid state transitions; the three outcomes are terminal
TRANSITIONS: Dict[EntityRestoreState, List[EntityRestoreState]] = {
    EntityRestoreState.PENDING: [
        EntityRestoreState.SKIPPED,
        EntityRestoreState.UPDATED,
        EntityRestoreState.RECREATED,
    ],
    EntityRestoreState.SKIPPED: [],
    EntityRestoreState.UPDATED: [],
    EntityRestoreState.RECREATED: [],
}


class EntityRestoreTracker:
    """Tracks the restore state of every target, rejecting invalid transitions."""

    def __init__(self):
        self._states: Dict[str, EntityRestoreState] = {}

    def state(self, key: str) -> EntityRestoreState:
        return self._states.get(key, EntityRestoreState.PENDING)

    def can_transition(self, key: str, to_state: EntityRestoreState) -> bool:
        return to_state in TRANSITIONS.get(self.state(key), [])

    def transition(self, key: str, to_state: EntityRestoreState):
        """
        Move one target to a new state.

        Raises:
            ValueError: If transition is not valid
        """
        current = self.state(key)
        if not self.can_transition(key, to_state):
            raise ValueError(
                f"Invalid transition for {key}: {current.name} → {to_state.name}. "
                f"Valid transitions: {[s.name for s in TRANSITIONS.get(current, [])]}"
            )
        self._states[key] = to_state

    def count(self, state: EntityRestoreState) -> int:
        return sum(1 for s in self._states.values() if s == state)


@dataclass
class SkippedEntity:
    """A target the restore did not touch, with the reason."""
    reason: str
    track_id: Optional[str] = None
    element_id: Optional[int] = None

    def __str__(self) -> str:
        subject = self.track_id or (f"#{self.element_id}" if self.element_id is not None else "?")
        return f"{subject}: {self.reason}"


@dataclass
class UnplacedRecreation:
    """An entity recreated without a position (placement failed or not recorded)."""
    track_id: str
    element_id: int
    reason: str = ""


@dataclass
class PlannedWrite:
    """A single parameter write for restore preview."""
    track_id: str
    parameter: str
    current_value: str
    snapshot_value: str
    element_id: Optional[int] = None
    action: str = "update"               # "update", "recreate"


@dataclass
class RestorePreview:
    """Preview of what restore would change."""
    version_name: str
    writes: List[PlannedWrite] = field(default_factory=list)
    skipped: List[SkippedEntity] = field(default_factory=list)
    errors: List[RestoreError] = field(default_factory=list)
    total_writes: int = 0
    entities_to_recreate: int = 0

    def __post_init__(self):
        self.total_writes = len(self.writes)
        self.entities_to_recreate = len({
            w.track_id for w in self.writes if w.action == "recreate"
        })

    @classmethod
    def failure(cls, version_name: str, error: str) -> "RestorePreview":
        return cls(version_name=version_name, errors=[RestoreError(error, kind="STRUCTURAL")])


@dataclass
class RestoreOutcome:
    """Result of a restore operation."""
    success: bool
    version_name: str = ""
    updated_count: int = 0
    created_count: int = 0
    skipped: List[SkippedEntity] = field(default_factory=list)
    errors: List[RestoreError] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    unplaced_recreations: List[UnplacedRecreation] = field(default_factory=list)
    backup_version: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def failure(
        cls,
        version_name: str,
        error: str,
        backup_version: Optional[str] = None,
        warnings: Optional[List[str]] = None,
    ) -> "RestoreOutcome":
        """Create a failure result (nothing was mutated)."""
        return cls(
            success=False,
            version_name=version_name,
            error=error,
            backup_version=backup_version,
            warnings=list(warnings or []),
        )

    @property
    def skipped_count(self) -> int:
        return len(self.skipped)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["skipped"] = [str(s) for s in self.skipped]
        data["errors"] = [e.to_dict() for e in self.errors]
        return data


def _display(value: Optional[ParameterValue]) -> str:
    if value is None:
        return "(missing)"
    if value.is_unset and not value.display_value:
        return UNSET_DISPLAY
    return value.display_value
