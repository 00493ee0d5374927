"""
Snapshot records - versioned captures of one tracked entity's parameters.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence

from .values import ParameterValue, coerce_float, coerce_int

logger = logging.getLogger(__name__)

# Parameter holding the persistent identifier on live entities
TRACK_ID_PARAMETER = "trackID"

# Legacy layout: orientation persisted inside the parameter map
ORIENTATION_KEYS = {
    "facing": ("facing_x", "facing_y", "facing_z"),
    "hand": ("hand_x", "hand_y", "hand_z"),
}

# Candidate name fields (multilingual), scanned in order
DEFAULT_NAME_FIELDS = ("Nom", "Name", "Nombre")


class Category(str, Enum):
    """Tracked entity categories."""
    ROOM = "Room"
    OPENING = "Opening"
    GENERIC = "Generic"

    @property
    def is_spatial(self) -> bool:
        """Placement state is meaningful; deleted entities can be recreated."""
        return self == Category.ROOM

    @property
    def has_orientation(self) -> bool:
        return self in (Category.OPENING, Category.GENERIC)

    @classmethod
    def parse(cls, value: Any) -> "Category":
        if isinstance(value, Category):
            return value
        text = str(value or "").strip().lower()
        for category in cls:
            if category.value.lower() == text:
                return category
        aliases = {"rooms": cls.ROOM, "door": cls.OPENING, "doors": cls.OPENING,
                   "element": cls.GENERIC, "elements": cls.GENERIC}
        if text in aliases:
            return aliases[text]
        raise ValueError(f"Unknown category: {value!r}")


@dataclass(frozen=True)
class XYZ:
    """Point or direction in model coordinates."""
    x: float
    y: float
    z: float = 0.0

    def dot(self, other: "XYZ") -> float:
        return self.x * other.x + self.y * other.y + self.z * other.z

    def negated(self) -> "XYZ":
        return XYZ(-self.x, -self.y, -self.z)

    @property
    def is_finite(self) -> bool:
        return all(math.isfinite(v) for v in (self.x, self.y, self.z))

    def to_list(self) -> List[float]:
        return [self.x, self.y, self.z]

    @classmethod
    def from_list(cls, values: Optional[Sequence[Any]]) -> Optional["XYZ"]:
        if not values:
            return None
        coords = [coerce_float(v) for v in values]
        if len(coords) < 2 or coords[0] is None or coords[1] is None:
            return None
        z = coords[2] if len(coords) > 2 and coords[2] is not None else 0.0
        return cls(coords[0], coords[1], z)

    def __str__(self) -> str:
        return f"({self.x:.2f}, {self.y:.2f})"


@dataclass
class IndexedFields:
    """
    Values duplicated out of the parameter map for fast querying.

    code is the short human-readable key (room number, mark). extra holds
    text fields such as family/type names, phases and comments.
    """
    code: Optional[str] = None
    level: Optional[str] = None
    type_id: Optional[int] = None
    position: Optional[XYZ] = None
    area: Optional[float] = None
    perimeter: Optional[float] = None
    volume: Optional[float] = None
    extra: Dict[str, Optional[str]] = field(default_factory=dict)

    def text_fields(self) -> Dict[str, Optional[str]]:
        """Restorable text fields, including empty ones."""
        fields = {"code": self.code, "level": self.level}
        fields.update(self.extra)
        return fields

    def to_dict(self) -> Dict[str, Any]:
        position = self.position
        return {
            "code": self.code,
            "level": self.level,
            "type_id": self.type_id,
            "position_x": position.x if position else None,
            "position_y": position.y if position else None,
            "position_z": position.z if position else None,
            "area": self.area,
            "perimeter": self.perimeter,
            "volume": self.volume,
            "extra": dict(self.extra),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IndexedFields":
        position = None
        if data.get("position_x") is not None and data.get("position_y") is not None:
            position = XYZ.from_list(
                [data.get("position_x"), data.get("position_y"), data.get("position_z")]
            )
        return cls(
            code=_optional_text(data.get("code")),
            level=_optional_text(data.get("level")),
            type_id=_optional_int(data.get("type_id")),
            position=position,
            area=_optional_float(data.get("area")),
            perimeter=_optional_float(data.get("perimeter")),
            volume=_optional_float(data.get("volume")),
            extra={k: _optional_text(v) for k, v in (data.get("extra") or {}).items()},
        )


@dataclass
class SnapshotRecord:
    """One tracked entity's parameters at one point in time."""

    # Identity: (track_id, version_name) scoped by project_id
    track_id: str
    version_name: str
    project_id: str
    category: Category = Category.ROOM

    # Metadata
    file_source: str = ""
    captured_at: Optional[str] = None        # ISO timestamp
    captured_by: str = ""
    is_official: bool = False

    indexed: IndexedFields = field(default_factory=IndexedFields)
    all_parameters: Dict[str, ParameterValue] = field(default_factory=dict)
    type_parameters: Dict[str, ParameterValue] = field(default_factory=dict)

    # Directional placement (openings, generic objects)
    facing: Optional[XYZ] = None
    hand: Optional[XYZ] = None

    @property
    def key(self) -> tuple:
        return (self.project_id, self.track_id, self.version_name)

    @property
    def was_placed(self) -> bool:
        """Placement recorded at capture time."""
        return self.indexed.position is not None

    def display_name(self, name_fields: Iterable[str] = DEFAULT_NAME_FIELDS) -> str:
        """First non-empty candidate name field."""
        for key in name_fields:
            value = self.all_parameters.get(key)
            if value is not None and value.display_value.strip():
                return value.display_value
        return ""

    def to_dict(self) -> Dict[str, Any]:
        """Row shape used by all stores."""
        all_parameters = {name: value.to_dict() for name, value in self.all_parameters.items()}
        for attr, keys in ORIENTATION_KEYS.items():
            vector = getattr(self, attr)
            if vector is not None:
                for key, coord in zip(keys, vector.to_list()):
                    all_parameters[key] = ParameterValue.double(coord).to_dict()
        return {
            "track_id": self.track_id,
            "version_name": self.version_name,
            "project_id": self.project_id,
            "category": self.category.value,
            "file_name": self.file_source,
            "snapshot_date": self.captured_at,
            "created_by": self.captured_by,
            "is_official": self.is_official,
            **{k: v for k, v in self.indexed.to_dict().items()},
            "all_parameters": all_parameters,
            "type_parameters": {name: value.to_dict() for name, value in self.type_parameters.items()},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SnapshotRecord":
        """
        Build a record from a loosely-typed row.

        Every parameter payload is normalised to a ParameterValue here; no
        raw payload flows past this point.
        """
        all_parameters = _parameter_map(data.get("all_parameters"), is_type_level=False)
        type_parameters = _parameter_map(data.get("type_parameters"), is_type_level=True)

        orientation = {}
        for attr, keys in ORIENTATION_KEYS.items():
            orientation[attr] = _pop_vector(all_parameters, keys)

        captured_at = data.get("snapshot_date")
        if isinstance(captured_at, datetime):
            captured_at = captured_at.isoformat()

        return cls(
            track_id=str(data.get("track_id") or "").strip(),
            version_name=str(data.get("version_name") or ""),
            project_id=str(data.get("project_id") or ""),
            category=Category.parse(data.get("category") or Category.ROOM),
            file_source=data.get("file_name") or "",
            captured_at=captured_at,
            captured_by=data.get("created_by") or "",
            is_official=bool(data.get("is_official", False)),
            indexed=IndexedFields.from_dict(data),
            all_parameters=all_parameters,
            type_parameters=type_parameters,
            facing=orientation["facing"],
            hand=orientation["hand"],
        )


@dataclass
class VersionInfo:
    """Aggregate metadata of all records sharing one version name."""
    version_name: str
    is_official: bool = False
    captured_by: str = ""
    captured_at: Optional[str] = None
    record_count: int = 0
    file_source: str = ""

    @classmethod
    def from_records(cls, records: Sequence[SnapshotRecord]) -> List["VersionInfo"]:
        """Summarise records per version, newest first."""
        versions: Dict[str, VersionInfo] = {}
        for record in records:
            info = versions.get(record.version_name)
            if info is None:
                info = cls(
                    version_name=record.version_name,
                    is_official=record.is_official,
                    captured_by=record.captured_by,
                    captured_at=record.captured_at,
                    file_source=record.file_source,
                )
                versions[record.version_name] = info
            info.record_count += 1
            info.is_official = info.is_official or record.is_official
            if record.captured_at and (info.captured_at is None or record.captured_at > info.captured_at):
                info.captured_at = record.captured_at
                info.captured_by = record.captured_by or info.captured_by
        return sorted(versions.values(), key=lambda v: v.captured_at or "", reverse=True)


def normalize_track_id(track_id: Optional[str]) -> str:
    """Join key used across snapshots: trimmed and case-folded."""
    return (track_id or "").strip().casefold()


def _parameter_map(raw: Any, is_type_level: bool) -> Dict[str, ParameterValue]:
    if not raw:
        return {}
    if not isinstance(raw, dict):
        logger.warning("Ignoring parameter map of unexpected type %s", type(raw).__name__)
        return {}
    values = {}
    for name, payload in raw.items():
        value = ParameterValue.from_record(payload, is_type_level=is_type_level)
        if value is not None:
            values[name] = value
    return values


def _pop_vector(parameters: Dict[str, ParameterValue], keys: Sequence[str]) -> Optional[XYZ]:
    if not all(key in parameters for key in keys):
        for key in keys:
            parameters.pop(key, None)
        return None
    coords = [parameters.pop(key).raw_value for key in keys]
    try:
        return XYZ.from_list(coords)
    except (TypeError, ValueError):
        logger.warning("Ignoring unreadable orientation %r", coords)
        return None


def _optional_text(value: Any) -> Optional[str]:
    return None if value is None else str(value)


def _optional_float(value: Any) -> Optional[float]:
    try:
        return coerce_float(value)
    except ValueError:
        logger.warning("Ignoring non-numeric indexed value %r", value)
        return None


def _optional_int(value: Any) -> Optional[int]:
    try:
        return coerce_int(value)
    except ValueError:
        logger.warning("Ignoring non-integer indexed value %r", value)
        return None
