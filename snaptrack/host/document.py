"""
Host document interface.

The host owns the live model: entities, their parameters, placement and the
transaction window. snaptrack only talks to it through HostDocument.
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional

from ..snapshot.records import Category, XYZ, TRACK_ID_PARAMETER
from ..snapshot.values import StorageType


@dataclass
class ParameterHandle:
    """A live parameter as exposed by the host."""
    name: str
    storage_type: StorageType
    value: Any = None                      # unformatted typed value
    display: str = ""                      # host formatted text
    has_value: bool = True
    is_read_only: bool = False
    is_type_level: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "storage_type": self.storage_type.value,
            "value": self.value,
            "display": self.display,
            "has_value": self.has_value,
            "is_read_only": self.is_read_only,
            "is_type_level": self.is_type_level,
        }

    @classmethod
    def from_dict(cls, name: str, data: Dict[str, Any]) -> "ParameterHandle":
        return cls(
            name=name,
            storage_type=StorageType.parse(data.get("storage_type")) or StorageType.STRING,
            value=data.get("value"),
            display=data.get("display") or "",
            has_value=data.get("has_value", True),
            is_read_only=data.get("is_read_only", False),
            is_type_level=data.get("is_type_level", False),
        )


@dataclass
class TrackedEntity:
    """A live entity of a tracked category."""
    element_id: int
    category: Category
    parameters: Dict[str, ParameterHandle] = field(default_factory=dict)
    location: Optional[XYZ] = None
    facing: Optional[XYZ] = None
    hand: Optional[XYZ] = None
    type_id: Optional[int] = None

    @property
    def track_id(self) -> Optional[str]:
        handle = self.parameters.get(TRACK_ID_PARAMETER)
        if handle is None or handle.value is None:
            return None
        text = str(handle.value).strip()
        return text or None

    @property
    def is_placed(self) -> bool:
        return self.location is not None

    def instance_parameters(self) -> Dict[str, ParameterHandle]:
        return {n: h for n, h in self.parameters.items() if not h.is_type_level}

    def type_parameters(self) -> Dict[str, ParameterHandle]:
        return {n: h for n, h in self.parameters.items() if h.is_type_level}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "element_id": self.element_id,
            "category": self.category.value,
            "location": self.location.to_list() if self.location else None,
            "facing": self.facing.to_list() if self.facing else None,
            "hand": self.hand.to_list() if self.hand else None,
            "type_id": self.type_id,
            "parameters": {n: h.to_dict() for n, h in self.parameters.items()},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TrackedEntity":
        return cls(
            element_id=int(data["element_id"]),
            category=Category.parse(data.get("category")),
            parameters={
                name: ParameterHandle.from_dict(name, payload)
                for name, payload in (data.get("parameters") or {}).items()
            },
            location=XYZ.from_list(data.get("location")),
            facing=XYZ.from_list(data.get("facing")),
            hand=XYZ.from_list(data.get("hand")),
            type_id=data.get("type_id"),
        )


class HostDocument(ABC):
    """Live model operations needed by capture, duplicates and restore."""

    @property
    @abstractmethod
    def title(self) -> str:
        """Document title, recorded as file_source on captured records."""

    @abstractmethod
    def list_entities(self, category: Optional[Category] = None) -> List[TrackedEntity]:
        """Entities of a category (all tracked categories when None)."""

    @abstractmethod
    def get_entity(self, element_id: int) -> Optional[TrackedEntity]:
        pass

    @abstractmethod
    def get_parameter(self, entity: TrackedEntity, name: str) -> Optional[ParameterHandle]:
        pass

    @abstractmethod
    def set_parameter(self, entity: TrackedEntity, name: str, value: Any) -> None:
        """
        Write a typed value through the setter matching the live storage tag.

        Raises:
            ParameterError: missing, read-only parameter or value of the wrong type
        """

    @abstractmethod
    def set_track_id(self, entity: TrackedEntity, track_id: str) -> None:
        pass

    @abstractmethod
    def resolve_reference(self, entity: TrackedEntity, name: str, label: str) -> Optional[int]:
        """Id of the referenced object carrying this label, None if not found."""

    @abstractmethod
    def indexed_parameter_name(self, entity: TrackedEntity, field_name: str) -> Optional[str]:
        """Live parameter backing an indexed field ("code", "level", ...)."""

    @abstractmethod
    def create_entity(
        self,
        category: Category,
        position: Optional[XYZ] = None,
        level: Optional[str] = None,
        type_id: Optional[int] = None,
    ) -> TrackedEntity:
        """
        Create an entity, placed when a position is given.

        Raises:
            PlacementError: the host could not place it at that position
        """

    @abstractmethod
    def delete_entity(self, entity: TrackedEntity) -> None:
        pass

    @abstractmethod
    def flip_facing(self, entity: TrackedEntity) -> None:
        pass

    @abstractmethod
    def flip_hand(self, entity: TrackedEntity) -> None:
        pass

    @abstractmethod
    def begin(self, name: str) -> None:
        pass

    @abstractmethod
    def commit(self) -> None:
        pass

    @abstractmethod
    def rollback(self) -> None:
        pass

    @contextmanager
    def transaction(self, name: str) -> Iterator["HostDocument"]:
        """All-or-nothing window: commit on success, rollback on any exception."""
        self.begin(name)
        try:
            yield self
        except BaseException:
            self.rollback()
            raise
        else:
            self.commit()
