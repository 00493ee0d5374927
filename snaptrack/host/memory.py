"""
In-memory host document.

Backs the tests and the CLI's --model files. Entities are mutated in place;
begin() keeps a deep copy that rollback() restores.
"""

import copy
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..errors import ParameterError, PlacementError, TransactionError
from ..snapshot.records import Category, XYZ, TRACK_ID_PARAMETER
from ..snapshot.values import StorageType, coerce_float, coerce_int, is_unset_reference
from .document import HostDocument, ParameterHandle, TrackedEntity

logger = logging.getLogger(__name__)

# Indexed field -> live parameter name, per category
DEFAULT_INDEXED_PARAMETERS: Dict[Category, Dict[str, str]] = {
    Category.ROOM: {
        "code": "Number",
        "level": "Level",
        "comments": "Comments",
    },
    Category.OPENING: {
        "code": "Mark",
        "level": "Level",
        "comments": "Comments",
    },
    Category.GENERIC: {
        "code": "Mark",
        "level": "Level",
        "phase_created": "Phase Created",
        "phase_demolished": "Phase Demolished",
        "comments": "Comments",
    },
}

# Reference parameter name -> catalogue kind
DEFAULT_REFERENCE_KINDS = {
    "Level": "level",
    "Phase Created": "phase",
    "Phase Demolished": "phase",
    "Type": "type",
}


class InMemoryDocument(HostDocument):
    """Dict-backed HostDocument."""

    def __init__(
        self,
        title: str = "model",
        entities: Optional[List[TrackedEntity]] = None,
        references: Optional[Dict[str, Dict[str, int]]] = None,
        reference_kinds: Optional[Dict[str, str]] = None,
        templates: Optional[Dict[Category, Dict[str, ParameterHandle]]] = None,
    ):
        self._title = title
        self._entities: Dict[int, TrackedEntity] = {}
        self._next_id = 1
        for entity in entities or []:
            self.add_entity(entity)

        # kind -> {label: id}
        self.references: Dict[str, Dict[str, int]] = references or {}
        self.reference_kinds = dict(DEFAULT_REFERENCE_KINDS)
        self.reference_kinds.update(reference_kinds or {})
        self.indexed_parameters = copy.deepcopy(DEFAULT_INDEXED_PARAMETERS)

        # Parameters a freshly created entity exposes, per category
        self.templates = templates or {}

        # Test hooks
        self.reject_placement = False

        self._backup: Optional[Dict[int, TrackedEntity]] = None
        self._backup_next_id = 0
        self._transaction: Optional[str] = None
        self.committed: List[str] = []

    # =========================================================================
    # Entities
    # =========================================================================

    @property
    def title(self) -> str:
        return self._title

    def add_entity(self, entity: TrackedEntity) -> TrackedEntity:
        """Register an existing entity (keeps its element id)."""
        self._entities[entity.element_id] = entity
        self._next_id = max(self._next_id, entity.element_id + 1)
        return entity

    def list_entities(self, category: Optional[Category] = None) -> List[TrackedEntity]:
        entities = sorted(self._entities.values(), key=lambda e: e.element_id)
        if category is None:
            return entities
        return [e for e in entities if e.category == category]

    def get_entity(self, element_id: int) -> Optional[TrackedEntity]:
        return self._entities.get(element_id)

    def create_entity(
        self,
        category: Category,
        position: Optional[XYZ] = None,
        level: Optional[str] = None,
        type_id: Optional[int] = None,
    ) -> TrackedEntity:
        if position is not None and self.reject_placement:
            raise PlacementError(f"Cannot place {category.value} at {position}")

        entity = TrackedEntity(
            element_id=self._next_id,
            category=category,
            parameters=copy.deepcopy(self.templates.get(category, {})),
            location=position,
            type_id=type_id,
        )
        self._next_id += 1
        self._entities[entity.element_id] = entity
        handle = entity.parameters.get("Level")
        if level is not None and handle is not None:
            if handle.storage_type == StorageType.REFERENCE:
                ref = self.resolve_reference(entity, "Level", level)
                if ref is not None:
                    self._set_reference(handle, ref)
            else:
                self.set_parameter(entity, "Level", level)
        logger.debug("Created %s #%d", category.value, entity.element_id)
        return entity

    def delete_entity(self, entity: TrackedEntity) -> None:
        self._entities.pop(entity.element_id, None)

    def flip_facing(self, entity: TrackedEntity) -> None:
        if entity.facing is not None:
            entity.facing = entity.facing.negated()

    def flip_hand(self, entity: TrackedEntity) -> None:
        if entity.hand is not None:
            entity.hand = entity.hand.negated()

    # =========================================================================
    # Parameters
    # =========================================================================

    def get_parameter(self, entity: TrackedEntity, name: str) -> Optional[ParameterHandle]:
        return entity.parameters.get(name)

    def set_parameter(self, entity: TrackedEntity, name: str, value: Any) -> None:
        handle = entity.parameters.get(name)
        if handle is None:
            raise ParameterError("parameter not found on element", name)
        if handle.is_read_only:
            raise ParameterError("parameter is read-only", name)

        if handle.storage_type == StorageType.STRING:
            text = "" if value is None else str(value)
            handle.value, handle.display, handle.has_value = text, text, True
        elif handle.storage_type == StorageType.INTEGER:
            number = _typed(coerce_int, value, name)
            handle.value, handle.has_value = number, number is not None
            handle.display = "" if number is None else str(number)
        elif handle.storage_type == StorageType.DOUBLE:
            number = _typed(coerce_float, value, name)
            handle.value, handle.has_value = number, number is not None
            handle.display = "" if number is None else f"{number:g}"
        else:
            self._set_reference(handle, value)

    def _set_reference(self, handle: ParameterHandle, value: Any) -> None:
        if value is not None and (isinstance(value, bool) or not isinstance(value, int)):
            raise ParameterError(f"expected a reference id, got {value!r}", handle.name)
        if value is None or is_unset_reference(value):
            handle.value, handle.display, handle.has_value = -1, "", False
            return
        handle.value, handle.has_value = value, True
        handle.display = self._reference_label(handle.name, value) or str(value)

    def set_track_id(self, entity: TrackedEntity, track_id: str) -> None:
        handle = entity.parameters.get(TRACK_ID_PARAMETER)
        if handle is None:
            handle = ParameterHandle(TRACK_ID_PARAMETER, StorageType.STRING)
            entity.parameters[TRACK_ID_PARAMETER] = handle
        handle.value, handle.display, handle.has_value = track_id, track_id, True

    def resolve_reference(self, entity: TrackedEntity, name: str, label: str) -> Optional[int]:
        kind = self.reference_kinds.get(name, name)
        catalogue = self.references.get(kind, {})
        if label in catalogue:
            return catalogue[label]
        folded = label.strip().casefold()
        for candidate, ref in catalogue.items():
            if candidate.strip().casefold() == folded:
                return ref
        return None

    def _reference_label(self, name: str, ref: int) -> Optional[str]:
        kind = self.reference_kinds.get(name, name)
        for label, candidate in self.references.get(kind, {}).items():
            if candidate == ref:
                return label
        return None

    def indexed_parameter_name(self, entity: TrackedEntity, field_name: str) -> Optional[str]:
        return self.indexed_parameters.get(entity.category, {}).get(field_name)

    # =========================================================================
    # Transactions
    # =========================================================================

    @property
    def in_transaction(self) -> bool:
        return self._transaction is not None

    def begin(self, name: str) -> None:
        if self._transaction is not None:
            raise TransactionError(f"Transaction '{self._transaction}' already open")
        self._transaction = name
        self._backup = copy.deepcopy(self._entities)
        self._backup_next_id = self._next_id

    def commit(self) -> None:
        if self._transaction is None:
            raise TransactionError("No open transaction to commit")
        self.committed.append(self._transaction)
        self._transaction = None
        self._backup = None

    def rollback(self) -> None:
        if self._transaction is None:
            raise TransactionError("No open transaction to roll back")
        # Restore in place so callers holding entity objects see the old state
        restored = {}
        for element_id, saved in self._backup.items():
            live = self._entities.get(element_id)
            if live is not None:
                live.__dict__.update(saved.__dict__)
                restored[element_id] = live
            else:
                restored[element_id] = saved
        self._entities = restored
        self._next_id = self._backup_next_id
        logger.debug("Rolled back transaction '%s'", self._transaction)
        self._transaction = None
        self._backup = None

    # =========================================================================
    # JSON model files
    # =========================================================================

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self._title,
            "references": self.references,
            "reference_kinds": self.reference_kinds,
            "templates": {
                category.value: {n: h.to_dict() for n, h in params.items()}
                for category, params in self.templates.items()
            },
            "entities": [e.to_dict() for e in self.list_entities()],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InMemoryDocument":
        templates = {
            Category.parse(category): {
                name: ParameterHandle.from_dict(name, payload)
                for name, payload in params.items()
            }
            for category, params in (data.get("templates") or {}).items()
        }
        return cls(
            title=data.get("title") or "model",
            entities=[TrackedEntity.from_dict(e) for e in data.get("entities") or []],
            references=data.get("references") or {},
            reference_kinds=data.get("reference_kinds") or {},
            templates=templates,
        )

    def save(self, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)

    @classmethod
    def load(cls, path: Path) -> "InMemoryDocument":
        with open(path) as f:
            return cls.from_dict(json.load(f))


def _typed(convert, value: Any, name: str):
    try:
        return convert(value)
    except (TypeError, ValueError) as e:
        raise ParameterError(f"value {value!r} has the wrong type: {e}", name)
