"""
ComparisonEngine - classifies tracked entities into change categories.

Pure computation over already-fetched data: no store or host calls, no
shared mutable state between calls.
"""

import logging
from typing import Dict, Iterable, List, Optional, Sequence

from .models import ComparisonItem, EntityStatus, ParameterChange
from .records import DEFAULT_NAME_FIELDS, SnapshotRecord, TRACK_ID_PARAMETER, normalize_track_id
from .values import DEFAULT_DOUBLE_TOLERANCE, ParameterValue, values_equal

logger = logging.getLogger(__name__)

# Geometry-derived parameters: reported, never restored
DEFAULT_READ_ONLY_PARAMETERS = frozenset({
    "Area",
    "Perimeter",
    "Volume",
    "Unbounded Height",
    "Surface",
    "Périmètre",
    "Hauteur non liée",
})


class ComparisonEngine:
    """
    Compares live entities against snapshot records, or two versions.

    Usage:
        engine = ComparisonEngine()
        items = engine.compare(document.list_entities(Category.ROOM), records)
    """

    def __init__(
        self,
        read_only_parameters: Optional[Iterable[str]] = None,
        double_tolerance: float = DEFAULT_DOUBLE_TOLERANCE,
        include_unchanged: bool = False,
        name_fields: Sequence[str] = DEFAULT_NAME_FIELDS,
    ):
        if read_only_parameters is None:
            read_only_parameters = DEFAULT_READ_ONLY_PARAMETERS
        self.read_only_parameters = frozenset(read_only_parameters)
        self.double_tolerance = double_tolerance
        self.include_unchanged = include_unchanged
        self.name_fields = tuple(name_fields)

    # =========================================================================
    # Live vs snapshot
    # =========================================================================

    def compare(
        self,
        current_entities: Sequence,
        snapshot_records: Sequence[SnapshotRecord],
        include_unchanged: Optional[bool] = None,
    ) -> List[ComparisonItem]:
        """
        Compare live entities against the records of one version.

        Unchanged items are omitted unless include_unchanged is set.
        """
        if include_unchanged is None:
            include_unchanged = self.include_unchanged

        current = index_by_track_id(current_entities, lambda e: e.track_id)
        snapshot = index_by_track_id(snapshot_records, lambda r: r.track_id)

        items: List[ComparisonItem] = []
        for key, entity in current.items():
            record = snapshot.get(key)
            if record is None:
                items.append(ComparisonItem(
                    track_id=entity.track_id,
                    status=EntityStatus.NEW,
                    category=entity.category,
                    label=self._live_label(entity),
                    is_placed_now=entity.is_placed,
                ))
                continue

            item = self._compare_entity(entity, record)
            if item.status != EntityStatus.UNCHANGED or include_unchanged:
                items.append(item)

        for key, record in snapshot.items():
            if key not in current:
                items.append(ComparisonItem(
                    track_id=record.track_id,
                    status=EntityStatus.DELETED,
                    category=record.category,
                    label=record.display_name(self.name_fields),
                    was_placed_in_snapshot=record.was_placed,
                    snapshot_location=record.indexed.position,
                ))

        logger.debug(
            "Compared %d live entities against %d records: %d items",
            len(current), len(snapshot), len(items),
        )
        return items

    def _compare_entity(self, entity, record: SnapshotRecord) -> ComparisonItem:
        changes: List[ParameterChange] = []
        inapplicable: List[str] = []

        for name, snapshot_value in record.all_parameters.items():
            if name == TRACK_ID_PARAMETER:
                continue
            handle = entity.parameters.get(name)
            if handle is None:
                inapplicable.append(name)
                continue
            current_value = ParameterValue.from_live(handle)
            if not values_equal(current_value, snapshot_value, self.double_tolerance):
                changes.append(ParameterChange(
                    name=name,
                    current_value=current_value,
                    snapshot_value=snapshot_value,
                    is_read_only=self.is_read_only(name, handle),
                ))

        live_type_parameters = entity.type_parameters()
        for name, snapshot_value in record.type_parameters.items():
            handle = live_type_parameters.get(name)
            if handle is None:
                inapplicable.append(name)
                continue
            current_value = ParameterValue.from_live(handle)
            if not values_equal(current_value, snapshot_value, self.double_tolerance):
                changes.append(ParameterChange(
                    name=name,
                    current_value=current_value,
                    snapshot_value=snapshot_value,
                    is_read_only=self.is_read_only(name, handle),
                    is_type_level=True,
                ))

        if entity.category.is_spatial and not entity.is_placed and record.was_placed:
            status = EntityStatus.UNPLACED
        elif changes:
            status = EntityStatus.MODIFIED
        else:
            status = EntityStatus.UNCHANGED

        return ComparisonItem(
            track_id=entity.track_id,
            status=status,
            category=entity.category,
            label=self._live_label(entity) or record.display_name(self.name_fields),
            changes=changes,
            is_placed_now=entity.is_placed,
            was_placed_in_snapshot=record.was_placed,
            snapshot_location=record.indexed.position,
            inapplicable_parameters=inapplicable,
        )

    # =========================================================================
    # Snapshot vs snapshot
    # =========================================================================

    def compare_versions(
        self,
        baseline: Sequence[SnapshotRecord],
        target: Sequence[SnapshotRecord],
        include_unchanged: Optional[bool] = None,
    ) -> List[ComparisonItem]:
        """
        Compare two versions. current_value is the target side.

        A parameter present on one side only is reported as a change with
        the other side None.
        """
        if include_unchanged is None:
            include_unchanged = self.include_unchanged

        base = index_by_track_id(baseline, lambda r: r.track_id)
        newer = index_by_track_id(target, lambda r: r.track_id)

        items: List[ComparisonItem] = []
        for key, record in newer.items():
            old = base.get(key)
            if old is None:
                items.append(ComparisonItem(
                    track_id=record.track_id,
                    status=EntityStatus.NEW,
                    category=record.category,
                    label=record.display_name(self.name_fields),
                    is_placed_now=record.was_placed,
                ))
                continue

            changes = self._diff_maps(old.all_parameters, record.all_parameters, is_type_level=False)
            changes += self._diff_maps(old.type_parameters, record.type_parameters, is_type_level=True)

            if record.category.is_spatial and old.was_placed and not record.was_placed:
                status = EntityStatus.UNPLACED
            elif changes:
                status = EntityStatus.MODIFIED
            else:
                status = EntityStatus.UNCHANGED

            if status != EntityStatus.UNCHANGED or include_unchanged:
                items.append(ComparisonItem(
                    track_id=record.track_id,
                    status=status,
                    category=record.category,
                    label=record.display_name(self.name_fields) or old.display_name(self.name_fields),
                    changes=changes,
                    is_placed_now=record.was_placed,
                    was_placed_in_snapshot=old.was_placed,
                    snapshot_location=old.indexed.position,
                ))

        for key, old in base.items():
            if key not in newer:
                items.append(ComparisonItem(
                    track_id=old.track_id,
                    status=EntityStatus.DELETED,
                    category=old.category,
                    label=old.display_name(self.name_fields),
                    was_placed_in_snapshot=old.was_placed,
                    snapshot_location=old.indexed.position,
                ))
        return items

    def _diff_maps(
        self,
        baseline: Dict[str, ParameterValue],
        target: Dict[str, ParameterValue],
        is_type_level: bool,
    ) -> List[ParameterChange]:
        changes = []
        names = list(baseline)
        names += [n for n in target if n not in baseline]
        for name in names:
            old = baseline.get(name)
            new = target.get(name)
            if not values_equal(new, old, self.double_tolerance):
                changes.append(ParameterChange(
                    name=name,
                    current_value=new,
                    snapshot_value=old,
                    is_read_only=name in self.read_only_parameters,
                    is_type_level=is_type_level,
                ))
        return changes

    # =========================================================================
    # Helpers
    # =========================================================================

    def is_read_only(self, name: str, handle=None) -> bool:
        if name in self.read_only_parameters:
            return True
        return bool(handle is not None and handle.is_read_only)

    def inapplicable_parameters(self, entity, record: SnapshotRecord) -> List[str]:
        """Snapshot parameters the live entity no longer exposes."""
        missing = [n for n in record.all_parameters
                   if n != TRACK_ID_PARAMETER and n not in entity.parameters]
        live_types = entity.type_parameters()
        missing += [n for n in record.type_parameters if n not in live_types]
        return missing

    def _live_label(self, entity) -> str:
        for name in self.name_fields:
            handle = entity.parameters.get(name)
            if handle is not None and handle.value not in (None, ""):
                return str(handle.display or handle.value)
        return ""


def index_by_track_id(items: Iterable, key_of) -> Dict[str, object]:
    """
    Map normalised identifier -> item, first occurrence wins.

    Items without an identifier are left out.
    """
    index: Dict[str, object] = {}
    for item in items:
        key = normalize_track_id(key_of(item))
        if not key:
            continue
        if key in index:
            logger.debug("Duplicate identifier %r ignored after first occurrence", key)
            continue
        index[key] = item
    return index
