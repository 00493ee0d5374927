"""
Snapshot capture - builds snapshot records from live entities.
"""

import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from ..errors import IdentifierError
from .records import IndexedFields, SnapshotRecord, TRACK_ID_PARAMETER, normalize_track_id
from .values import ParameterValue, coerce_float

logger = logging.getLogger(__name__)

# Indexed fields read through the document's field mapping
EXTRA_TEXT_FIELDS = ("phase_created", "phase_demolished", "comments")

# Computed metrics copied into the indexed columns (spatial entities)
METRIC_PARAMETERS = {
    "area": "Area",
    "perimeter": "Perimeter",
    "volume": "Volume",
}


class SnapshotCapture:
    """Captures live entity state into snapshot records."""

    def __init__(
        self,
        document,
        project_id: str,
        captured_by: str = "",
        clock: Callable[[], datetime] = datetime.now,
    ):
        """
        Initialize snapshot capture.

        Args:
            document: HostDocument to read from
            project_id: Project the records belong to
            captured_by: User name recorded on every record
            clock: Timestamp source (injected by tests)
        """
        self.document = document
        self.project_id = project_id
        self.captured_by = captured_by
        self.clock = clock

    def capture(
        self,
        entities: Sequence,
        version_name: str,
        is_official: bool = False,
    ) -> List[SnapshotRecord]:
        """
        Capture entities under one version name.

        Entities without an identifier cannot be joined later and are skipped.

        Returns:
            One record per identified entity, in input order

        Raises:
            IdentifierError: if two entities share an identifier
        """
        duplicates = duplicate_track_ids(entities)
        if duplicates:
            listed = ", ".join(
                f"{track_id} (" + ", ".join(f"#{e.element_id}" for e in group) + ")"
                for track_id, group in duplicates.items()
            )
            raise IdentifierError(f"Duplicated identifiers, fix them before capturing: {listed}")

        captured_at = self.clock().isoformat()
        records = []
        skipped = 0
        for entity in entities:
            if not entity.track_id:
                skipped += 1
                logger.debug("Skipping element #%d: no identifier", entity.element_id)
                continue
            records.append(self.capture_entity(entity, version_name, captured_at, is_official))

        if skipped:
            logger.info("Skipped %d entities without identifier", skipped)
        logger.info("Captured %d records into '%s'", len(records), version_name)
        return records

    def capture_entity(
        self,
        entity,
        version_name: str,
        captured_at: Optional[str] = None,
        is_official: bool = False,
    ) -> SnapshotRecord:
        all_parameters = {}
        type_parameters = {}
        for name, handle in entity.parameters.items():
            if name == TRACK_ID_PARAMETER:
                continue
            value = ParameterValue.from_live(handle)
            if handle.is_type_level:
                type_parameters[name] = value
            else:
                all_parameters[name] = value

        record = SnapshotRecord(
            track_id=entity.track_id,
            version_name=version_name,
            project_id=self.project_id,
            category=entity.category,
            file_source=self.document.title,
            captured_at=captured_at or self.clock().isoformat(),
            captured_by=self.captured_by,
            is_official=is_official,
            indexed=self._indexed_fields(entity),
            all_parameters=all_parameters,
            type_parameters=type_parameters,
        )
        if entity.category.has_orientation:
            record.facing = entity.facing
            record.hand = entity.hand
        return record

    def _indexed_fields(self, entity) -> IndexedFields:
        fields = IndexedFields(
            code=self._text(entity, "code"),
            level=self._text(entity, "level"),
            type_id=entity.type_id,
            position=entity.location,
        )
        for field_name in EXTRA_TEXT_FIELDS:
            if self.document.indexed_parameter_name(entity, field_name):
                fields.extra[field_name] = self._text(entity, field_name)

        if entity.category.is_spatial:
            for attr, name in METRIC_PARAMETERS.items():
                handle = entity.parameters.get(name)
                if handle is not None and handle.has_value:
                    setattr(fields, attr, coerce_float(handle.value))
        return fields

    def _text(self, entity, field_name: str) -> Optional[str]:
        name = self.document.indexed_parameter_name(entity, field_name)
        handle = entity.parameters.get(name) if name else None
        if handle is None:
            return None
        if handle.display:
            return handle.display
        if not handle.has_value or handle.value is None:
            return ""
        return str(handle.value)


def duplicate_track_ids(entities: Sequence) -> Dict[str, List]:
    """Identifiers carried by more than one entity, with those entities in input order."""
    groups: Dict[str, List] = {}
    spelling: Dict[str, str] = {}
    for entity in entities:
        if not entity.track_id:
            continue
        key = normalize_track_id(entity.track_id)
        spelling.setdefault(key, entity.track_id)
        groups.setdefault(key, []).append(entity)
    return {spelling[key]: group for key, group in groups.items() if len(group) > 1}


def split_duplicates(entities: Sequence) -> Tuple[List, List]:
    """Keep the first entity of each identifier; return (kept, left_out)."""
    seen = set()
    kept, left_out = [], []
    for entity in entities:
        key = normalize_track_id(entity.track_id)
        if key and key in seen:
            left_out.append(entity)
            continue
        seen.add(key)
        kept.append(entity)
    return kept, left_out
