"""
Snapshot restore - applies parameter values from a version onto live entities.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from ..errors import ErrorKind, ParameterError, PlacementError, RestoreError
from .capture import SnapshotCapture, split_duplicates
from .compare import DEFAULT_READ_ONLY_PARAMETERS, index_by_track_id
from .models import (
    BackupFailurePolicy,
    EntityRestoreState,
    EntityRestoreTracker,
    PlannedWrite,
    RestoreOutcome,
    RestorePreview,
    RestoreScope,
    SkippedEntity,
    UnplacedRecreation,
)
from .records import SnapshotRecord, TRACK_ID_PARAMETER, normalize_track_id
from .values import (
    DEFAULT_DOUBLE_TOLERANCE,
    ParameterValue,
    StorageType,
    is_none_label,
    values_equal,
)

logger = logging.getLogger(__name__)

BACKUP_PREFIX = "Backup_Before_Restore_"


def backup_version_name(now: datetime) -> str:
    return f"{BACKUP_PREFIX}{now:%Y%m%d_%H%M%S}"


@dataclass
class _RestoreRun:
    """Mutable bookkeeping of one restore call."""
    outcome: RestoreOutcome
    tracker: EntityRestoreTracker = field(default_factory=EntityRestoreTracker)

    def error(self, message: str, entity=None, record=None, parameter=None, kind=ErrorKind.PARAMETER):
        track_id = entity.track_id if entity is not None else None
        if track_id is None and record is not None:
            track_id = record.track_id
        self.outcome.errors.append(RestoreError(
            message=message,
            track_id=track_id,
            element_id=entity.element_id if entity is not None else None,
            parameter=parameter,
            kind=kind.value,
        ))

    def skip(self, key: str, reason: str, track_id=None, element_id=None):
        self.tracker.transition(key, EntityRestoreState.SKIPPED)
        self.outcome.skipped.append(SkippedEntity(reason, track_id, element_id))


class RestoreOrchestrator:
    """
    Restores a selection of parameters from one version.

    All mutations of one restore() call share a single document
    transaction; per-parameter failures are collected and do not roll back.

    Usage:
        orchestrator = RestoreOrchestrator(document, store, project_id="P1")
        outcome = orchestrator.restore("v1", ["Comments"], scope="all")
    """

    def __init__(
        self,
        document,
        store=None,
        project_id: str = "",
        captured_by: str = "",
        create_backup: bool = True,
        backup_failure_policy: BackupFailurePolicy = BackupFailurePolicy.WARN,
        place_recreated: bool = True,
        read_only_parameters: Optional[Iterable[str]] = None,
        double_tolerance: float = DEFAULT_DOUBLE_TOLERANCE,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.document = document
        self.store = store
        self.project_id = project_id
        self.captured_by = captured_by
        self.create_backup = create_backup
        self.backup_failure_policy = BackupFailurePolicy(backup_failure_policy)
        self.place_recreated = place_recreated
        if read_only_parameters is None:
            read_only_parameters = DEFAULT_READ_ONLY_PARAMETERS
        self.read_only_parameters = frozenset(read_only_parameters)
        self.double_tolerance = double_tolerance
        self.clock = clock

    # =========================================================================
    # Restore
    # =========================================================================

    def restore(
        self,
        version: str,
        selected_parameters: Optional[Sequence[str]] = None,
        scope=RestoreScope.ALL,
        target_entities: Optional[Sequence] = None,
        create_backup: Optional[bool] = None,
        selected_track_ids: Optional[Iterable[str]] = None,
        records: Optional[Sequence[SnapshotRecord]] = None,
    ) -> RestoreOutcome:
        """
        Restore parameters from a version.

        Strategy:
        1. Fetch and materialise the version's records
        2. Back up the targets under a new draft version (optional)
        3. Open one transaction and apply the scope
        4. Roll back everything on any non-parameter failure

        Args:
            version: Version to restore from
            selected_parameters: Parameter names to write (None = every
                restorable parameter in the snapshot)
            scope: all, deleted or unplaced (aliases accepted)
            target_entities: Live entities to consider (default: whole document)
            create_backup: Override the configured backup behaviour
            selected_track_ids: Restrict the restore to these identifiers
            records: Already-fetched records (skips the store read)

        Returns:
            RestoreOutcome; never raises for operational failures
        """
        try:
            scope = RestoreScope.parse(scope)
        except ValueError as e:
            return RestoreOutcome.failure(version, str(e))

        # Store I/O completes before the transaction window opens
        if records is None:
            try:
                records = self._fetch(version)
            except Exception as e:
                logger.error("Could not read version '%s': %s", version, e)
                return RestoreOutcome.failure(version, f"Could not read version '{version}': {e}")
        records = list(records)
        if not records:
            return RestoreOutcome.failure(version, f"Version '{version}' has no records")

        wanted = _track_id_filter(selected_track_ids)
        if wanted is not None:
            records = [r for r in records if normalize_track_id(r.track_id) in wanted]

        if target_entities is None:
            target_entities = self.document.list_entities()
        targets = list(target_entities)
        if wanted is not None:
            targets = [e for e in targets if normalize_track_id(e.track_id) in wanted]

        outcome = RestoreOutcome(success=True, version_name=version)

        if self.create_backup if create_backup is None else create_backup:
            ok = self._backup(targets, outcome)
            if not ok and self.backup_failure_policy == BackupFailurePolicy.ABORT:
                return RestoreOutcome.failure(
                    version,
                    "Backup before restore failed; restore aborted",
                    warnings=outcome.warnings,
                )

        run = _RestoreRun(outcome)
        try:
            with self.document.transaction(f"Restore from {version}"):
                if scope == RestoreScope.ALL:
                    self._restore_matched(run, targets, records, selected_parameters)
                elif scope == RestoreScope.DELETED:
                    self._restore_deleted(run, records, selected_parameters)
                else:
                    self._restore_unplaced(run, targets, records, selected_parameters)
        except Exception as e:
            logger.error("Restore from '%s' rolled back: %s", version, e)
            return RestoreOutcome.failure(
                version,
                f"Restore rolled back: {e}",
                backup_version=outcome.backup_version,
                warnings=outcome.warnings,
            )

        outcome.updated_count = run.tracker.count(EntityRestoreState.UPDATED)
        outcome.created_count = run.tracker.count(EntityRestoreState.RECREATED)
        logger.info(
            "Restored '%s': %d updated, %d recreated, %d skipped, %d errors",
            version, outcome.updated_count, outcome.created_count,
            len(outcome.skipped), len(outcome.errors),
        )
        return outcome

    def _fetch(self, version: str) -> List[SnapshotRecord]:
        if self.store is None:
            raise RuntimeError("No snapshot store configured")
        return list(self.store.get_by_version(version, self.project_id))

    def _backup(self, targets: Sequence, outcome: RestoreOutcome) -> bool:
        """Capture and persist the targets. False when the backup failed."""
        identified = [e for e in targets if e.track_id]
        if not identified:
            logger.debug("Nothing to back up")
            return True

        name = backup_version_name(self.clock())
        identified, left_out = split_duplicates(identified)
        if left_out:
            listed = ", ".join(f"{e.track_id} #{e.element_id}" for e in left_out)
            message = f"Backup left out {len(left_out)} entities with duplicated identifiers: {listed}"
            logger.warning(message)
            outcome.warnings.append(message)

        try:
            if self.store is None:
                raise RuntimeError("No snapshot store configured")
            capture = SnapshotCapture(self.document, self.project_id, self.captured_by, self.clock)
            self.store.bulk_upsert(capture.capture(identified, name))
        except Exception as e:
            message = f"Backup '{name}' failed: {e}"
            logger.warning(message)
            outcome.warnings.append(message)
            return False

        outcome.backup_version = name
        logger.info("Backed up %d entities to '%s'", len(identified), name)
        return True

    # =========================================================================
    # Scopes
    # =========================================================================

    def _restore_matched(self, run: _RestoreRun, targets, records, selected):
        snapshot = index_by_track_id(records, lambda r: r.track_id)
        for entity in targets:
            key = _entity_key(entity)
            track_id = normalize_track_id(entity.track_id)
            if not track_id:
                run.skip(key, "no identifier", element_id=entity.element_id)
                continue
            record = snapshot.get(track_id)
            if record is None:
                run.skip(key, "no matching snapshot", entity.track_id, entity.element_id)
                continue

            self._apply_parameters(run, entity, record, selected)
            self._restore_orientation(entity, record)
            run.tracker.transition(key, EntityRestoreState.UPDATED)

    def _restore_deleted(self, run: _RestoreRun, records, selected):
        live = self._live_index()
        for key, record in index_by_track_id(records, lambda r: r.track_id).items():
            if key in live:
                continue
            tracker_key = f"track:{key}"
            if not record.category.is_spatial:
                run.skip(tracker_key, f"{record.category.value} entities cannot be recreated", record.track_id)
                continue

            entity = self._recreate(run, record)
            self._apply_parameters(run, entity, record, selected)
            run.tracker.transition(tracker_key, EntityRestoreState.RECREATED)
            live = self._live_index()

    def _restore_unplaced(self, run: _RestoreRun, targets, records, selected):
        snapshot = index_by_track_id(records, lambda r: r.track_id)
        for entity in targets:
            key = _entity_key(entity)
            track_id = normalize_track_id(entity.track_id)
            record = snapshot.get(track_id) if track_id else None
            if record is None:
                run.skip(key, "no matching snapshot" if track_id else "no identifier",
                         entity.track_id, entity.element_id)
                continue
            if not entity.category.is_spatial or entity.is_placed:
                run.skip(key, "not an unplaced spatial entity", entity.track_id, entity.element_id)
                continue
            if not record.was_placed:
                run.skip(key, "no placement recorded in snapshot", entity.track_id, entity.element_id)
                continue

            self.document.delete_entity(entity)
            recreated = self._recreate(run, record)
            self._apply_parameters(run, recreated, record, selected)
            run.tracker.transition(key, EntityRestoreState.RECREATED)

    def _recreate(self, run: _RestoreRun, record: SnapshotRecord):
        """Create the entity (placed when possible) and give it its identifier."""
        position = record.indexed.position
        if position is not None and not position.is_finite:
            position = None
        if not self.place_recreated:
            position = None

        entity, reason = None, ""
        if position is not None:
            try:
                entity = self.document.create_entity(
                    record.category, position, record.indexed.level, record.indexed.type_id,
                )
            except PlacementError as e:
                reason = f"placement failed: {e}"
                logger.warning("%s: %s, creating it unplaced", record.track_id, reason)
        elif record.was_placed:
            reason = "recorded position unusable" if self.place_recreated else "placement disabled"

        if entity is None:
            entity = self.document.create_entity(
                record.category, None, record.indexed.level, record.indexed.type_id,
            )

        self.document.set_track_id(entity, record.track_id)
        if record.was_placed and not entity.is_placed:
            run.outcome.unplaced_recreations.append(
                UnplacedRecreation(record.track_id, entity.element_id, reason)
            )
        logger.debug("Recreated %s as #%d", record.track_id, entity.element_id)
        return entity

    def _live_index(self) -> Dict[str, object]:
        """Identifier index of the live document, rebuilt after creations."""
        return index_by_track_id(self.document.list_entities(), lambda e: e.track_id)

    # =========================================================================
    # Parameters
    # =========================================================================

    def merged_values(self, entity, record: SnapshotRecord) -> Dict[str, ParameterValue]:
        """
        Snapshot parameters merged with the indexed fields.

        Indexed fields are mapped to live parameter names and included even
        when empty, so a field can be explicitly cleared.
        """
        merged = dict(record.all_parameters)
        for field_name, text in record.indexed.text_fields().items():
            name = self.document.indexed_parameter_name(entity, field_name)
            if name and name not in merged:
                merged[name] = ParameterValue.string(text)
        merged.pop(TRACK_ID_PARAMETER, None)
        return merged

    def _selection(self, entity, merged: Dict[str, ParameterValue], selected) -> List[str]:
        if selected is not None:
            return [n for n in selected if n != TRACK_ID_PARAMETER]
        names = []
        for name, value in merged.items():
            handle = self.document.get_parameter(entity, name)
            if handle is None or handle.is_read_only or handle.is_type_level:
                continue
            if name in self.read_only_parameters or value.is_type_level:
                continue
            names.append(name)
        return names

    def _check(self, entity, name: str, merged: Dict[str, ParameterValue]):
        """Snapshot value and live handle for a write, or raise ParameterError."""
        value = merged.get(name)
        if value is None:
            raise ParameterError("not present in snapshot", name)
        handle = self.document.get_parameter(entity, name)
        if handle is None:
            raise ParameterError("parameter not found on element", name)
        if handle.is_read_only or name in self.read_only_parameters:
            raise ParameterError("parameter is read-only", name)
        if handle.is_type_level or value.is_type_level:
            raise ParameterError("type-level parameters are not restored", name)
        return value, handle

    def _apply_parameters(self, run: _RestoreRun, entity, record: SnapshotRecord, selected):
        merged = self.merged_values(entity, record)
        for name in self._selection(entity, merged, selected):
            try:
                value, handle = self._check(entity, name, merged)
                self._write(entity, handle, value)
            except (ParameterError, ValueError, TypeError) as e:
                run.error(str(e), entity, record, parameter=name)

    def _write(self, entity, handle, value: ParameterValue) -> None:
        """Write through the setter matching the live storage tag."""
        name = handle.name
        live_type = handle.storage_type

        if live_type == StorageType.REFERENCE:
            if value.storage_type not in (StorageType.REFERENCE, StorageType.STRING):
                raise ParameterError(f"cannot restore a {value.storage_type.value} into a reference", name)
            if value.is_unset:
                self.document.set_parameter(entity, name, None)
                return
            label = value.reference_label if value.storage_type == StorageType.REFERENCE else value.raw_value
            label = (label or "").strip()
            if not label:
                raise ParameterError("reference has no label to re-resolve", name)
            if is_none_label(label):
                self.document.set_parameter(entity, name, None)
                return
            ref = self.document.resolve_reference(entity, name, label)
            if ref is None:
                raise ParameterError(f"no object named '{label}' to reference", name)
            self.document.set_parameter(entity, name, ref)
            return

        if live_type == StorageType.STRING:
            if value.storage_type != StorageType.STRING:
                raise ParameterError(f"cannot restore a {value.storage_type.value} into text", name)
            self.document.set_parameter(entity, name, value.raw_value or "")
            return

        if live_type == StorageType.INTEGER:
            if value.storage_type not in (StorageType.INTEGER, StorageType.STRING):
                raise ParameterError(f"cannot restore a {value.storage_type.value} into an integer", name)
            self.document.set_parameter(entity, name, value.raw_value)
            return

        if value.storage_type not in (StorageType.DOUBLE, StorageType.INTEGER, StorageType.STRING):
            raise ParameterError(f"cannot restore a {value.storage_type.value} into a number", name)
        self.document.set_parameter(entity, name, value.raw_value)

    def _restore_orientation(self, entity, record: SnapshotRecord) -> None:
        """Flip facing and hand independently when they oppose the snapshot."""
        if not entity.category.has_orientation:
            return
        if entity.facing is not None and record.facing is not None and entity.facing.dot(record.facing) < 0:
            self.document.flip_facing(entity)
            logger.debug("%s: flipped facing", entity.track_id)
        if entity.hand is not None and record.hand is not None and entity.hand.dot(record.hand) < 0:
            self.document.flip_hand(entity)
            logger.debug("%s: flipped hand", entity.track_id)

    # =========================================================================
    # Preview
    # =========================================================================

    def preview(
        self,
        version: str,
        selected_parameters: Optional[Sequence[str]] = None,
        scope=RestoreScope.ALL,
        target_entities: Optional[Sequence] = None,
        selected_track_ids: Optional[Iterable[str]] = None,
        records: Optional[Sequence[SnapshotRecord]] = None,
    ) -> RestorePreview:
        """
        Show what a restore would write without touching the document.

        Returns:
            RestorePreview with the planned writes, skips and errors
        """
        try:
            scope = RestoreScope.parse(scope)
            if records is None:
                records = self._fetch(version)
        except Exception as e:
            return RestorePreview.failure(version, str(e))

        wanted = _track_id_filter(selected_track_ids)
        records = [r for r in records if wanted is None or normalize_track_id(r.track_id) in wanted]
        if target_entities is None:
            target_entities = self.document.list_entities()
        targets = [e for e in target_entities if wanted is None or normalize_track_id(e.track_id) in wanted]

        snapshot = index_by_track_id(records, lambda r: r.track_id)
        writes: List[PlannedWrite] = []
        skipped: List[SkippedEntity] = []
        errors: List[RestoreError] = []

        if scope == RestoreScope.DELETED:
            live = self._live_index()
            for key, record in snapshot.items():
                if key in live:
                    continue
                if not record.category.is_spatial:
                    skipped.append(SkippedEntity(
                        f"{record.category.value} entities cannot be recreated", record.track_id))
                    continue
                names = selected_parameters if selected_parameters is not None else [
                    n for n in record.all_parameters
                    if n not in self.read_only_parameters and n != TRACK_ID_PARAMETER
                ]
                for name in names:
                    value = record.all_parameters.get(name)
                    writes.append(PlannedWrite(
                        record.track_id, name, "",
                        value.display_value if value is not None else "",
                        action="recreate",
                    ))
            return RestorePreview(version, writes, skipped, errors)

        for entity in targets:
            track_id = normalize_track_id(entity.track_id)
            record = snapshot.get(track_id) if track_id else None
            if record is None:
                reason = "no matching snapshot" if track_id else "no identifier"
                skipped.append(SkippedEntity(reason, entity.track_id, entity.element_id))
                continue
            action = "update"
            if scope == RestoreScope.UNPLACED:
                if not entity.category.is_spatial or entity.is_placed or not record.was_placed:
                    skipped.append(SkippedEntity("not an unplaced entity with recorded placement",
                                                 entity.track_id, entity.element_id))
                    continue
                action = "recreate"

            merged = self.merged_values(entity, record)
            for name in self._selection(entity, merged, selected_parameters):
                try:
                    value, handle = self._check(entity, name, merged)
                except ParameterError as e:
                    errors.append(RestoreError(str(e), entity.track_id, entity.element_id, name))
                    continue
                current = ParameterValue.from_live(handle)
                if action == "update" and _same(current, value, self.double_tolerance):
                    continue
                writes.append(PlannedWrite(
                    entity.track_id, name,
                    current.display_value if current is not None else "",
                    value.display_value,
                    element_id=entity.element_id,
                    action=action,
                ))
        return RestorePreview(version, writes, skipped, errors)


def _same(current: Optional[ParameterValue], value: ParameterValue, tolerance: float) -> bool:
    """Whether the write would be a no-op (text indexed fields compare by display)."""
    if current is None:
        return False
    if value.storage_type == StorageType.STRING and current.storage_type != StorageType.STRING:
        return (current.display_value or "") == (value.raw_value or "")
    return values_equal(current, value, tolerance)


def _entity_key(entity) -> str:
    return f"element:{entity.element_id}"


def _track_id_filter(track_ids: Optional[Iterable[str]]):
    if track_ids is None:
        return None
    return {normalize_track_id(t) for t in track_ids if t}
