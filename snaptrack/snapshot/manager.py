"""
Snapshot manager - high-level snapshot operations.
"""

import logging
from typing import List, Optional, Sequence, Tuple

from ..config import Config
from ..errors import ImmutableVersionError, VersionNotFoundError
from .capture import SnapshotCapture
from .compare import ComparisonEngine
from .duplicates import DuplicateResolver
from .models import BackupFailurePolicy, ComparisonItem, DuplicateGroup, RestoreOutcome, RestorePreview
from .records import Category, SnapshotRecord, VersionInfo
from .restore import RestoreOrchestrator

logger = logging.getLogger(__name__)


class SnapshotManager:
    """High-level snapshot operations for one project."""

    def __init__(
        self,
        store,
        document=None,
        config: Optional[Config] = None,
        project_id: Optional[str] = None,
    ):
        """
        Initialize snapshot manager.

        Args:
            store: SnapshotStore holding the versions
            document: HostDocument (required for capture, compare, restore)
            config: Settings (defaults when None)
            project_id: Overrides config.project.project_id
        """
        self.store = store
        self.document = document
        self.config = config or Config()
        self.project_id = project_id or self.config.project.project_id

        # Lazy-initialized components
        self._engine: Optional[ComparisonEngine] = None
        self._resolver: Optional[DuplicateResolver] = None
        self._orchestrator: Optional[RestoreOrchestrator] = None

    def _require_document(self):
        if self.document is None:
            raise RuntimeError("A host document is required for this operation")
        return self.document

    @property
    def engine(self) -> ComparisonEngine:
        """Get or create comparison engine."""
        if self._engine is None:
            cmp = self.config.compare
            self._engine = ComparisonEngine(
                read_only_parameters=cmp.read_only_parameters,
                double_tolerance=cmp.double_tolerance,
                include_unchanged=cmp.include_unchanged,
                name_fields=self.config.identifiers.name_fields,
            )
        return self._engine

    @property
    def resolver(self) -> DuplicateResolver:
        """Get or create duplicate resolver."""
        if self._resolver is None:
            ids = self.config.identifiers
            self._resolver = DuplicateResolver(
                store=self.store,
                project_id=self.project_id,
                code_fields=ids.code_fields,
                name_fields=ids.name_fields,
                prefixes={Category.parse(k): v for k, v in ids.prefixes.items()},
                width=ids.width,
                max_workers=ids.lookup_workers,
            )
        return self._resolver

    @property
    def orchestrator(self) -> RestoreOrchestrator:
        """Get or create restore orchestrator."""
        if self._orchestrator is None:
            rst = self.config.restore
            self._orchestrator = RestoreOrchestrator(
                document=self._require_document(),
                store=self.store,
                project_id=self.project_id,
                captured_by=self.config.project.user,
                create_backup=rst.create_backup,
                backup_failure_policy=BackupFailurePolicy(rst.backup_failure_policy),
                place_recreated=rst.place_recreated,
                read_only_parameters=self.config.compare.read_only_parameters,
                double_tolerance=self.config.compare.double_tolerance,
            )
        return self._orchestrator

    # =========================================================================
    # Query Operations
    # =========================================================================

    def versions(self, category: Optional[Category] = None) -> List[VersionInfo]:
        """List versions, newest first."""
        return self.store.list_versions(self.project_id, category)

    def get_version(self, version_name: str, category: Optional[Category] = None) -> List[SnapshotRecord]:
        """
        Records of one version.

        Raises:
            VersionNotFoundError: if the version holds no records
        """
        records = self.store.get_by_version(version_name, self.project_id, category)
        if not records:
            raise VersionNotFoundError(f"Version '{version_name}' not found")
        return records

    def history(self, track_id: str) -> List[SnapshotRecord]:
        """Records of one identifier across versions, newest first."""
        return self.store.get_history(track_id, self.project_id)

    def compare_current(
        self,
        version_name: str,
        category: Optional[Category] = None,
        include_unchanged: Optional[bool] = None,
    ) -> List[ComparisonItem]:
        """Compare the live document against a version."""
        document = self._require_document()
        records = self.get_version(version_name, category)
        entities = document.list_entities(category)
        return self.engine.compare(entities, records, include_unchanged)

    def compare_versions(
        self,
        baseline: str,
        target: str,
        category: Optional[Category] = None,
        include_unchanged: Optional[bool] = None,
    ) -> List[ComparisonItem]:
        """Compare two versions (baseline -> target)."""
        return self.engine.compare_versions(
            self.get_version(baseline, category),
            self.get_version(target, category),
            include_unchanged,
        )

    # =========================================================================
    # Version lifecycle
    # =========================================================================

    def capture_version(
        self,
        version_name: str,
        category: Optional[Category] = None,
        is_official: bool = False,
    ) -> List[SnapshotRecord]:
        """
        Capture the live document under a version name and store it.

        Raises:
            ImmutableVersionError: if the version exists and is official
        """
        document = self._require_document()
        for info in self.versions():
            if info.version_name == version_name and info.is_official:
                raise ImmutableVersionError(f"Version '{version_name}' is official and cannot be overwritten")

        capture = SnapshotCapture(document, self.project_id, self.config.project.user)
        records = capture.capture(document.list_entities(category), version_name, is_official)
        if records:
            self.store.bulk_upsert(records)
        return records

    def delete_version(self, version_name: str) -> int:
        """Delete a draft version. Official versions raise ImmutableVersionError."""
        removed = self.store.delete_version(version_name, self.project_id)
        if removed == 0:
            raise VersionNotFoundError(f"Version '{version_name}' not found")
        logger.info("Deleted version '%s' (%d records)", version_name, removed)
        return removed

    def rename_version(self, version_name: str, new_name: str) -> int:
        """Rename a draft version."""
        renamed = self.store.rename_version(version_name, new_name, self.project_id)
        if renamed == 0:
            raise VersionNotFoundError(f"Version '{version_name}' not found")
        logger.info("Renamed version '%s' to '%s'", version_name, new_name)
        return renamed

    # =========================================================================
    # Duplicates
    # =========================================================================

    def detect_duplicates(self, category: Optional[Category] = None) -> List[DuplicateGroup]:
        return self.resolver.detect(self._require_document().list_entities(category))

    def fix_duplicates(self, category: Optional[Category] = None) -> Tuple[List[DuplicateGroup], int]:
        """Detect and apply. Returns the groups and the number of entities re-identified."""
        groups = self.detect_duplicates(category)
        return groups, self.resolver.apply(self._require_document(), groups)

    # =========================================================================
    # Restore
    # =========================================================================

    def restore(
        self,
        version_name: str,
        parameters: Optional[Sequence[str]] = None,
        scope: str = "all",
        track_ids: Optional[Sequence[str]] = None,
        create_backup: Optional[bool] = None,
        category: Optional[Category] = None,
    ) -> RestoreOutcome:
        """Restore parameters from a version onto the live document."""
        document = self._require_document()
        try:
            records = self.store.get_by_version(version_name, self.project_id, category)
        except Exception as e:
            return RestoreOutcome.failure(version_name, f"Could not read version '{version_name}': {e}")
        return self.orchestrator.restore(
            version_name,
            selected_parameters=parameters,
            scope=scope,
            target_entities=document.list_entities(category),
            create_backup=create_backup,
            selected_track_ids=track_ids,
            records=records,
        )

    def preview_restore(
        self,
        version_name: str,
        parameters: Optional[Sequence[str]] = None,
        scope: str = "all",
        track_ids: Optional[Sequence[str]] = None,
        category: Optional[Category] = None,
    ) -> RestorePreview:
        """Show what restore would change."""
        document = self._require_document()
        try:
            records = self.store.get_by_version(version_name, self.project_id, category)
        except Exception as e:
            return RestorePreview.failure(version_name, str(e))
        return self.orchestrator.preview(
            version_name,
            selected_parameters=parameters,
            scope=scope,
            target_entities=document.list_entities(category),
            selected_track_ids=track_ids,
            records=records,
        )
