"""
Snapshot versioning, comparison and restore.

Key features:

- Typed parameter values compared on raw payloads, never on display text
- Live vs version and version vs version comparison
- Duplicate identifier detection and repair
- Transactional restore with backup-before-restore
- Dry-run preview before restore
"""

from .values import ParameterValue, StorageType, values_equal
from .records import Category, XYZ, IndexedFields, SnapshotRecord, VersionInfo
from .models import (
    EntityStatus,
    ParameterChange,
    ComparisonItem,
    summarize,
    DuplicateGroup,
    DuplicateMember,
    DuplicateAction,
    RestoreScope,
    BackupFailurePolicy,
    RestoreOutcome,
    RestorePreview,
)
from .compare import ComparisonEngine
from .duplicates import DuplicateResolver, generate_next_id
from .capture import SnapshotCapture
from .restore import RestoreOrchestrator
from .manager import SnapshotManager

__all__ = [
    'ParameterValue',
    'StorageType',
    'values_equal',
    'Category',
    'XYZ',
    'IndexedFields',
    'SnapshotRecord',
    'VersionInfo',
    'EntityStatus',
    'ParameterChange',
    'ComparisonItem',
    'summarize',
    'DuplicateGroup',
    'DuplicateMember',
    'DuplicateAction',
    'RestoreScope',
    'BackupFailurePolicy',
    'RestoreOutcome',
    'RestorePreview',
    'ComparisonEngine',
    'DuplicateResolver',
    'generate_next_id',
    'SnapshotCapture',
    'RestoreOrchestrator',
    'SnapshotManager',
]
