"""
snaptrack - Parameter snapshot versioning, diffing and restore

Captures point-in-time snapshots of tracked elements (rooms, openings,
generic placed objects), compares the live model against a version or two
versions against each other, repairs duplicated identifiers and restores
selected parameters transactionally.

Usage:
    # As a module
    python -m snaptrack --model model.json compare v1

    # Programmatically
    from snaptrack import SnapshotManager, FileSnapshotStore, InMemoryDocument

    manager = SnapshotManager(FileSnapshotStore(Path("ws")), document, project_id="P1")
    items = manager.compare_current("v1")
"""

__version__ = "1.0.0"

# Snapshot exports
from .snapshot import (
    ParameterValue,
    StorageType,
    Category,
    SnapshotRecord,
    VersionInfo,
    EntityStatus,
    ComparisonItem,
    ComparisonEngine,
    DuplicateResolver,
    generate_next_id,
    SnapshotCapture,
    RestoreOrchestrator,
    RestoreOutcome,
    SnapshotManager,
)

# Host and store exports
from .host import HostDocument, TrackedEntity, ParameterHandle, InMemoryDocument
from .store import (
    SnapshotStore,
    InMemorySnapshotStore,
    FileSnapshotStore,
    PostgresSnapshotStore,
    CachingSnapshotStore,
)

from .config import Config
from .errors import SnapTrackError

__all__ = [
    # Version
    "__version__",
    # Snapshot
    "ParameterValue",
    "StorageType",
    "Category",
    "SnapshotRecord",
    "VersionInfo",
    "EntityStatus",
    "ComparisonItem",
    "ComparisonEngine",
    "DuplicateResolver",
    "generate_next_id",
    "SnapshotCapture",
    "RestoreOrchestrator",
    "RestoreOutcome",
    "SnapshotManager",
    # Host
    "HostDocument",
    "TrackedEntity",
    "ParameterHandle",
    "InMemoryDocument",
    # Stores
    "SnapshotStore",
    "InMemorySnapshotStore",
    "FileSnapshotStore",
    "PostgresSnapshotStore",
    "CachingSnapshotStore",
    # Config / errors
    "Config",
    "SnapTrackError",
]
