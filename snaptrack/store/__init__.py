"""
Snapshot stores.

Usage:
    from snaptrack.store import FileSnapshotStore

    store = FileSnapshotStore(Path("./workspace"))
    records = store.get_by_version("v1", project_id="P1")
"""

from .base import SnapshotStore
from .memory import InMemorySnapshotStore
from .files import FileSnapshotStore
from .postgres import PostgresSnapshotStore, SCHEMA_SQL
from .cache import CachingSnapshotStore

__all__ = [
    'SnapshotStore',
    'InMemorySnapshotStore',
    'FileSnapshotStore',
    'PostgresSnapshotStore',
    'SCHEMA_SQL',
    'CachingSnapshotStore',
]
