"""
Caching snapshot store - TTL cache in front of another store.

The cache is an explicit object owned by whoever builds the store; nothing
is kept in module state.
"""

import threading
import time
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from ..snapshot.records import Category, SnapshotRecord, VersionInfo
from .base import SnapshotStore


class CachingSnapshotStore(SnapshotStore):
    """
    Caches version listings and version reads for ttl_seconds.

    Any write through this store invalidates the whole cache.
    """

    def __init__(
        self,
        inner: SnapshotStore,
        ttl_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.inner = inner
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._entries: Dict[Tuple, Tuple[float, Any]] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def _cached(self, key: Tuple, load: Callable[[], Any]) -> Any:
        now = self.clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and now - entry[0] < self.ttl_seconds:
                self.hits += 1
                return entry[1]
        self.misses += 1
        value = load()
        with self._lock:
            self._entries[key] = (now, value)
        return value

    def invalidate(self) -> None:
        with self._lock:
            self._entries.clear()

    def get_by_version(
        self,
        version_name: str,
        project_id: str,
        category: Optional[Category] = None,
    ) -> List[SnapshotRecord]:
        key = ("version", project_id, version_name, category)
        return list(self._cached(key, lambda: self.inner.get_by_version(version_name, project_id, category)))

    def list_versions(self, project_id: str, category: Optional[Category] = None) -> List[VersionInfo]:
        key = ("versions", project_id, category)
        return list(self._cached(key, lambda: self.inner.list_versions(project_id, category)))

    def get_latest_by_track_id(self, track_id: str, project_id: str) -> Optional[SnapshotRecord]:
        return self.inner.get_latest_by_track_id(track_id, project_id)

    def get_history(self, track_id: str, project_id: str) -> List[SnapshotRecord]:
        return self.inner.get_history(track_id, project_id)

    def bulk_upsert(self, records: Sequence[SnapshotRecord]) -> int:
        try:
            return self.inner.bulk_upsert(records)
        finally:
            self.invalidate()

    def delete_version(self, version_name: str, project_id: str) -> int:
        try:
            return self.inner.delete_version(version_name, project_id)
        finally:
            self.invalidate()

    def rename_version(self, version_name: str, new_name: str, project_id: str) -> int:
        try:
            return self.inner.rename_version(version_name, new_name, project_id)
        finally:
            self.invalidate()

    def close(self) -> None:
        self.invalidate()
        self.inner.close()
