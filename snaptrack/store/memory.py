"""
In-memory snapshot store.
"""

import copy
import threading
from typing import Dict, List, Optional, Sequence, Tuple

from ..errors import ImmutableVersionError, StoreError
from ..snapshot.records import Category, SnapshotRecord, VersionInfo, normalize_track_id
from .base import SnapshotStore


class InMemorySnapshotStore(SnapshotStore):
    """Dict-backed store keyed by (project_id, track_id, version_name)."""

    def __init__(self, records: Optional[Sequence[SnapshotRecord]] = None):
        self._records: Dict[Tuple[str, str, str], SnapshotRecord] = {}
        self._lock = threading.Lock()
        for record in records or []:
            self._records[_key(record)] = copy.deepcopy(record)

    def get_by_version(
        self,
        version_name: str,
        project_id: str,
        category: Optional[Category] = None,
    ) -> List[SnapshotRecord]:
        with self._lock:
            records = [
                copy.deepcopy(r) for r in self._records.values()
                if r.project_id == project_id and r.version_name == version_name
                and (category is None or r.category == category)
            ]
        return sorted(records, key=lambda r: r.track_id)

    def get_latest_by_track_id(self, track_id: str, project_id: str) -> Optional[SnapshotRecord]:
        history = self.get_history(track_id, project_id)
        return history[0] if history else None

    def get_history(self, track_id: str, project_id: str) -> List[SnapshotRecord]:
        wanted = normalize_track_id(track_id)
        with self._lock:
            records = [
                copy.deepcopy(r) for r in self._records.values()
                if r.project_id == project_id and normalize_track_id(r.track_id) == wanted
            ]
        return sorted(records, key=lambda r: (r.captured_at or "", r.version_name), reverse=True)

    def bulk_upsert(self, records: Sequence[SnapshotRecord]) -> int:
        with self._lock:
            for record in records:
                if not record.track_id or not record.version_name:
                    raise StoreError("Records need a track_id and a version_name")
                existing = self._records.get(_key(record))
                if existing is not None and existing.is_official:
                    raise ImmutableVersionError(
                        f"Version '{record.version_name}' is official and cannot be overwritten"
                    )
            for record in records:
                self._records[_key(record)] = copy.deepcopy(record)
        return len(records)

    def list_versions(self, project_id: str, category: Optional[Category] = None) -> List[VersionInfo]:
        with self._lock:
            records = [
                r for r in self._records.values()
                if r.project_id == project_id and (category is None or r.category == category)
            ]
            return VersionInfo.from_records(records)

    def delete_version(self, version_name: str, project_id: str) -> int:
        with self._lock:
            keys = self._version_keys(version_name, project_id)
            for key in keys:
                del self._records[key]
        return len(keys)

    def rename_version(self, version_name: str, new_name: str, project_id: str) -> int:
        with self._lock:
            if self._version_keys(new_name, project_id, check_official=False):
                raise StoreError(f"Version '{new_name}' already exists")
            keys = self._version_keys(version_name, project_id)
            for key in keys:
                record = self._records.pop(key)
                record.version_name = new_name
                self._records[_key(record)] = record
        return len(keys)

    def _version_keys(self, version_name: str, project_id: str, check_official: bool = True):
        keys = [k for k in self._records if k[0] == project_id and k[2] == version_name]
        if check_official and any(self._records[k].is_official for k in keys):
            raise ImmutableVersionError(f"Version '{version_name}' is official")
        return keys

    def __len__(self) -> int:
        return len(self._records)


def _key(record: SnapshotRecord) -> Tuple[str, str, str]:
    return (record.project_id, record.track_id, record.version_name)
