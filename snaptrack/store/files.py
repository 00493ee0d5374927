"""
File snapshot store - one JSON file per version in a workspace directory.

Layout:
    <workspace>/snapshots/<project_id>/<version>.json
"""

import json
import logging
import re
import threading
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from ..errors import DataError, ImmutableVersionError, StoreError
from ..snapshot.records import Category, SnapshotRecord, VersionInfo, normalize_track_id
from .base import SnapshotStore

logger = logging.getLogger(__name__)

_UNSAFE = re.compile(r"[^A-Za-z0-9_.-]+")


class FileSnapshotStore(SnapshotStore):
    """JSON files on disk, one per (project, version)."""

    def __init__(self, workspace_path: Path):
        self.workspace_path = Path(workspace_path)
        self.snapshots_dir = self.workspace_path / "snapshots"
        self.snapshots_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def _project_dir(self, project_id: str) -> Path:
        return self.snapshots_dir / _safe_name(project_id or "default")

    def _version_path(self, version_name: str, project_id: str) -> Path:
        return self._project_dir(project_id) / f"{_safe_name(version_name)}.json"

    # =========================================================================
    # File I/O
    # =========================================================================

    def _read(self, path: Path) -> List[SnapshotRecord]:
        try:
            with open(path) as f:
                data = json.load(f)
        except FileNotFoundError:
            return []
        except json.JSONDecodeError as e:
            raise DataError(f"Corrupt snapshot file {path}: {e}")
        except OSError as e:
            raise StoreError(f"Cannot read {path}: {e}")
        return [SnapshotRecord.from_dict(row) for row in data.get("records", [])]

    def _write(self, path: Path, version_name: str, records: List[SnapshotRecord]) -> None:
        payload = {
            "version_name": version_name,
            "records": [r.to_dict() for r in sorted(records, key=lambda r: r.track_id)],
        }
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp = path.with_suffix(".json.tmp")
            with open(tmp, 'w') as f:
                json.dump(payload, f, indent=2, ensure_ascii=False)
            tmp.replace(path)
        except OSError as e:
            raise StoreError(f"Cannot write {path}: {e}")

    def _all_versions(self, project_id: str) -> Dict[str, List[SnapshotRecord]]:
        versions = {}
        project_dir = self._project_dir(project_id)
        if not project_dir.exists():
            return versions
        for path in sorted(project_dir.glob("*.json")):
            records = self._read(path)
            if records:
                versions[records[0].version_name] = records
        return versions

    # =========================================================================
    # Reads
    # =========================================================================

    def get_by_version(
        self,
        version_name: str,
        project_id: str,
        category: Optional[Category] = None,
    ) -> List[SnapshotRecord]:
        with self._lock:
            records = self._read(self._version_path(version_name, project_id))
        if category is not None:
            records = [r for r in records if r.category == category]
        return sorted(records, key=lambda r: r.track_id)

    def get_latest_by_track_id(self, track_id: str, project_id: str) -> Optional[SnapshotRecord]:
        history = self.get_history(track_id, project_id)
        return history[0] if history else None

    def get_history(self, track_id: str, project_id: str) -> List[SnapshotRecord]:
        wanted = normalize_track_id(track_id)
        with self._lock:
            versions = self._all_versions(project_id)
        history = [
            r for records in versions.values() for r in records
            if normalize_track_id(r.track_id) == wanted
        ]
        return sorted(history, key=lambda r: (r.captured_at or "", r.version_name), reverse=True)

    def list_versions(self, project_id: str, category: Optional[Category] = None) -> List[VersionInfo]:
        with self._lock:
            versions = self._all_versions(project_id)
        records = [
            r for rs in versions.values() for r in rs
            if category is None or r.category == category
        ]
        return VersionInfo.from_records(records)

    # =========================================================================
    # Writes
    # =========================================================================

    def bulk_upsert(self, records: Sequence[SnapshotRecord]) -> int:
        grouped: Dict[tuple, List[SnapshotRecord]] = {}
        for record in records:
            if not record.track_id or not record.version_name:
                raise StoreError("Records need a track_id and a version_name")
            grouped.setdefault((record.project_id, record.version_name), []).append(record)

        with self._lock:
            merged = {}
            for (project_id, version_name), new_records in grouped.items():
                path = self._version_path(version_name, project_id)
                existing = {r.track_id: r for r in self._read(path)}
                for record in new_records:
                    old = existing.get(record.track_id)
                    if old is not None and old.is_official:
                        raise ImmutableVersionError(
                            f"Version '{version_name}' is official and cannot be overwritten"
                        )
                    existing[record.track_id] = record
                merged[path] = (version_name, list(existing.values()))

            for path, (version_name, version_records) in merged.items():
                self._write(path, version_name, version_records)

        logger.debug("Wrote %d records to %s", len(records), self.snapshots_dir)
        return len(records)

    def delete_version(self, version_name: str, project_id: str) -> int:
        path = self._version_path(version_name, project_id)
        with self._lock:
            records = self._read(path)
            _check_draft(version_name, records)
            if records:
                path.unlink()
        return len(records)

    def rename_version(self, version_name: str, new_name: str, project_id: str) -> int:
        path = self._version_path(version_name, project_id)
        new_path = self._version_path(new_name, project_id)
        with self._lock:
            if new_path.exists():
                raise StoreError(f"Version '{new_name}' already exists")
            records = self._read(path)
            _check_draft(version_name, records)
            if not records:
                return 0
            for record in records:
                record.version_name = new_name
            self._write(new_path, new_name, records)
            path.unlink()
        return len(records)


def _check_draft(version_name: str, records: List[SnapshotRecord]) -> None:
    if any(r.is_official for r in records):
        raise ImmutableVersionError(f"Version '{version_name}' is official")


def _safe_name(name: str) -> str:
    return _UNSAFE.sub("_", name.strip()) or "_"
