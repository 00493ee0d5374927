"""
Snapshot store interface.
"""

from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

from ..snapshot.records import Category, SnapshotRecord, VersionInfo


class SnapshotStore(ABC):
    """
    Persistence for snapshot records.

    Reads return records sorted by track_id. Official records are
    immutable: writes and deletes touching them raise ImmutableVersionError.
    Back-end failures raise StoreError.
    """

    @abstractmethod
    def get_by_version(
        self,
        version_name: str,
        project_id: str,
        category: Optional[Category] = None,
    ) -> List[SnapshotRecord]:
        pass

    @abstractmethod
    def get_latest_by_track_id(self, track_id: str, project_id: str) -> Optional[SnapshotRecord]:
        """Most recently captured record for an identifier (any version)."""

    @abstractmethod
    def get_history(self, track_id: str, project_id: str) -> List[SnapshotRecord]:
        """All records of an identifier, newest first."""

    @abstractmethod
    def bulk_upsert(self, records: Sequence[SnapshotRecord]) -> int:
        """Insert or replace draft records. Returns the number written."""

    @abstractmethod
    def list_versions(self, project_id: str, category: Optional[Category] = None) -> List[VersionInfo]:
        """Versions with aggregate metadata, newest first."""

    @abstractmethod
    def delete_version(self, version_name: str, project_id: str) -> int:
        """Delete a draft version. Returns the number of records removed."""

    @abstractmethod
    def rename_version(self, version_name: str, new_name: str, project_id: str) -> int:
        """Rename a draft version. Returns the number of records renamed."""

    def close(self) -> None:
        pass
