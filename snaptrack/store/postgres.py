"""
PostgreSQL snapshot store.

Single table, one row per (project_id, track_id, version_name); parameter
maps are stored as JSONB. Reads are paginated with a stable ORDER BY.
"""

import json
import logging
from typing import Any, Dict, List, Optional, Sequence

from ..errors import ImmutableVersionError, StoreError
from ..snapshot.records import Category, SnapshotRecord, VersionInfo, normalize_track_id
from .base import SnapshotStore

logger = logging.getLogger(__name__)

TABLE = "parameter_snapshots"

SCHEMA_SQL = f"""
CREATE TABLE IF NOT EXISTS {TABLE} (
    project_id       text        NOT NULL,
    track_id         text        NOT NULL,
    version_name     text        NOT NULL,
    category         text        NOT NULL,
    file_name        text,
    snapshot_date    timestamptz,
    created_by       text,
    is_official      boolean     NOT NULL DEFAULT false,
    code             text,
    level            text,
    type_id          bigint,
    position_x       double precision,
    position_y       double precision,
    position_z       double precision,
    area             double precision,
    perimeter        double precision,
    volume           double precision,
    extra            jsonb       NOT NULL DEFAULT '{{}}'::jsonb,
    all_parameters   jsonb       NOT NULL DEFAULT '{{}}'::jsonb,
    type_parameters  jsonb       NOT NULL DEFAULT '{{}}'::jsonb,
    PRIMARY KEY (project_id, track_id, version_name)
);
CREATE INDEX IF NOT EXISTS idx_{TABLE}_project_version ON {TABLE} (project_id, version_name);
CREATE INDEX IF NOT EXISTS idx_{TABLE}_project_track ON {TABLE} (project_id, lower(track_id));
"""

COLUMNS = [
    "project_id", "track_id", "version_name", "category", "file_name",
    "snapshot_date", "created_by", "is_official", "code", "level", "type_id",
    "position_x", "position_y", "position_z", "area", "perimeter", "volume",
    "extra", "all_parameters", "type_parameters",
]

JSON_COLUMNS = {"extra", "all_parameters", "type_parameters"}

_KEY_COLUMNS = {"project_id", "track_id", "version_name"}

_SELECT = f"SELECT {', '.join(COLUMNS)} FROM {TABLE}"

_UPSERT = (
    f"INSERT INTO {TABLE} ({', '.join(COLUMNS)}) VALUES ("
    + ", ".join("%s::jsonb" if c in JSON_COLUMNS else "%s" for c in COLUMNS)
    + ") ON CONFLICT (project_id, track_id, version_name) DO UPDATE SET "
    + ", ".join(f"{c} = EXCLUDED.{c}" for c in COLUMNS if c not in _KEY_COLUMNS)
    + f" WHERE {TABLE}.is_official = false"
)


class PostgresSnapshotStore(SnapshotStore):
    """
    psycopg2 backed store.

    Usage:
        store = PostgresSnapshotStore.connect(dsn="postgresql://...")
        store.ensure_schema()
    """

    def __init__(self, conn, page_size: int = 500):
        """
        Args:
            conn: psycopg2 database connection
            page_size: Rows per page for version reads
        """
        self.conn = conn
        self.page_size = max(1, page_size)

    @classmethod
    def connect(
        cls,
        dsn: Optional[str] = None,
        host: str = "localhost",
        port: int = 5432,
        user: str = "postgres",
        password: str = "",
        database: str = "snaptrack",
        page_size: int = 500,
    ) -> "PostgresSnapshotStore":
        """Open a connection and wrap it."""
        import psycopg2

        try:
            if dsn:
                conn = psycopg2.connect(dsn)
            else:
                conn = psycopg2.connect(
                    host=host,
                    port=port,
                    user=user,
                    password=password,
                    dbname=database,
                )
        except Exception as e:
            raise StoreError(f"Error connecting to PostgreSQL: {e}")
        return cls(conn, page_size=page_size)

    def ensure_schema(self) -> None:
        self._execute(SCHEMA_SQL, (), commit=True)

    def close(self) -> None:
        self.conn.close()

    # =========================================================================
    # Reads
    # =========================================================================

    def get_by_version(
        self,
        version_name: str,
        project_id: str,
        category: Optional[Category] = None,
    ) -> List[SnapshotRecord]:
        where = "WHERE project_id = %s AND version_name = %s"
        params: List[Any] = [project_id, version_name]
        if category is not None:
            where += " AND category = %s"
            params.append(category.value)

        records = []
        offset = 0
        while True:
            rows = self._fetch(
                f"{_SELECT} {where} ORDER BY track_id LIMIT %s OFFSET %s",
                tuple(params + [self.page_size, offset]),
            )
            records.extend(_row_to_record(row) for row in rows)
            if len(rows) < self.page_size:
                break
            offset += self.page_size
        logger.debug("Read %d records of '%s'", len(records), version_name)
        return records

    def get_latest_by_track_id(self, track_id: str, project_id: str) -> Optional[SnapshotRecord]:
        rows = self._fetch(
            f"{_SELECT} WHERE project_id = %s AND lower(track_id) = %s "
            "ORDER BY snapshot_date DESC NULLS LAST, version_name DESC LIMIT 1",
            (project_id, normalize_track_id(track_id)),
        )
        return _row_to_record(rows[0]) if rows else None

    def get_history(self, track_id: str, project_id: str) -> List[SnapshotRecord]:
        rows = self._fetch(
            f"{_SELECT} WHERE project_id = %s AND lower(track_id) = %s "
            "ORDER BY snapshot_date DESC NULLS LAST, version_name DESC",
            (project_id, normalize_track_id(track_id)),
        )
        return [_row_to_record(row) for row in rows]

    def list_versions(self, project_id: str, category: Optional[Category] = None) -> List[VersionInfo]:
        where = "WHERE project_id = %s"
        params: List[Any] = [project_id]
        if category is not None:
            where += " AND category = %s"
            params.append(category.value)
        rows = self._fetch(
            "SELECT version_name, bool_or(is_official), "
            "(array_agg(created_by ORDER BY snapshot_date DESC NULLS LAST))[1], "
            "max(snapshot_date), count(*), max(file_name) "
            f"FROM {TABLE} {where} GROUP BY version_name "
            "ORDER BY max(snapshot_date) DESC NULLS LAST, version_name",
            tuple(params),
        )
        versions = []
        for name, official, created_by, captured_at, count, file_name in rows:
            if hasattr(captured_at, "isoformat"):
                captured_at = captured_at.isoformat()
            versions.append(VersionInfo(
                version_name=name,
                is_official=bool(official),
                captured_by=created_by or "",
                captured_at=captured_at,
                record_count=int(count),
                file_source=file_name or "",
            ))
        return versions

    # =========================================================================
    # Writes
    # =========================================================================

    def bulk_upsert(self, records: Sequence[SnapshotRecord]) -> int:
        """Upsert all records in one database transaction."""
        if not records:
            return 0
        try:
            with self.conn.cursor() as cur:
                for record in records:
                    cur.execute(_UPSERT, _record_params(record))
                    if cur.rowcount == 0:
                        raise ImmutableVersionError(
                            f"Version '{record.version_name}' is official and cannot be overwritten"
                        )
            self.conn.commit()
        except ImmutableVersionError:
            self.conn.rollback()
            raise
        except Exception as e:
            self.conn.rollback()
            raise StoreError(f"Bulk upsert failed: {e}")
        logger.debug("Upserted %d records", len(records))
        return len(records)

    def delete_version(self, version_name: str, project_id: str) -> int:
        self._ensure_draft(version_name, project_id)
        return self._execute(
            f"DELETE FROM {TABLE} WHERE project_id = %s AND version_name = %s AND is_official = false",
            (project_id, version_name),
            commit=True,
        )

    def rename_version(self, version_name: str, new_name: str, project_id: str) -> int:
        existing = self._fetch(
            f"SELECT count(*) FROM {TABLE} WHERE project_id = %s AND version_name = %s",
            (project_id, new_name),
        )
        if existing and existing[0][0]:
            raise StoreError(f"Version '{new_name}' already exists")
        self._ensure_draft(version_name, project_id)
        return self._execute(
            f"UPDATE {TABLE} SET version_name = %s "
            "WHERE project_id = %s AND version_name = %s AND is_official = false",
            (new_name, project_id, version_name),
            commit=True,
        )

    def _ensure_draft(self, version_name: str, project_id: str) -> None:
        rows = self._fetch(
            f"SELECT bool_or(is_official) FROM {TABLE} WHERE project_id = %s AND version_name = %s",
            (project_id, version_name),
        )
        if rows and rows[0][0]:
            raise ImmutableVersionError(f"Version '{version_name}' is official")

    # =========================================================================
    # Helpers
    # =========================================================================

    def _fetch(self, sql: str, params: tuple) -> List[tuple]:
        try:
            with self.conn.cursor() as cur:
                cur.execute(sql, params)
                return list(cur.fetchall())
        except Exception as e:
            self.conn.rollback()
            raise StoreError(f"Query failed: {e}")

    def _execute(self, sql: str, params: tuple, commit: bool = False) -> int:
        try:
            with self.conn.cursor() as cur:
                cur.execute(sql, params)
                count = cur.rowcount
            if commit:
                self.conn.commit()
            return count
        except Exception as e:
            self.conn.rollback()
            raise StoreError(f"Statement failed: {e}")


def _record_params(record: SnapshotRecord) -> tuple:
    row = record.to_dict()
    values = []
    for column in COLUMNS:
        value = row.get(column)
        if column in JSON_COLUMNS:
            value = json.dumps(value or {}, ensure_ascii=False)
        values.append(value)
    return tuple(values)


def _row_to_record(row: Sequence[Any]) -> SnapshotRecord:
    data: Dict[str, Any] = dict(zip(COLUMNS, row))
    for column in JSON_COLUMNS:
        value = data.get(column)
        if isinstance(value, (str, bytes)):
            data[column] = json.loads(value)
    return SnapshotRecord.from_dict(data)
