"""
Tests for SnapshotManager wiring.
"""

import pytest

from snaptrack.errors import IdentifierError, ImmutableVersionError, VersionNotFoundError
from snaptrack.snapshot import SnapshotManager
from snaptrack.snapshot.models import EntityStatus
from snaptrack.snapshot.records import Category
from snaptrack.store import InMemorySnapshotStore

from .mocks import FailingStore, PROJECT_ID, build_document, make_room


class TestQueries:

    def test_versions(self, manager):
        [info] = manager.versions()
        assert info.version_name == "v1"
        assert info.record_count == 5

    def test_versions_by_category(self, manager):
        [info] = manager.versions(Category.ROOM)
        assert info.record_count == 3

    def test_get_version_not_found(self, manager):
        with pytest.raises(VersionNotFoundError):
            manager.get_version("v9")

    def test_history(self, manager):
        manager.document.set_parameter(manager.document.get_entity(101), "Comments", "new")
        manager.capture_version("v2")
        history = manager.history("room-0001")
        assert len(history) == 2
        assert {r.version_name for r in history} == {"v1", "v2"}

    def test_project_id_override(self, store, document, config):
        manager = SnapshotManager(store, document, config, project_id="OTHER")
        assert manager.versions() == []


class TestCompare:

    def test_compare_current(self, manager):
        document = manager.document
        document.set_parameter(document.get_entity(101), "Comments", "new")
        document.delete_entity(document.get_entity(102))

        items = {i.track_id: i for i in manager.compare_current("v1")}
        assert items["ROOM-0001"].status == EntityStatus.MODIFIED
        assert items["ROOM-0002"].status == EntityStatus.DELETED
        assert len(items) == 2

    def test_compare_current_category(self, manager):
        document = manager.document
        document.set_parameter(document.get_entity(201), "Comments", "new")
        assert manager.compare_current("v1", Category.ROOM) == []

    def test_include_unchanged_from_config(self, store, document, config):
        config.compare.include_unchanged = True
        manager = SnapshotManager(store, document, config)
        assert len(manager.compare_current("v1")) == 5

    def test_compare_versions(self, manager):
        manager.document.set_parameter(manager.document.get_entity(101), "Comments", "new")
        manager.capture_version("v2")

        [item] = manager.compare_versions("v1", "v2")
        assert item.track_id == "ROOM-0001"
        [change] = item.changes
        assert change.current_display == "new"
        assert change.snapshot_display == "old"

    def test_compare_unknown_version(self, manager):
        with pytest.raises(VersionNotFoundError):
            manager.compare_versions("v1", "v9")


class TestLifecycle:

    def test_capture_version(self, manager):
        records = manager.capture_version("v2", Category.ROOM)
        assert len(records) == 3
        assert all(r.captured_by == "alice" for r in records)
        assert len(manager.get_version("v2")) == 3

    def test_duplicated_identifiers_block_capture(self, manager):
        manager.document.add_entity(make_room(9999, "ROOM-0001", "101", "Office"))
        with pytest.raises(IdentifierError) as excinfo:
            manager.capture_version("v-dup")
        assert "ROOM-0001" in str(excinfo.value)
        assert [v.version_name for v in manager.versions()] == ["v1"]

    def test_official_cannot_be_recaptured(self, manager):
        manager.capture_version("release", is_official=True)
        with pytest.raises(ImmutableVersionError):
            manager.capture_version("release")

    def test_delete_and_rename(self, manager):
        assert manager.rename_version("v1", "baseline") == 5
        assert manager.delete_version("baseline") == 5
        assert manager.versions() == []

    def test_delete_missing(self, manager):
        with pytest.raises(VersionNotFoundError):
            manager.delete_version("v9")
        with pytest.raises(VersionNotFoundError):
            manager.rename_version("v9", "v10")

    def test_delete_official(self, manager):
        manager.capture_version("release", is_official=True)
        with pytest.raises(ImmutableVersionError):
            manager.delete_version("release")


class TestDuplicates:

    def test_fix_duplicates(self, store, config):
        document = build_document([
            make_room(101, "ROOM-0001", "999", "Copy of Office"),
            make_room(150, "ROOM-0001", "101", "Office"),
        ])
        manager = SnapshotManager(store, document, config)

        groups, count = manager.fix_duplicates()
        assert len(groups) == 1
        assert count == 1
        assert document.get_entity(150).track_id == "ROOM-0001"
        assert document.get_entity(101).track_id == "ROOM-0002"
        assert manager.detect_duplicates() == []

    def test_configured_prefix(self, store, config):
        config.identifiers.prefixes["Room"] = "RM"
        document = build_document([
            make_room(1, "ROOM-0001", "1", "A"),
            make_room(2, "ROOM-0001", "2", "B"),
        ])
        manager = SnapshotManager(store, document, config)
        [group] = manager.detect_duplicates()
        assert group.regenerated[0].new_track_id == "RM-0001"


class TestRestore:

    def test_restore(self, manager):
        document = manager.document
        document.set_parameter(document.get_entity(101), "Comments", "new")

        outcome = manager.restore("v1", ["Comments"], create_backup=False)
        assert outcome.success
        assert document.get_entity(101).parameters["Comments"].value == "old"

    def test_restore_backs_up_by_default(self, manager):
        outcome = manager.restore("v1", ["Comments"])
        assert outcome.backup_version.startswith("Backup_Before_Restore_")
        assert len(manager.get_version(outcome.backup_version)) == 5

    def test_restore_deleted_scope(self, manager):
        document = manager.document
        document.delete_entity(document.get_entity(102))
        outcome = manager.restore("v1", scope="deleted-only", create_backup=False)
        assert outcome.created_count == 1

    def test_restore_store_failure(self, v1_records, document, config):
        store = FailingStore(v1_records)
        store.fail_reads = True
        outcome = SnapshotManager(store, document, config).restore("v1")
        assert not outcome.success
        assert "connection reset by peer" in outcome.error

    def test_preview(self, manager):
        document = manager.document
        document.set_parameter(document.get_entity(101), "Comments", "new")

        preview = manager.preview_restore("v1")
        assert [(w.track_id, w.parameter) for w in preview.writes] == [("ROOM-0001", "Comments")]
        assert document.get_entity(101).parameters["Comments"].value == "new"
        assert manager.versions()[0].version_name == "v1"


def test_operations_needing_a_document(store, config):
    manager = SnapshotManager(store, None, config)
    assert manager.versions()
    with pytest.raises(RuntimeError):
        manager.compare_current("v1")
    with pytest.raises(RuntimeError):
        manager.capture_version("v2")
    with pytest.raises(RuntimeError):
        manager.restore("v1")


def test_default_config(document):
    manager = SnapshotManager(InMemorySnapshotStore(), document, project_id=PROJECT_ID)
    assert manager.project_id == PROJECT_ID
    assert manager.versions() == []
