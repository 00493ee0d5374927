"""
CLI tests: argument parsing and full runs against a file workspace.
"""

from pathlib import Path

import pytest

from snaptrack.cli import create_store, main, parse_args
from snaptrack.config import Config
from snaptrack.host import InMemoryDocument
from snaptrack.store import (
    CachingSnapshotStore,
    FileSnapshotStore,
    InMemorySnapshotStore,
    PostgresSnapshotStore,
)

from .mocks import FakeConnection, PROJECT_ID, build_document, make_room


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in ("SNAPTRACK_PROJECT_ID", "SNAPTRACK_USER", "SNAPTRACK_DB_PASSWORD", "SNAPTRACK_DSN"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def workspace(tmp_path):
    return tmp_path / "ws"


@pytest.fixture
def config_file(tmp_path, workspace):
    path = tmp_path / "snaptrack.toml"
    path.write_text(
        "[project]\n"
        f'project_id = "{PROJECT_ID}"\n'
        'user = "alice"\n'
        "\n"
        "[store]\n"
        'backend = "file"\n'
        f'workspace = "{workspace}"\n'
    )
    return str(path)


@pytest.fixture
def model_file(tmp_path):
    path = tmp_path / "model.json"
    build_document().save(path)
    return str(path)


def _run(config_file, *argv, model=None):
    args = ["--config", config_file]
    if model:
        args += ["--model", model]
    return main(args + list(argv))


def _edit_model(path, element_id, name, value):
    document = InMemoryDocument.load(path)
    document.set_parameter(document.get_entity(element_id), name, value)
    document.save(Path(path))


class TestParseArgs:

    def test_restore_options(self):
        args = parse_args([
            "--model", "m.json", "restore", "v1",
            "--param", "Comments", "--param", "Name",
            "--scope", "deleted-only", "--no-backup", "--track-id", "ROOM-0001",
        ])
        assert args.command == "restore"
        assert args.params == ["Comments", "Name"]
        assert args.scope == "deleted-only"
        assert args.backup is False
        assert args.track_ids == ["ROOM-0001"]
        assert not args.dry_run

    def test_backup_defaults_to_config(self):
        args = parse_args(["restore", "v1"])
        assert args.backup is None
        assert args.params is None

    def test_unknown_scope_rejected(self):
        with pytest.raises(SystemExit):
            parse_args(["restore", "v1", "--scope", "everything"])

    def test_command_required(self):
        with pytest.raises(SystemExit):
            parse_args([])


class TestCreateStore:

    def test_memory(self):
        config = Config()
        config.store.backend = "memory"
        assert isinstance(create_store(config), InMemorySnapshotStore)

    def test_file(self, workspace):
        config = Config()
        config.store.workspace = str(workspace)
        store = create_store(config)
        assert isinstance(store, FileSnapshotStore)
        assert (workspace / "snapshots").is_dir()

    def test_postgres_is_cached(self, monkeypatch):
        conn = FakeConnection()
        monkeypatch.setattr(
            PostgresSnapshotStore, "connect",
            classmethod(lambda cls, **kwargs: cls(conn, page_size=kwargs["page_size"])),
        )
        config = Config()
        config.store.backend = "postgres"
        store = create_store(config)
        assert isinstance(store, CachingSnapshotStore)
        assert "CREATE TABLE IF NOT EXISTS" in conn.statements[0]


class TestMain:

    def test_capture_then_list(self, config_file, model_file, workspace, capsys):
        assert _run(config_file, "capture", "v1", model=model_file) == 0
        assert "Captured 5 records into 'v1'" in capsys.readouterr().out

        [info] = FileSnapshotStore(workspace).list_versions(PROJECT_ID)
        assert info.version_name == "v1"
        assert info.captured_by == "alice"
        assert info.file_source == "Tower-A.rvt"

        assert _run(config_file, "versions") == 0
        assert "v1" in capsys.readouterr().out

    def test_compare(self, config_file, model_file, capsys):
        _run(config_file, "capture", "v1", model=model_file)
        _edit_model(model_file, 101, "Comments", "new")
        capsys.readouterr()

        assert _run(config_file, "compare", "v1", model=model_file) == 0
        out = capsys.readouterr().out
        assert "ROOM-0001" in out
        assert "Comments" in out

    def test_compare_versions(self, config_file, model_file, capsys):
        _run(config_file, "capture", "v1", model=model_file)
        _edit_model(model_file, 101, "Comments", "new")
        _run(config_file, "capture", "v2", model=model_file)
        capsys.readouterr()

        assert _run(config_file, "compare-versions", "v1", "v2") == 0
        assert "ROOM-0001" in capsys.readouterr().out

    def test_restore_dry_run_leaves_model(self, config_file, model_file):
        _run(config_file, "capture", "v1", model=model_file)
        _edit_model(model_file, 101, "Comments", "new")

        assert _run(config_file, "restore", "v1", "--dry-run", "--save", model=model_file) == 0
        document = InMemoryDocument.load(model_file)
        assert document.get_entity(101).parameters["Comments"].value == "new"

    def test_restore_and_save(self, config_file, model_file, workspace):
        _run(config_file, "capture", "v1", model=model_file)
        _edit_model(model_file, 101, "Comments", "new")

        assert _run(config_file, "restore", "v1", "--param", "Comments", "--save", model=model_file) == 0
        document = InMemoryDocument.load(model_file)
        assert document.get_entity(101).parameters["Comments"].value == "old"

        names = [v.version_name for v in FileSnapshotStore(workspace).list_versions(PROJECT_ID)]
        assert any(name.startswith("Backup_Before_Restore_") for name in names)

    def test_restore_without_backup(self, config_file, model_file, workspace):
        _run(config_file, "capture", "v1", model=model_file)
        assert _run(config_file, "restore", "v1", "--no-backup", model=model_file) == 0
        assert len(FileSnapshotStore(workspace).list_versions(PROJECT_ID)) == 1

    def test_restore_unknown_version_fails(self, config_file, model_file):
        assert _run(config_file, "restore", "v9", model=model_file) == 1

    def test_duplicates_fix_and_save(self, config_file, tmp_path):
        path = tmp_path / "dupes.json"
        build_document([
            make_room(101, "ROOM-0001", "1", "A"),
            make_room(102, "ROOM-0001", "2", "B"),
        ]).save(path)

        assert _run(config_file, "duplicates", "--fix", "--save", model=str(path)) == 0
        document = InMemoryDocument.load(path)
        assert sorted(e.track_id for e in document.list_entities()) == ["ROOM-0001", "ROOM-0002"]

    def test_history(self, config_file, model_file, capsys):
        _run(config_file, "capture", "v1", model=model_file)
        capsys.readouterr()
        assert _run(config_file, "history", "room-0001") == 0
        assert "v1" in capsys.readouterr().out

    def test_delete_version(self, config_file, model_file, workspace):
        _run(config_file, "capture", "v1", model=model_file)
        assert _run(config_file, "delete-version", "v1") == 0
        assert FileSnapshotStore(workspace).list_versions(PROJECT_ID) == []

    def test_official_version_protected(self, config_file, model_file, capsys):
        _run(config_file, "capture", "release", "--official", model=model_file)
        capsys.readouterr()
        assert _run(config_file, "delete-version", "release") == 1
        assert "official" in capsys.readouterr().out

    def test_model_required(self, config_file, capsys):
        assert _run(config_file, "compare", "v1") == 1
        assert "needs a model file" in capsys.readouterr().out

    def test_missing_model_file(self, config_file, tmp_path):
        assert _run(config_file, "compare", "v1", model=str(tmp_path / "nope.json")) == 1

    def test_unknown_version(self, config_file, model_file, capsys):
        assert _run(config_file, "compare", "v9", model=model_file) == 1
        assert "not found" in capsys.readouterr().out

    def test_missing_config_file(self, tmp_path):
        assert main(["--config", str(tmp_path / "missing.toml"), "versions"]) == 1

    def test_invalid_config(self, tmp_path, capsys):
        path = tmp_path / "bad.toml"
        path.write_text('[store]\nbackend = "memory"\n')
        assert main(["--config", str(path), "versions"]) == 1
        assert "Project id is required" in capsys.readouterr().out

    def test_project_from_command_line(self, tmp_path, workspace):
        path = tmp_path / "noproject.toml"
        path.write_text("[output]\nquiet = true\n")
        assert main(["--config", str(path), "--project", "P-1", "--workspace", str(workspace), "versions"]) == 0
