"""
Tests for the in-memory host document.
"""

import pytest

from snaptrack.errors import ParameterError, PlacementError, TransactionError
from snaptrack.host import InMemoryDocument
from snaptrack.snapshot.records import Category, XYZ

from .mocks import build_document


def test_list_entities_ordered_and_filtered(document):
    assert [e.element_id for e in document.list_entities()] == [101, 102, 103, 201, 301]
    assert [e.element_id for e in document.list_entities(Category.OPENING)] == [201]


class TestParameters:

    def test_typed_writes(self, document):
        room = document.get_entity(101)
        document.set_parameter(room, "Occupancy Count", "7")
        assert room.parameters["Occupancy Count"].value == 7
        assert room.parameters["Occupancy Count"].display == "7"

        document.set_parameter(room, "Occupancy Count", None)
        assert not room.parameters["Occupancy Count"].has_value

    def test_rejected_writes(self, document):
        room = document.get_entity(101)
        with pytest.raises(ParameterError):
            document.set_parameter(room, "Area", 30.0)
        with pytest.raises(ParameterError):
            document.set_parameter(room, "Nope", "x")
        with pytest.raises(ParameterError):
            document.set_parameter(room, "Occupancy Count", "many")
        with pytest.raises(ParameterError):
            document.set_parameter(room, "Level", "Level 2")

    def test_reference_display_follows_catalogue(self, document):
        room = document.get_entity(101)
        document.set_parameter(room, "Level", 312)
        assert room.parameters["Level"].display == "Level 2"
        document.set_parameter(room, "Level", -1)
        assert not room.parameters["Level"].has_value

    def test_resolve_reference(self, document):
        room = document.get_entity(101)
        assert document.resolve_reference(room, "Level", "Level 2") == 312
        assert document.resolve_reference(room, "Level", " level 2 ") == 312
        assert document.resolve_reference(room, "Phase Created", "Existing") == 401
        assert document.resolve_reference(room, "Level", "Roof") is None

    def test_set_track_id(self, document):
        room = document.get_entity(101)
        document.set_track_id(room, "ROOM-0042")
        assert room.track_id == "ROOM-0042"


class TestCreate:

    def test_create_from_template(self, document):
        room = document.create_entity(Category.ROOM, XYZ(3.0, 4.0, 0.0), level="Level 2")
        assert room.element_id == 302
        assert room.parameters["Level"].value == 312
        assert room.parameters["Name"].value == ""
        assert room.track_id is None

    def test_placement_rejected(self, document):
        document.reject_placement = True
        with pytest.raises(PlacementError):
            document.create_entity(Category.ROOM, XYZ(3.0, 4.0, 0.0))
        assert not document.create_entity(Category.ROOM).is_placed


class TestTransactions:

    def test_commit(self, document):
        with document.transaction("Edit"):
            document.set_parameter(document.get_entity(101), "Comments", "new")
        assert document.committed == ["Edit"]
        assert not document.in_transaction

    def test_rollback_restores_in_place(self, document):
        room = document.get_entity(101)
        with pytest.raises(RuntimeError):
            with document.transaction("Edit"):
                document.set_parameter(room, "Comments", "new")
                document.delete_entity(document.get_entity(102))
                document.create_entity(Category.ROOM)
                raise RuntimeError("boom")

        assert room.parameters["Comments"].value == "old"
        assert document.get_entity(101) is room
        assert document.get_entity(102) is not None
        assert [e.element_id for e in document.list_entities()] == [101, 102, 103, 201, 301]
        assert document.committed == []

    def test_nested_transaction_refused(self, document):
        document.begin("outer")
        with pytest.raises(TransactionError):
            document.begin("inner")
        document.rollback()

    def test_commit_without_transaction(self, document):
        with pytest.raises(TransactionError):
            document.commit()


def test_model_file_round_trip(tmp_path):
    path = tmp_path / "model.json"
    original = build_document()
    original.save(path)
    loaded = InMemoryDocument.load(path)

    assert loaded.title == "Tower-A.rvt"
    assert loaded.list_entities() == original.list_entities()
    assert loaded.references == original.references
    assert set(loaded.templates) == set(original.templates)
