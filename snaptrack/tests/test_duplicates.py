"""
Tests for identifier generation and duplicate resolution.
"""

import pytest

from snaptrack.errors import IdentifierError
from snaptrack.snapshot.duplicates import DuplicateResolver, generate_next_id
from snaptrack.snapshot.models import DuplicateAction, MatchReason
from snaptrack.snapshot.records import Category

from .mocks import FailingStore, PROJECT_ID, build_document, make_door, make_room


class TestGenerateNextId:

    def test_increments_highest(self):
        assert generate_next_id(["ROOM-0001", "ROOM-0007", "DOOR-0042"], "ROOM") == "ROOM-0008"

    def test_case_insensitive_prefix(self):
        assert generate_next_id(["room-0003", " Room-0004 "], "ROOM") == "ROOM-0005"

    def test_first_id(self):
        assert generate_next_id([], "DOOR") == "DOOR-0001"
        assert generate_next_id(["ROOM-ABC", None, ""], "ROOM") == "ROOM-0001"

    def test_width(self):
        assert generate_next_id(["ELEM-9"], "ELEM", width=6) == "ELEM-000010"

    def test_number_beyond_width(self):
        assert generate_next_id(["ROOM-9999"], "ROOM") == "ROOM-10000"

    def test_empty_prefix(self):
        with pytest.raises(IdentifierError):
            generate_next_id(["ROOM-0001"], "")

    def test_never_returns_existing(self):
        existing = [f"ROOM-{n:04d}" for n in range(1, 50)]
        assert generate_next_id(existing, "ROOM") not in existing


def _duplicated_document():
    """Two rooms share ROOM-0001; the second carries the captured number."""
    return build_document([
        make_room(101, "ROOM-0001", "999", "Copy of Office"),
        make_room(150, "ROOM-0001", "101", "Office"),
        make_room(102, "ROOM-0002", "102", "Meeting"),
        make_door(201, "DOOR-0001", "D01"),
        make_door(202, "door-0001 ", "D02"),
    ])


class TestDetect:

    def test_no_duplicates(self, document, store):
        resolver = DuplicateResolver(store, PROJECT_ID)
        assert resolver.detect(document.list_entities()) == []

    def test_code_match_wins_over_element_id(self, store):
        document = _duplicated_document()
        groups = DuplicateResolver(store, PROJECT_ID).detect(document.list_entities(Category.ROOM))

        [group] = groups
        assert group.track_id == "ROOM-0001"
        assert group.canonical.element_id == 150
        assert group.canonical.match_reason == MatchReason.CODE
        [regen] = group.regenerated
        assert regen.element_id == 101
        assert regen.new_track_id == "ROOM-0003"

    def test_name_match_when_code_differs(self, store):
        document = build_document([
            make_room(101, "ROOM-0001", "A", "Lobby"),
            make_room(150, "ROOM-0001", "B", "Office"),
        ])
        [group] = DuplicateResolver(store, PROJECT_ID).detect(document.list_entities())
        assert group.canonical.element_id == 150
        assert group.canonical.match_reason == MatchReason.NAME

    def test_lowest_element_id_without_history(self):
        document = _duplicated_document()
        groups = DuplicateResolver(None, PROJECT_ID).detect(document.list_entities())

        by_id = {g.track_id.strip().upper(): g for g in groups}
        assert set(by_id) == {"ROOM-0001", "DOOR-0001"}
        rooms = by_id["ROOM-0001"]
        assert rooms.canonical.element_id == 101
        assert rooms.canonical.match_reason == MatchReason.ORDINAL
        doors = by_id["DOOR-0001"]
        assert doors.category == Category.OPENING
        assert doors.regenerated[0].new_track_id == "DOOR-0002"

    def test_generated_ids_are_unique_across_groups(self):
        document = build_document([
            make_room(1, "ROOM-0001", "1", "A"),
            make_room(2, "ROOM-0001", "2", "B"),
            make_room(3, "ROOM-0002", "3", "C"),
            make_room(4, "ROOM-0002", "4", "D"),
            make_room(5, "ROOM-0002", "5", "E"),
        ])
        groups = DuplicateResolver(None, PROJECT_ID).detect(document.list_entities())
        new_ids = [m.new_track_id for g in groups for m in g.regenerated]
        assert sorted(new_ids) == ["ROOM-0003", "ROOM-0004", "ROOM-0005"]

    def test_lookup_failure_falls_back(self, v1_records, caplog):
        store = FailingStore(v1_records)
        store.fail_lookups.add("room-0001")
        document = _duplicated_document()

        [group] = DuplicateResolver(store, PROJECT_ID).detect(document.list_entities(Category.ROOM))
        assert group.lookup_failed
        assert group.canonical.element_id == 101
        assert group.canonical.match_reason == MatchReason.ORDINAL
        assert "lookup for ROOM-0001 failed" in caplog.text

    def test_one_failed_lookup_does_not_affect_others(self, v1_records):
        store = FailingStore(v1_records)
        store.fail_lookups.add("door-0001")
        groups = DuplicateResolver(store, PROJECT_ID, max_workers=2).detect(
            _duplicated_document().list_entities()
        )
        by_category = {g.category: g for g in groups}
        assert by_category[Category.OPENING].lookup_failed
        assert not by_category[Category.ROOM].lookup_failed
        assert by_category[Category.ROOM].canonical.element_id == 150

    def test_resolution_ignores_input_order(self, store):
        document = _duplicated_document()
        document.add_entity(make_room(160, "room-0002", "160", "Meeting copy"))
        entities = document.list_entities()
        resolver = DuplicateResolver(store, PROJECT_ID)

        def resolved(groups):
            return [
                (
                    g.track_id.strip().upper(),
                    g.canonical.element_id,
                    g.canonical.match_reason,
                    [(m.element_id, m.new_track_id) for m in g.regenerated],
                )
                for g in groups
            ]

        first = resolved(resolver.detect(entities))
        assert first == [
            ("DOOR-0001", 201, MatchReason.CODE, [(202, "DOOR-0002")]),
            ("ROOM-0001", 150, MatchReason.CODE, [(101, "ROOM-0003")]),
            ("ROOM-0002", 102, MatchReason.CODE, [(160, "ROOM-0004")]),
        ]
        assert resolved(resolver.detect(entities)) == first
        assert resolved(resolver.detect(list(reversed(entities)))) == first

    def test_custom_prefix(self):
        document = _duplicated_document()
        resolver = DuplicateResolver(None, PROJECT_ID, prefixes={Category.ROOM: "RM"})
        [group] = resolver.detect(document.list_entities(Category.ROOM))
        assert group.regenerated[0].new_track_id == "RM-0001"


class TestApply:

    def test_writes_in_one_transaction(self, store):
        document = _duplicated_document()
        resolver = DuplicateResolver(store, PROJECT_ID)
        groups = resolver.detect(document.list_entities())

        assert resolver.apply(document, groups) == 2
        assert document.committed == ["Fix duplicate identifiers"]
        assert document.get_entity(101).track_id == "ROOM-0003"
        assert document.get_entity(150).track_id == "ROOM-0001"
        assert resolver.detect(document.list_entities()) == []

    def test_nothing_to_apply(self, document):
        assert DuplicateResolver(None, PROJECT_ID).apply(document, []) == 0
        assert document.committed == []

    def test_keep_members_untouched(self, store):
        document = _duplicated_document()
        resolver = DuplicateResolver(store, PROJECT_ID)
        groups = resolver.detect(document.list_entities())
        resolver.apply(document, groups)
        keep = [m for g in groups for m in g.members if m.action == DuplicateAction.KEEP]
        assert all(m.new_track_id is None for m in keep)
