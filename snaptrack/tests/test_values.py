"""
Tests for typed parameter values: construction, legacy payloads, equality.
"""

import pytest

from snaptrack.host import ParameterHandle
from snaptrack.snapshot.values import (
    ParameterValue,
    StorageType,
    UNSET_DISPLAY,
    coerce_int,
    coerce_float,
    is_none_label,
    is_unset_reference,
    reference_id,
    values_equal,
)


class TestStorageType:

    @pytest.mark.parametrize("tag,expected", [
        ("String", StorageType.STRING),
        ("integer", StorageType.INTEGER),
        ("Double", StorageType.DOUBLE),
        ("ElementId", StorageType.REFERENCE),
        (" reference ", StorageType.REFERENCE),
        (StorageType.DOUBLE, StorageType.DOUBLE),
    ])
    def test_parse_known_tags(self, tag, expected):
        assert StorageType.parse(tag) == expected

    def test_parse_unknown_tag(self):
        assert StorageType.parse("Voxel") is None
        assert StorageType.parse(None) is None


class TestCoercion:

    def test_coerce_int_widens(self):
        assert coerce_int(2 ** 40) == 2 ** 40
        assert coerce_int(3.0) == 3
        assert coerce_int(" 12 ") == 12
        assert coerce_int("7.0") == 7
        assert coerce_int(True) == 1

    def test_coerce_int_blank_is_none(self):
        assert coerce_int(None) is None
        assert coerce_int("  ") is None

    def test_coerce_int_rejects_fractions(self):
        with pytest.raises(ValueError):
            coerce_int(2.5)
        with pytest.raises(ValueError):
            coerce_int("lots")

    def test_coerce_float(self):
        assert coerce_float("2.75") == 2.75
        assert coerce_float(4) == 4.0
        assert coerce_float("") is None

    def test_reference_helpers(self):
        assert reference_id("311") == 311
        assert reference_id(311.0) == 311
        assert reference_id("Level 1") is None
        assert is_unset_reference(-1)
        assert is_unset_reference(0)
        assert is_unset_reference("")
        assert is_unset_reference(None)
        assert is_unset_reference("None")
        assert is_unset_reference(" Aucune ")
        assert not is_unset_reference(311)
        assert not is_unset_reference("Level 1")

    @pytest.mark.parametrize("label", ["None", "aucune", " <None> ", "", None])
    def test_none_labels(self, label):
        assert is_none_label(label)

    def test_regular_label_is_not_none(self):
        assert not is_none_label("New Construction")


class TestFromLive:

    def test_raw_value_comes_from_unformatted_value(self):
        handle = ParameterHandle("Area", StorageType.DOUBLE, 20.0, "20.00 m²")
        value = ParameterValue.from_live(handle)
        assert value.raw_value == 20.0
        assert value.display_value == "20.00 m²"

    def test_unset_integer(self):
        handle = ParameterHandle("Occupancy Count", StorageType.INTEGER, None, "", has_value=False)
        value = ParameterValue.from_live(handle)
        assert value.raw_value is None
        assert value.display_value == UNSET_DISPLAY
        assert value.is_unset

    def test_unset_reference_is_sentinel(self):
        handle = ParameterHandle("Phase Demolished", StorageType.REFERENCE, -1, "", has_value=False)
        value = ParameterValue.from_live(handle)
        assert value.raw_value == -1
        assert value.is_unset

    def test_none_handle(self):
        assert ParameterValue.from_live(None) is None

    def test_type_level_flag_carried(self):
        handle = ParameterHandle("Width", StorageType.DOUBLE, 0.9, "0.90 m", is_type_level=True)
        assert ParameterValue.from_live(handle).is_type_level


class TestFromRecord:

    def test_stored_shape(self):
        value = ParameterValue.from_record(
            {"StorageType": "Integer", "RawValue": 4, "DisplayValue": "4", "IsTypeParameter": False}
        )
        assert value == ParameterValue(StorageType.INTEGER, 4, "4", False)

    def test_integer_sent_as_float_or_string(self):
        assert ParameterValue.from_record({"StorageType": "Integer", "RawValue": 2.0}).raw_value == 2
        assert ParameterValue.from_record({"StorageType": "Integer", "RawValue": "2"}).raw_value == 2

    def test_bare_scalars_infer_their_tag(self):
        assert ParameterValue.from_record("D01").storage_type == StorageType.STRING
        assert ParameterValue.from_record(3).storage_type == StorageType.INTEGER
        assert ParameterValue.from_record(2.7).storage_type == StorageType.DOUBLE

    def test_legacy_reference_label(self):
        value = ParameterValue.from_record(
            {"StorageType": "ElementId", "RawValue": "Level 1", "DisplayValue": "Level 1"}
        )
        assert value.storage_type == StorageType.REFERENCE
        assert value.raw_value == "Level 1"
        assert value.reference_label == "Level 1"

    def test_snake_case_keys(self):
        value = ParameterValue.from_record({"storage_type": "String", "raw_value": "EI30"})
        assert value.raw_value == "EI30"
        assert value.display_value == "EI30"

    def test_unreadable_payload_degrades_to_text(self, caplog):
        value = ParameterValue.from_record({"StorageType": "Integer", "RawValue": "lots"})
        assert value.storage_type == StorageType.STRING
        assert value.raw_value == "lots"
        assert "Unreadable" in caplog.text

    def test_unknown_tag_is_inferred(self, caplog):
        value = ParameterValue.from_record({"StorageType": "Voxel", "RawValue": 2.7})
        assert value.storage_type == StorageType.DOUBLE
        assert "Unknown storage tag" in caplog.text

    def test_none_payload(self):
        assert ParameterValue.from_record(None) is None

    def test_type_level_override(self):
        value = ParameterValue.from_record({"StorageType": "Double", "RawValue": 0.9}, is_type_level=True)
        assert value.is_type_level


class TestEquality:

    def test_display_text_is_ignored(self):
        a = ParameterValue.double(20.0, "20.00 m²")
        b = ParameterValue.double(20.0, "215.28 ft²")
        assert values_equal(a, b)

    def test_double_tolerance(self):
        a = ParameterValue.double(1.0)
        assert values_equal(a, ParameterValue.double(1.0005))
        assert not values_equal(a, ParameterValue.double(1.01))
        assert values_equal(a, ParameterValue.double(1.01), double_tolerance=0.05)

    def test_null_safety(self):
        assert values_equal(None, None)
        assert not values_equal(ParameterValue.string("x"), None)
        assert not values_equal(None, ParameterValue.string("x"))
        assert values_equal(ParameterValue.integer(None), ParameterValue.integer(None))
        assert not values_equal(ParameterValue.integer(None), ParameterValue.integer(0))

    def test_storage_type_mismatch(self):
        assert not values_equal(ParameterValue.string("4"), ParameterValue.integer(4))

    def test_empty_string_equals_empty(self):
        assert values_equal(ParameterValue.string(None), ParameterValue.string(""))

    def test_reference_sentinels_are_equal(self):
        assert values_equal(ParameterValue.reference(-1), ParameterValue.reference(0))
        assert values_equal(ParameterValue.reference(None), ParameterValue.reference(-1))
        assert not values_equal(ParameterValue.reference(-1), ParameterValue.reference(311, "Level 1"))

    def test_none_label_equals_unset_reference(self):
        stored = ParameterValue.from_record({"StorageType": "ElementId", "RawValue": "None", "DisplayValue": "None"})
        assert values_equal(ParameterValue.reference(-1), stored)
        assert values_equal(stored, ParameterValue.reference(None))
        assert not values_equal(ParameterValue.reference(311, "Level 1"), stored)

    def test_reference_by_id(self):
        assert values_equal(ParameterValue.reference(311, "Level 1"), ParameterValue.reference(311, "Niveau 1"))
        assert not values_equal(ParameterValue.reference(311), ParameterValue.reference(312))

    def test_legacy_label_reference_compares_on_label(self):
        legacy = ParameterValue.from_record({"StorageType": "ElementId", "RawValue": "Level 1"})
        assert values_equal(ParameterValue.reference(311, "Level 1"), legacy)
        assert not values_equal(ParameterValue.reference(312, "Level 2"), legacy)

    def test_equality_is_symmetric(self):
        pairs = [
            (ParameterValue.double(1.0), ParameterValue.double(1.0004)),
            (ParameterValue.reference(-1), ParameterValue.reference(0)),
            (ParameterValue.string("a"), ParameterValue.string("b")),
        ]
        for a, b in pairs:
            assert values_equal(a, b) == values_equal(b, a)


def test_wire_shape_round_trip():
    value = ParameterValue.reference(311, "Level 1")
    assert ParameterValue.from_record(value.to_dict()) == value
