"""Scalar normalization and flattening."""
from datetime import datetime, timedelta, timezone

from bson import Decimal128, Int64, ObjectId

from etl import (
    FlattenPolicy,
    flatten_dict,
    flatten_one_level,
    normalize_document,
    normalize_scalar,
)

OID = "507f191e810c19729de860ea"


def test_plain_scalars_pass_through():
    for value in ("x", 3, 2.5, True, False, None):
        assert normalize_scalar(value) is value


def test_object_id_becomes_hex_string_and_is_idempotent():
    oid = ObjectId(OID)
    once = normalize_scalar(oid)
    assert once == str(oid) == OID
    assert normalize_scalar(once) == once


def test_naive_datetime_is_treated_as_utc():
    assert normalize_scalar(datetime(2024, 1, 1)) == "2024-01-01T00:00:00.000Z"


def test_aware_datetime_is_converted_to_utc():
    value = datetime(2024, 1, 1, 2, 30, 0, 123456, tzinfo=timezone(timedelta(hours=2)))
    assert normalize_scalar(value) == "2024-01-01T00:30:00.123Z"


def test_decimal128_becomes_float():
    result = normalize_scalar(Decimal128("12.50"))
    assert isinstance(result, float)
    assert result == 12.5


def test_int64_becomes_plain_int_without_loss():
    big = 2 ** 62 + 1
    result = normalize_scalar(Int64(big))
    assert type(result) is int
    assert result == big


def test_arrays_are_normalized_element_wise():
    assert normalize_scalar([ObjectId(OID), 1, (2, 3)]) == [OID, 1, [2, 3]]


def test_objects_and_unknown_types_pass_through():
    nested = {"a": ObjectId(OID)}
    marker = object()
    assert normalize_scalar(nested) is nested
    assert normalize_scalar(marker) is marker


def test_flatten_is_shallow():
    assert flatten_one_level({"a": {"b": {"c": 1}}}) == {"a.b": {"c": 1}}


def test_empty_nested_object_keeps_field():
    assert flatten_one_level({"a": {}, "b": 1}) == {"a": {}, "b": 1}


def test_arrays_are_not_expanded_into_indexed_keys():
    assert flatten_one_level({"tags": ["x", "y"], "n": None}) == {"tags": ["x", "y"], "n": None}


def test_key_collision_last_write_wins():
    assert flatten_one_level({"a.b": 1, "a": {"b": 2}}) == {"a.b": 2}
    assert flatten_one_level({"a": {"b": 2}, "a.b": 1}) == {"a.b": 1}


def test_deep_flatten_expands_every_level():
    assert flatten_dict({"a": {"b": {"c": 1}}, "d": {}}) == {"a.b.c": 1, "d": {}}


def test_policies_diverge_on_doubly_nested_input():
    doc = {"a": {"b": {"c": 1}}}
    assert normalize_document(doc, FlattenPolicy.SHALLOW) == {"a.b": {"c": 1}}
    assert normalize_document(doc, FlattenPolicy.DEEP) == {"a.b.c": 1}
    assert normalize_document(doc, "deep") == {"a.b.c": 1}


def test_no_driver_types_survive_in_nested_values():
    doc = {
        "_id": ObjectId(OID),
        "meta": {"owner": {"id": ObjectId(OID), "seen": [datetime(2024, 1, 1)]}},
    }
    row = normalize_document(doc)
    assert row == {
        "_id": OID,
        "meta.owner": {"id": OID, "seen": ["2024-01-01T00:00:00.000Z"]},
    }


def test_normalize_document_does_not_mutate_input():
    doc = {"profile": {"age": Int64(30)}}
    normalize_document(doc)
    assert isinstance(doc["profile"]["age"], Int64)
