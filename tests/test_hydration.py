from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from live_query.hydration import HydrationError, UnsupportedFieldTypeError, hydrate_row
from live_query.protocol import loads_exact
from live_query.schema import ModelSchema, SchemaDef


def test_scalar_kinds_are_coerced(user_model: ModelSchema) -> None:
    row = {
        "id": "abc",
        "string": "hello",
        "int": "17",
        "float": "1.5",
        "bigInt": "9223372036854775809",
        "decimal": "12345678901234567890.123456789",
        "boolean": "true",
        "role": "ADMIN",
        "dateTime": "1704067200123456",
    }

    hydrated = hydrate_row(user_model, row)

    assert hydrated["id"] == "abc"
    assert hydrated["string"] == "hello"
    assert hydrated["int"] == 17
    assert hydrated["float"] == 1.5
    assert hydrated["bigInt"] == 9223372036854775809
    assert hydrated["decimal"] == Decimal("12345678901234567890.123456789")
    assert hydrated["boolean"] is True
    assert hydrated["role"] == "ADMIN"
    assert hydrated["dateTime"] == datetime(2024, 1, 1, 0, 0, 0, 123000, tzinfo=timezone.utc)


def test_bigint_keeps_exact_digits_from_the_wire(user_model: ModelSchema) -> None:
    decoded = loads_exact('{"bigInt": 123456789012345678901234567890}')

    hydrated = hydrate_row(user_model, decoded)

    assert hydrated["bigInt"] == 123456789012345678901234567890


def test_boolean_is_true_only_for_true(user_model: ModelSchema) -> None:
    assert hydrate_row(user_model, {"boolean": "true"})["boolean"] is True
    assert hydrate_row(user_model, {"boolean": True})["boolean"] is True
    assert hydrate_row(user_model, {"boolean": "false"})["boolean"] is False
    assert hydrate_row(user_model, {"boolean": "TRUE"})["boolean"] is False
    assert hydrate_row(user_model, {"boolean": "1"})["boolean"] is False


def test_null_like_values_bypass_coercion(user_model: ModelSchema) -> None:
    hydrated = hydrate_row(user_model, {"int": None, "float": float("nan"), "bytes": None})

    assert hydrated["int"] is None
    assert hydrated["float"] is None
    assert hydrated["bytes"] is None
    # Absent scalar fields come back as None.
    assert hydrated["dateTime"] is None


def test_relation_fields_are_left_alone(user_model: ModelSchema) -> None:
    hydrated = hydrate_row(user_model, {"int": "1"})

    assert "posts" not in hydrated


def test_array_fields_are_coerced_element_wise(user_model: ModelSchema) -> None:
    hydrated = hydrate_row(
        user_model,
        {
            "intArray": ["1", "2", None],
            "bigIntArray": ["18446744073709551617"],
            "booleanArray": ["true", "false"],
            "stringArray": ["a", "b"],
            "floatArray": [],
        },
    )

    assert hydrated["intArray"] == [1, 2, None]
    assert hydrated["bigIntArray"] == [18446744073709551617]
    assert hydrated["booleanArray"] == [True, False]
    assert hydrated["stringArray"] == ["a", "b"]
    assert hydrated["floatArray"] == []


def test_array_field_with_scalar_value_is_rejected(user_model: ModelSchema) -> None:
    with pytest.raises(HydrationError, match="intArray"):
        hydrate_row(user_model, {"intArray": "1"})


def test_negative_micros_truncate_toward_zero(user_model: ModelSchema) -> None:
    hydrated = hydrate_row(user_model, {"dateTime": "-1500"})

    assert hydrated["dateTime"] == datetime(1969, 12, 31, 23, 59, 59, 999000, tzinfo=timezone.utc)


def test_zoned_timestamps_are_parsed(user_model: ModelSchema) -> None:
    hydrated = hydrate_row(user_model, {"dateTime": "2023-12-31T19:00:00-05:00"})

    assert hydrated["dateTime"] == datetime(2024, 1, 1, tzinfo=timezone.utc)


def test_json_fields_decode_precisely(user_model: ModelSchema) -> None:
    hydrated = hydrate_row(user_model, {"json": '{"price": 0.1, "ids": [1, 2]}'})

    assert hydrated["json"] == {"price": Decimal("0.1"), "ids": [1, 2]}


def test_bytes_fields_are_unsupported(user_model: ModelSchema) -> None:
    with pytest.raises(UnsupportedFieldTypeError, match="bytes"):
        hydrate_row(user_model, {"bytes": "AAEC"})


def test_malformed_numbers_name_the_field(user_model: ModelSchema) -> None:
    with pytest.raises(HydrationError, match="'int'"):
        hydrate_row(user_model, {"int": "seventeen"})


def test_input_row_is_not_mutated_and_unknown_keys_survive(user_model: ModelSchema) -> None:
    row = {"int": "3", "extra": "kept"}

    hydrated = hydrate_row(user_model, row)

    assert row == {"int": "3", "extra": "kept"}
    assert hydrated["int"] == 3
    assert hydrated["extra"] == "kept"


def test_post_model_only_touches_its_fields(schema: SchemaDef) -> None:
    hydrated = hydrate_row(schema.model("Post"), {"id": "p1", "title": "Hi", "authorId": "u1"})

    assert hydrated == {"id": "p1", "title": "Hi", "authorId": "u1"}
