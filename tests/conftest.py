"""
This file configures pytest.

Run from the repository root:

uv sync --group dev
uv run pytest -q tests
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_ROOT = PROJECT_ROOT / "src"

if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

from live_query.schema import ModelSchema, SchemaDef  # noqa: E402

SCHEMA_DOCUMENT: dict[str, Any] = {
    "enums": {"Role": ["USER", "ADMIN", "GUEST"]},
    "models": {
        "User": {
            "fields": {
                "id": {"type": "String"},
                "string": {"type": "String"},
                "stringArray": {"type": "String", "array": True},
                "boolean": {"type": "Boolean"},
                "booleanArray": {"type": "Boolean", "array": True},
                "dateTime": {"type": "DateTime"},
                "role": {"type": "Role"},
                "roleArray": {"type": "Role", "array": True},
                "bigInt": {"type": "BigInt"},
                "bigIntArray": {"type": "BigInt", "array": True},
                "int": {"type": "Int"},
                "intArray": {"type": "Int", "array": True},
                "age": {"type": "Int"},
                "float": {"type": "Float"},
                "floatArray": {"type": "Float", "array": True},
                "decimal": {"type": "Decimal"},
                "json": {"type": "Json"},
                "bytes": {"type": "Bytes"},
                "posts": {"type": "Post", "array": True},
            }
        },
        "Post": {
            "fields": {
                "id": {"type": "String"},
                "title": {"type": "String"},
                "author": {"type": "User"},
                "authorId": {"type": "String"},
            }
        },
    },
}


@pytest.fixture()
def schema() -> SchemaDef:
    return SchemaDef.from_document(SCHEMA_DOCUMENT)


@pytest.fixture()
def user_model(schema: SchemaDef) -> ModelSchema:
    return schema.model("User")
