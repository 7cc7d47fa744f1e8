from __future__ import annotations

import json
from collections.abc import Mapping
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


class UnknownModelError(KeyError):
    """Raised when a model name is not part of the schema."""


class UnknownFieldError(KeyError):
    """Raised when a field name is not part of a model."""


class ScalarKind(str, Enum):
    STRING = "String"
    BOOLEAN = "Boolean"
    INT = "Int"
    FLOAT = "Float"
    BIGINT = "BigInt"
    DECIMAL = "Decimal"
    DATETIME = "DateTime"
    BYTES = "Bytes"
    JSON = "Json"
    ENUM = "Enum"
    MODEL = "Model"


_BUILTIN_KINDS = {kind.value: kind for kind in ScalarKind if kind not in (ScalarKind.ENUM, ScalarKind.MODEL)}


class FieldMeta(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    type: str
    kind: ScalarKind
    is_array: bool = False
    is_relation: bool = False


class ModelSchema(BaseModel):
    """Read-only field metadata for one model, indexed by field name."""

    model_config = ConfigDict(frozen=True)

    name: str
    fields: dict[str, FieldMeta] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _validate_field_names(self) -> ModelSchema:
        for key, meta in self.fields.items():
            if key != meta.name:
                raise ValueError(f"Field key {key!r} does not match field name {meta.name!r}")
        return self

    def field(self, name: str) -> FieldMeta:
        try:
            return self.fields[name]
        except KeyError:
            raise UnknownFieldError(f"Model {self.name!r} has no field {name!r}") from None

    def scalar_fields(self) -> list[FieldMeta]:
        return [meta for meta in self.fields.values() if not meta.is_relation]


class SchemaDef(BaseModel):
    model_config = ConfigDict(frozen=True)

    models: dict[str, ModelSchema] = Field(default_factory=dict)
    enums: dict[str, tuple[str, ...]] = Field(default_factory=dict)

    def model(self, name: str) -> ModelSchema:
        try:
            return self.models[name]
        except KeyError:
            raise UnknownModelError(f"Schema has no model {name!r}") from None

    def is_enum(self, type_name: str) -> bool:
        return type_name in self.enums

    @classmethod
    def from_document(cls, document: Mapping[str, Any]) -> SchemaDef:
        """Build a schema from its plain-mapping form.

        The document looks like::

            {
                "models": {"User": {"fields": {"age": {"type": "Int"}}}},
                "enums": {"Role": ["USER", "ADMIN"]},
            }

        Types naming an enum become ``ScalarKind.ENUM``; types naming another
        model become ``ScalarKind.MODEL`` and are always treated as relations.
        """

        raw_models: Mapping[str, Any] = document.get("models") or {}
        raw_enums: Mapping[str, Any] = document.get("enums") or {}
        enums = {name: tuple(str(value) for value in values) for name, values in raw_enums.items()}

        models: dict[str, ModelSchema] = {}
        for model_name, raw_model in raw_models.items():
            fields: dict[str, FieldMeta] = {}
            for field_name, raw_field in (raw_model.get("fields") or {}).items():
                fields[field_name] = _field_from_document(
                    field_name,
                    raw_field,
                    enums=enums,
                    model_names=raw_models.keys(),
                )
            models[model_name] = ModelSchema(name=model_name, fields=fields)

        return cls(models=models, enums=enums)

    @classmethod
    def load(cls, path: str | Path) -> SchemaDef:
        with Path(path).open("r", encoding="utf-8") as handle:
            return cls.from_document(json.load(handle))


def _field_from_document(
    name: str,
    raw: Mapping[str, Any],
    *,
    enums: Mapping[str, Any],
    model_names: Any,
) -> FieldMeta:
    type_name = raw.get("type")
    if not isinstance(type_name, str) or not type_name:
        raise ValueError(f"Field {name!r} is missing a type")

    if type_name in enums:
        kind = ScalarKind.ENUM
    elif type_name in model_names:
        kind = ScalarKind.MODEL
    elif type_name in _BUILTIN_KINDS:
        kind = _BUILTIN_KINDS[type_name]
    else:
        raise ValueError(f"Field {name!r} has unknown type {type_name!r}")

    return FieldMeta(
        name=name,
        type=type_name,
        kind=kind,
        is_array=bool(raw.get("array", False)),
        is_relation=kind is ScalarKind.MODEL or bool(raw.get("relation", False)),
    )
