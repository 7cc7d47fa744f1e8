from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

from live_query.schema import FieldMeta, ModelSchema, ScalarKind, UnknownFieldError

LOGGER = logging.getLogger(__name__)

Row = Mapping[str, Any]
ValueTest = Callable[[Any], bool]

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_ONE_MS = timedelta(milliseconds=1)

_COMBINATORS = frozenset({"AND", "OR", "NOT"})
_COMPARISON_OPERATORS = frozenset({"equals", "in", "notIn", "lt", "lte", "gt", "gte", "not"})
_STRING_OPERATORS = _COMPARISON_OPERATORS | {"contains", "startsWith", "endsWith", "mode"}
_EQUALITY_OPERATORS = frozenset({"equals", "in", "notIn", "not"})
_ARRAY_OPERATORS = frozenset({"equals", "has", "hasEvery", "hasSome", "isEmpty"})

_SCALAR_OPERATORS: dict[ScalarKind, frozenset[str]] = {
    ScalarKind.STRING: _STRING_OPERATORS,
    ScalarKind.INT: _COMPARISON_OPERATORS,
    ScalarKind.FLOAT: _COMPARISON_OPERATORS,
    ScalarKind.BIGINT: _COMPARISON_OPERATORS,
    ScalarKind.DECIMAL: _COMPARISON_OPERATORS,
    ScalarKind.DATETIME: _COMPARISON_OPERATORS,
    ScalarKind.BOOLEAN: _EQUALITY_OPERATORS,
    ScalarKind.ENUM: _EQUALITY_OPERATORS,
}
_STRING_MODES = ("default", "insensitive")


class FilterCompileError(ValueError):
    """Raised when a structured filter cannot be compiled against a model."""


@dataclass(frozen=True, slots=True)
class Always:
    value: bool

    def __call__(self, row: Row) -> bool:
        return self.value


@dataclass(frozen=True, slots=True)
class Leaf:
    field: str
    test: ValueTest

    def __call__(self, row: Row) -> bool:
        return self.test(row.get(self.field))


@dataclass(frozen=True, slots=True)
class And:
    children: tuple[Predicate, ...]

    def __call__(self, row: Row) -> bool:
        return all(child(row) for child in self.children)


@dataclass(frozen=True, slots=True)
class Or:
    children: tuple[Predicate, ...]

    def __call__(self, row: Row) -> bool:
        return any(child(row) for child in self.children)


@dataclass(frozen=True, slots=True)
class Not:
    child: Predicate

    def __call__(self, row: Row) -> bool:
        return not self.child(row)


Predicate = Always | Leaf | And | Or | Not

MATCH_ALL = Always(True)


def epoch_ms(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return (value - _EPOCH) // _ONE_MS


class FilterCompiler:
    """Compiles structured where-filters for one model into predicate trees.

    Field metadata comes from the model's name index, so compiling many
    filters for the same model never rescans the schema.
    """

    def __init__(self, model: ModelSchema) -> None:
        self._model = model

    @property
    def model(self) -> ModelSchema:
        return self._model

    def compile(self, where: Mapping[str, Any] | None) -> Predicate:
        if where is None:
            return MATCH_ALL
        if not isinstance(where, Mapping):
            raise FilterCompileError(
                f"Filter for model {self._model.name!r} must be a mapping, got {type(where).__name__}"
            )

        children: list[Predicate] = []
        for key, value in where.items():
            if key in _COMBINATORS:
                children.append(self._compile_combinator(key, value))
                continue

            meta = self._resolve_field(key)
            if meta.is_relation:
                LOGGER.debug(
                    "relation_filter_skipped",
                    extra={"model": self._model.name, "field": key},
                )
                continue

            children.append(Leaf(field=key, test=_compile_field(meta, value)))

        if not children:
            return MATCH_ALL
        if len(children) == 1:
            return children[0]
        return And(tuple(children))

    def _compile_combinator(self, key: str, value: Any) -> Predicate:
        nodes = tuple(self.compile(item) for item in _as_node_list(key, value))
        if key == "AND":
            return And(nodes)
        if key == "OR":
            return Or(nodes)
        return Not(And(nodes))

    def _resolve_field(self, name: str) -> FieldMeta:
        try:
            return self._model.field(name)
        except UnknownFieldError as exc:
            raise FilterCompileError(
                f"Unknown field {name!r} in filter for model {self._model.name!r}"
            ) from exc


def compile_filter(model: ModelSchema, where: Mapping[str, Any] | None) -> Predicate:
    return FilterCompiler(model).compile(where)


def _as_node_list(key: str, value: Any) -> list[Any]:
    if isinstance(value, Mapping):
        return [value]
    if isinstance(value, Sequence) and not isinstance(value, (str, bytes)):
        return list(value)
    raise FilterCompileError(f"{key} expects a filter or a list of filters")


def _compile_field(meta: FieldMeta, spec: Any) -> ValueTest:
    if meta.kind in (ScalarKind.BYTES, ScalarKind.JSON):
        raise FilterCompileError(f"Field {meta.name!r} of type {meta.type!r} cannot be filtered")
    if meta.is_array:
        return _compile_array(meta, spec)
    return _compile_scalar(meta, spec, inherited_mode=None)


def _compile_scalar(meta: FieldMeta, spec: Any, *, inherited_mode: str | None) -> ValueTest:
    if not isinstance(spec, Mapping):
        spec = {"equals": spec}

    allowed = _SCALAR_OPERATORS[meta.kind]
    unknown = sorted(set(spec) - allowed)
    if unknown:
        raise FilterCompileError(
            f"Operator(s) {', '.join(unknown)} not supported for field {meta.name!r} ({meta.type})"
        )

    mode = spec.get("mode", inherited_mode)
    if mode is not None and mode not in _STRING_MODES:
        raise FilterCompileError(f"Unsupported string mode {mode!r} for field {meta.name!r}")
    insensitive = mode == "insensitive"

    tests: list[ValueTest] = []
    for operator, operand in spec.items():
        if operator == "mode":
            continue
        if operator == "not":
            positive = _compile_scalar(meta, operand, inherited_mode=mode)
            tests.append(_negate(positive))
            continue
        tests.append(_scalar_operator(meta, operator, operand, insensitive=insensitive))

    return _all_of(tests)


def _scalar_operator(meta: FieldMeta, operator: str, operand: Any, *, insensitive: bool) -> ValueTest:
    normalize = _value_normalizer(meta.kind)

    if operator == "equals":
        if operand is None:
            return _is_null
        expected = _literal(meta, operand)
        if insensitive:
            folded = expected.lower()
            return lambda value: value is not None and value.lower() == folded
        return lambda value: value is not None and normalize(value) == expected

    if operator in ("in", "notIn"):
        members = frozenset(_literal(meta, item) for item in _literal_list(meta, operator, operand))
        if operator == "in":
            return lambda value: value is not None and normalize(value) in members
        return lambda value: value is None or normalize(value) not in members

    if operator in ("contains", "startsWith", "endsWith"):
        needle = _literal(meta, operand)
        if insensitive:
            needle = needle.lower()

        def _fold(value: str) -> str:
            return value.lower() if insensitive else value

        if operator == "contains":
            return lambda value: value is not None and needle in _fold(value)
        if operator == "startsWith":
            return lambda value: value is not None and _fold(value).startswith(needle)
        return lambda value: value is not None and _fold(value).endswith(needle)

    bound = _literal(meta, operand)
    if operator == "lt":
        return lambda value: value is not None and normalize(value) < bound
    if operator == "lte":
        return lambda value: value is not None and normalize(value) <= bound
    if operator == "gt":
        return lambda value: value is not None and normalize(value) > bound
    if operator == "gte":
        return lambda value: value is not None and normalize(value) >= bound

    raise FilterCompileError(f"Unsupported operator {operator!r} for field {meta.name!r}")


def _compile_array(meta: FieldMeta, spec: Any) -> ValueTest:
    if not isinstance(spec, Mapping):
        spec = {"equals": spec}

    unknown = sorted(set(spec) - _ARRAY_OPERATORS)
    if unknown:
        raise FilterCompileError(
            f"Operator(s) {', '.join(unknown)} not supported for list field {meta.name!r} ({meta.type}[])"
        )

    normalize = _value_normalizer(meta.kind)

    def _items(value: Any) -> list[Any]:
        return [normalize(item) for item in (value or ())]

    if "isEmpty" in spec:
        expect_empty = spec["isEmpty"]
        if not isinstance(expect_empty, bool):
            raise FilterCompileError(f"isEmpty for field {meta.name!r} must be a boolean")
        return lambda value: (len(value or ()) == 0) is expect_empty

    tests: list[ValueTest] = []
    if "equals" in spec:
        expected = [_literal(meta, item) for item in _literal_list(meta, "equals", spec["equals"])]
        tests.append(lambda value: _items(value) == expected)
    if "has" in spec:
        needle = _literal(meta, spec["has"])
        tests.append(lambda value: needle in set(_items(value)))
    if "hasEvery" in spec:
        every = {_literal(meta, item) for item in _literal_list(meta, "hasEvery", spec["hasEvery"])}
        tests.append(lambda value: set(_items(value)).issuperset(every))
    if "hasSome" in spec:
        some = {_literal(meta, item) for item in _literal_list(meta, "hasSome", spec["hasSome"])}
        tests.append(lambda value: not set(_items(value)).isdisjoint(some))

    return _all_of(tests)


def _all_of(tests: list[ValueTest]) -> ValueTest:
    if not tests:
        return lambda value: True
    if len(tests) == 1:
        return tests[0]
    bound = tuple(tests)
    return lambda value: all(test(value) for test in bound)


def _negate(test: ValueTest) -> ValueTest:
    return lambda value: not test(value)


def _is_null(value: Any) -> bool:
    return value is None


def _literal_list(meta: FieldMeta, operator: str, operand: Any) -> list[Any]:
    if isinstance(operand, (str, bytes)) or not isinstance(operand, Sequence):
        raise FilterCompileError(f"{operator} for field {meta.name!r} expects a list")
    return list(operand)


def _value_normalizer(kind: ScalarKind) -> Callable[[Any], Any]:
    if kind is ScalarKind.DATETIME:
        return _datetime_ms
    return _identity


def _identity(value: Any) -> Any:
    return value


def _datetime_ms(value: Any) -> int:
    if isinstance(value, datetime):
        return epoch_ms(value)
    if isinstance(value, str):
        return epoch_ms(datetime.fromisoformat(value))
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    raise TypeError(f"Cannot compare {type(value).__name__} as a DateTime")


def _literal(meta: FieldMeta, operand: Any) -> Any:
    """Normalise a filter literal to the representation row values compare against."""

    kind = meta.kind
    try:
        if kind in (ScalarKind.STRING, ScalarKind.ENUM):
            if isinstance(operand, str):
                return operand
        elif kind is ScalarKind.BOOLEAN:
            if isinstance(operand, bool):
                return operand
        elif kind in (ScalarKind.INT, ScalarKind.BIGINT):
            if isinstance(operand, bool):
                pass
            elif isinstance(operand, int):
                return operand
            elif isinstance(operand, str):
                return int(operand)
            elif kind is ScalarKind.INT and isinstance(operand, float):
                return operand
        elif kind is ScalarKind.FLOAT:
            if isinstance(operand, (int, float)) and not isinstance(operand, bool):
                return operand
            if isinstance(operand, str):
                return float(operand)
        elif kind is ScalarKind.DECIMAL:
            if isinstance(operand, Decimal):
                return operand
            if isinstance(operand, (int, float, str)) and not isinstance(operand, bool):
                return Decimal(str(operand))
        elif kind is ScalarKind.DATETIME:
            if isinstance(operand, (datetime, str)):
                return _datetime_ms(operand)
    except (ValueError, InvalidOperation) as exc:
        raise FilterCompileError(
            f"Invalid {meta.type} literal {operand!r} for field {meta.name!r}"
        ) from exc

    raise FilterCompileError(
        f"Invalid {meta.type} literal {operand!r} for field {meta.name!r}"
    )
