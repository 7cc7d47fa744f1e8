from __future__ import annotations

import json
import math
from collections.abc import Mapping
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

from live_query.schema import FieldMeta, ModelSchema, ScalarKind

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
MICROSECONDS_PER_MILLISECOND = 1000


class HydrationError(ValueError):
    """Raised when a wire value cannot be coerced to its field type."""


class UnsupportedFieldTypeError(TypeError):
    """Raised when a row carries a field type the engine cannot hydrate."""


def hydrate_row(model: ModelSchema, row: Mapping[str, Any]) -> dict[str, Any]:
    """Convert a wire row (string-encoded values) into native Python values.

    Returns a new mapping; ``row`` is left untouched. Relation fields are
    skipped, absent or null-like values become ``None`` without coercion and
    list fields are coerced element by element. Keys the model does not know
    about are carried through as received.
    """

    hydrated = dict(row)
    for meta in model.scalar_fields():
        value = hydrated.get(meta.name)
        if _is_null_like(value):
            hydrated[meta.name] = None
            continue

        if meta.is_array:
            if not isinstance(value, list):
                raise HydrationError(
                    f"Field {meta.name!r} ({meta.type}[]) expects a list, got {type(value).__name__}"
                )
            hydrated[meta.name] = [
                None if _is_null_like(item) else coerce_value(meta, item) for item in value
            ]
        else:
            hydrated[meta.name] = coerce_value(meta, value)

    return hydrated


def coerce_value(meta: FieldMeta, value: Any) -> Any:
    kind = meta.kind
    if kind is ScalarKind.BYTES:
        raise UnsupportedFieldTypeError(
            f"Field {meta.name!r} has an unsupported type ({meta.type!r})"
        )
    if kind is ScalarKind.BOOLEAN:
        return value is True or value == "true"

    try:
        if kind in (ScalarKind.INT, ScalarKind.BIGINT):
            return value if isinstance(value, int) and not isinstance(value, bool) else int(value)
        if kind is ScalarKind.FLOAT:
            return float(value)
        if kind is ScalarKind.DECIMAL:
            return value if isinstance(value, Decimal) else Decimal(str(value))
        if kind is ScalarKind.DATETIME:
            return _to_datetime(value)
        if kind is ScalarKind.JSON:
            return json.loads(value, parse_float=Decimal) if isinstance(value, str) else value
    except (TypeError, ValueError, InvalidOperation) as exc:
        raise HydrationError(
            f"Field {meta.name!r} ({meta.type}) has invalid value {value!r}"
        ) from exc

    # String and enum values are carried as received.
    return value


def from_epoch_ms(ms: int) -> datetime:
    return _EPOCH + timedelta(milliseconds=ms)


def _to_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and not _looks_integral(value):
        # Zoned timestamps arrive as ISO-8601 text rather than epoch micros.
        parsed = datetime.fromisoformat(value)
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)

    micros = int(value)
    millis = abs(micros) // MICROSECONDS_PER_MILLISECOND
    return from_epoch_ms(-millis if micros < 0 else millis)


def _looks_integral(value: str) -> bool:
    stripped = value.strip()
    return stripped.lstrip("+-").isdigit()


def _is_null_like(value: Any) -> bool:
    return value is None or (isinstance(value, float) and math.isnan(value))
