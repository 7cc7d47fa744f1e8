from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, ValidationError

# Stream initialisation writes this value; it never carries a change.
PLACEHOLDER_VALUE = "default"

OPERATION_TYPES: dict[str, Literal["created", "updated", "deleted"]] = {
    "c": "created",
    "r": "created",
    "u": "updated",
    "d": "deleted",
}


class EnvelopeError(ValueError):
    """Raised when a stream entry does not hold a valid change envelope."""


class ChangeEnvelope(BaseModel):
    """Debezium-style change record as published by the CDC connector."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    before: dict[str, Any] | None = None
    after: dict[str, Any] | None = None
    op: Literal["c", "r", "u", "d"]
    ts_ms: int
    source: dict[str, Any] = {}

    @property
    def operation(self) -> Literal["created", "updated", "deleted"]:
        return OPERATION_TYPES[self.op]

    @property
    def transaction_id(self) -> int | None:
        tx_id = self.source.get("txId")
        if tx_id is None:
            return None
        try:
            return int(tx_id)
        except (TypeError, ValueError):
            raise EnvelopeError(f"Invalid source.txId {tx_id!r}") from None


def loads_exact(raw: str | bytes) -> Any:
    """Decode JSON keeping every number as its exact decimal text."""

    return json.loads(raw, parse_int=str, parse_float=str)


def entry_value(fields: Mapping[str, Any]) -> str | None:
    """Return the record value of a stream entry.

    The connector writes each change as a single ``key -> value`` pair, the
    key being the serialised row key and the value the serialised envelope.
    """

    for value in fields.values():
        return value
    return None


def parse_envelope(raw: str | bytes) -> ChangeEnvelope | None:
    """Decode one entry value.

    Returns ``None`` for the placeholder value and for tombstones (``null``);
    malformed JSON propagates as ``json.JSONDecodeError``.
    """

    if raw == PLACEHOLDER_VALUE:
        return None

    decoded = loads_exact(raw)
    if decoded is None:
        return None
    if not isinstance(decoded, dict):
        raise EnvelopeError(f"Change envelope must be an object, got {type(decoded).__name__}")

    # Converters running with schemas enabled wrap the record in {schema, payload}.
    if "op" not in decoded and "payload" in decoded:
        decoded = decoded["payload"]
        if decoded is None:
            return None
        if not isinstance(decoded, dict):
            raise EnvelopeError("Change envelope payload must be an object")

    try:
        return ChangeEnvelope.model_validate(decoded)
    except ValidationError as exc:
        raise EnvelopeError(f"Invalid change envelope: {exc}") from exc
