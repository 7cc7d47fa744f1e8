from __future__ import annotations

import hashlib
import json
from datetime import datetime, timezone
from decimal import Decimal
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

Row = dict[str, Any]
WhereFilter = dict[str, Any]


class UpdatedFilter(BaseModel):
    """Update filters; a single side describes a transition edge."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    before: WhereFilter | None = None
    after: WhereFilter | None = None


class Subscription(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    model: str
    group_key: str
    created: WhereFilter | None = None
    updated: UpdatedFilter | None = None
    deleted: WhereFilter | None = None

    def fingerprint(self) -> str:
        """Stable digest of the group key and filters.

        Logically identical subscriptions produce the same digest in any
        process, whatever the key order of their filter mappings.
        """

        canonical = json.dumps(
            {
                "group_key": self.group_key,
                "created": self.created,
                "updated": self.updated.model_dump() if self.updated is not None else None,
                "deleted": self.deleted,
            },
            sort_keys=True,
            separators=(",", ":"),
            default=_canonical_default,
        )
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]


class RecordCreatedEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["created"] = "created"
    id: str
    transaction_id: int | None = None
    date: datetime
    created: Row


class RowTransition(BaseModel):
    model_config = ConfigDict(frozen=True)

    before: Row
    after: Row


class RecordUpdatedEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["updated"] = "updated"
    id: str
    transaction_id: int | None = None
    date: datetime
    updated: RowTransition


class RecordDeletedEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["deleted"] = "deleted"
    id: str
    transaction_id: int | None = None
    date: datetime
    deleted: Row


RecordEvent = Annotated[
    Union[RecordCreatedEvent, RecordUpdatedEvent, RecordDeletedEvent],
    Field(discriminator="type"),
]


class BeforeAfter(BaseModel):
    model_config = ConfigDict(frozen=True)

    before: Row | None
    after: Row | None


def before_after(event: RecordCreatedEvent | RecordUpdatedEvent | RecordDeletedEvent) -> BeforeAfter:
    if isinstance(event, RecordCreatedEvent):
        return BeforeAfter(before=None, after=event.created)
    if isinstance(event, RecordUpdatedEvent):
        return BeforeAfter(before=event.updated.before, after=event.updated.after)
    if isinstance(event, RecordDeletedEvent):
        return BeforeAfter(before=event.deleted, after=None)
    raise TypeError(f"Unsupported event type: {type(event).__name__}")


def _canonical_default(value: Any) -> Any:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=repr)
    raise TypeError(f"Filter value of type {type(value).__name__} is not serialisable")
