from __future__ import annotations

from datetime import datetime, timezone

import pytest
from pydantic import TypeAdapter, ValidationError

from live_query.models import (
    RecordCreatedEvent,
    RecordDeletedEvent,
    RecordEvent,
    RecordUpdatedEvent,
    RowTransition,
    Subscription,
    before_after,
)
from live_query.naming import consumer_group_name, consumer_name, stream_name

DATE = datetime(2024, 1, 1, tzinfo=timezone.utc)


def test_before_after_for_each_event_type() -> None:
    created = RecordCreatedEvent(id="1-0", date=DATE, created={"id": "a"})
    updated = RecordUpdatedEvent(
        id="2-0",
        date=DATE,
        updated=RowTransition(before={"id": "a", "age": 1}, after={"id": "a", "age": 2}),
    )
    deleted = RecordDeletedEvent(id="3-0", date=DATE, deleted={"id": "a"})

    assert before_after(created).model_dump() == {"before": None, "after": {"id": "a"}}
    assert before_after(updated).model_dump() == {
        "before": {"id": "a", "age": 1},
        "after": {"id": "a", "age": 2},
    }
    assert before_after(deleted).model_dump() == {"before": {"id": "a"}, "after": None}


def test_record_event_union_uses_type_discriminator() -> None:
    adapter = TypeAdapter(RecordEvent)

    event = adapter.validate_python(
        {"type": "deleted", "id": "5-0", "transaction_id": 9, "date": DATE, "deleted": {"id": "a"}}
    )

    assert isinstance(event, RecordDeletedEvent)
    assert event.transaction_id == 9


def test_events_are_immutable() -> None:
    event = RecordCreatedEvent(id="1-0", date=DATE, created={})

    with pytest.raises(ValidationError):
        event.id = "2-0"  # type: ignore[misc]


@pytest.mark.parametrize(
    "document",
    [
        {"model": "User", "group_key": "k", "create": {"age": 1}},
        {"model": "User", "group_key": "k", "updated": {"befor": {"role": "USER"}}},
    ],
)
def test_misspelled_subscription_keys_are_rejected(document: dict[str, object]) -> None:
    with pytest.raises(ValidationError, match="Extra inputs are not permitted"):
        Subscription.model_validate(document)


def test_fingerprint_ignores_filter_key_order() -> None:
    first = Subscription(
        model="User",
        group_key="adults",
        created={"age": {"gte": 18}, "role": "USER"},
        updated={"after": {"age": {"gte": 18}}},
    )
    second = Subscription(
        model="User",
        group_key="adults",
        updated={"after": {"age": {"gte": 18}}},
        created={"role": "USER", "age": {"gte": 18}},
    )

    assert first.fingerprint() == second.fingerprint()
    assert len(first.fingerprint()) == 16


def test_fingerprint_changes_with_filters_and_group_key() -> None:
    base = Subscription(model="User", group_key="k", created={"age": 1})

    assert base.fingerprint() != Subscription(model="User", group_key="k", created={"age": 2}).fingerprint()
    assert base.fingerprint() != Subscription(model="User", group_key="j", created={"age": 1}).fingerprint()
    assert base.fingerprint() != Subscription(model="User", group_key="k", deleted={"age": 1}).fingerprint()


def test_fingerprint_accepts_datetime_literals() -> None:
    subscription = Subscription(model="User", group_key="k", created={"dateTime": {"gt": DATE}})

    assert subscription.fingerprint() == subscription.fingerprint()


def test_broker_names() -> None:
    subscription = Subscription(model="User", group_key="k", created={})

    assert stream_name(namespace="live", model="User") == "live.table.public.User"
    assert consumer_group_name(namespace="live", subscription=subscription) == (
        f"live.table.public.User.{subscription.fingerprint()}"
    )
    assert consumer_name(namespace="live", client_id="worker-1") == "live.worker-1"
