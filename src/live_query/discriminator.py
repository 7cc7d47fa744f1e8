from __future__ import annotations

from live_query.compiler import FilterCompiler, Predicate
from live_query.models import (
    RecordCreatedEvent,
    RecordDeletedEvent,
    RecordUpdatedEvent,
    Subscription,
)
from live_query.schema import ModelSchema


class EventDiscriminator:
    """Decides whether a change event belongs to a subscription.

    Update filters with only one side describe a transition: ``before``
    alone matches rows leaving that state, ``after`` alone matches rows
    entering it. With both sides, each snapshot must satisfy its filter.
    """

    def __init__(self, *, model: ModelSchema, subscription: Subscription) -> None:
        compiler = FilterCompiler(model)
        self._subscription = subscription
        self._created: Predicate | None = None
        self._deleted: Predicate | None = None
        self._updated_before: Predicate | None = None
        self._updated_after: Predicate | None = None

        if subscription.created is not None:
            self._created = compiler.compile(subscription.created)
        if subscription.deleted is not None:
            self._deleted = compiler.compile(subscription.deleted)
        if subscription.updated is not None:
            if subscription.updated.before is not None:
                self._updated_before = compiler.compile(subscription.updated.before)
            if subscription.updated.after is not None:
                self._updated_after = compiler.compile(subscription.updated.after)

    def matches(self, event: RecordCreatedEvent | RecordUpdatedEvent | RecordDeletedEvent) -> bool:
        if isinstance(event, RecordCreatedEvent):
            return self._created is not None and self._created(event.created)

        if isinstance(event, RecordDeletedEvent):
            return self._deleted is not None and self._deleted(event.deleted)

        if isinstance(event, RecordUpdatedEvent):
            if self._subscription.updated is None:
                return False
            return self._matches_update(event)

        return False

    def _matches_update(self, event: RecordUpdatedEvent) -> bool:
        before_row = event.updated.before
        after_row = event.updated.after
        before = self._updated_before
        after = self._updated_after

        if before is not None and after is not None:
            return before(before_row) and after(after_row)
        if before is not None:
            return before(before_row) and not before(after_row)
        if after is not None:
            return after(after_row) and not after(before_row)
        return True
