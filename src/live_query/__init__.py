"""Filtered, typed change-event streams over Redis consumer groups."""

from live_query.client import LiveQueryClient
from live_query.compiler import FilterCompileError, FilterCompiler, compile_filter
from live_query.discriminator import EventDiscriminator
from live_query.hydration import HydrationError, UnsupportedFieldTypeError, hydrate_row
from live_query.models import (
    BeforeAfter,
    RecordCreatedEvent,
    RecordDeletedEvent,
    RecordEvent,
    RecordUpdatedEvent,
    Subscription,
    UpdatedFilter,
    before_after,
)
from live_query.protocol import EnvelopeError
from live_query.schema import FieldMeta, ModelSchema, ScalarKind, SchemaDef
from live_query.settings import Settings
from live_query.stream import LiveStream

__all__ = [
    "BeforeAfter",
    "EnvelopeError",
    "EventDiscriminator",
    "FieldMeta",
    "FilterCompileError",
    "FilterCompiler",
    "HydrationError",
    "LiveQueryClient",
    "LiveStream",
    "ModelSchema",
    "RecordCreatedEvent",
    "RecordDeletedEvent",
    "RecordEvent",
    "RecordUpdatedEvent",
    "ScalarKind",
    "SchemaDef",
    "Settings",
    "Subscription",
    "UnsupportedFieldTypeError",
    "UpdatedFilter",
    "before_after",
    "compile_filter",
    "hydrate_row",
]
