"""Domain events and the event log record codec."""

from .codec import decode_event, encode, partition_key, serialize_event, sort_key
from .models import (
    EventDomain,
    EventRecord,
    OrderEvent,
    OrderEventType,
    ProductEvent,
    ProductEventType,
    TopicMessage,
)

__all__ = [
    "decode_event",
    "encode",
    "partition_key",
    "serialize_event",
    "sort_key",
    "EventDomain",
    "EventRecord",
    "OrderEvent",
    "OrderEventType",
    "ProductEvent",
    "ProductEventType",
    "TopicMessage",
]
