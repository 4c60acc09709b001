"""Event log writer: records every published event before it is fanned out."""
from .base import EventStore
from ..events.codec import DEFAULT_RETENTION_SECONDS, decode_event, encode
from ..events.models import EventDomain, EventRecord, TopicMessage


class EventLogWriter:
    """
    Encodes a topic message into an event record and appends it.

    The publisher calls this itself, ahead of the fan-out, so a StorageError
    reaches the caller and the event is published only once it is recorded.
    The record's creation time is the message's publish time, so records of
    one producer sort in publish order within their partition.
    """

    def __init__(
        self,
        store: EventStore,
        domain: EventDomain,
        retention_seconds: int = DEFAULT_RETENTION_SECONDS,
        metrics=None,
    ):
        self.store = store
        self.domain = EventDomain(domain)
        self.retention_seconds = retention_seconds
        self._metrics = metrics

    async def __call__(self, message: TopicMessage) -> EventRecord:
        """
        Raises:
            ValidationError: If the message body is not a valid event of this domain
            StorageError: If the store rejects the write
        """
        event = decode_event(self.domain, message.body)
        event_type = message.event_type or getattr(event, "event_type", None)
        record = encode(
            event,
            event_type,
            message.published_at,
            message_id=message.message_id,
            retention_seconds=self.retention_seconds,
        )
        await self.store.append(record)
        if self._metrics:
            self._metrics.record_record_appended(self.domain.value)
        return record

    def __repr__(self):
        return f"EventLogWriter({self.domain.value!r})"
