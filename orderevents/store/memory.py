"""In-memory event store."""
from typing import Callable
import time
import structlog
from .base import EventStore
from ..events.models import EventRecord

log = structlog.get_logger()


class InMemoryEventStore(EventStore):
    """In-memory event log keyed by (pk, sk) with TTL expiry applied on read."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._partitions: dict[str, dict[str, EventRecord]] = {}
        self._clock = clock

    async def append(self, record: EventRecord) -> EventRecord:
        """Put the record, replacing any record with the same key."""
        self._partitions.setdefault(record.pk, {})[record.sk] = record
        log.info(
            "event_record.appended",
            pk=record.pk,
            sk=record.sk,
            request_id=record.request_id,
            backend="memory",
        )
        return record

    async def query_by_partition(
        self,
        partition_key: str,
        event_type: str | None = None,
        limit: int | None = None,
    ) -> list[EventRecord]:
        partition = self._partitions.get(partition_key)
        if not partition:
            return []

        self._expire(partition_key, partition)
        prefix = f"{event_type}#" if event_type else ""
        records = [partition[sk] for sk in sorted(partition) if sk.startswith(prefix)]
        return records[:limit] if limit is not None else records

    async def health_check(self) -> bool:
        """In-memory store is always healthy."""
        return True

    def _expire(self, partition_key: str, partition: dict[str, EventRecord]):
        now = self._clock()
        expired = [sk for sk, record in partition.items() if record.is_expired(now)]
        for sk in expired:
            del partition[sk]
        if expired:
            log.debug("event_record.expired", pk=partition_key, count=len(expired))
        if not partition:
            del self._partitions[partition_key]
