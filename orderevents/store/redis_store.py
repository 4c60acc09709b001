"""Redis event store."""
from typing import Callable
import time
import structlog
import orjson
from redis import Redis
from redis.exceptions import RedisError
from .base import EventStore
from ..events.models import EventRecord
from ..errors import StorageError
from ..config import get_settings

log = structlog.get_logger()


class RedisEventStore(EventStore):
    """Redis implementation of the event log.

    Each record is a string key written with EXAT set to the record's ttl,
    so expiry is handled by Redis. A sorted set per partition (all scores 0)
    indexes sort keys for lexicographic range reads; entries whose record
    has expired are pruned when read.
    """

    def __init__(
        self,
        redis_url: str | None = None,
        client: Redis | None = None,
        prefix: str | None = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize Redis event store.

        Args:
            redis_url: Redis connection URL (defaults to settings.REDIS_URL)
            client: Shared Redis client; created lazily from the URL when omitted
            prefix: Key prefix (defaults to settings.REDIS_PREFIX)
        """
        settings = get_settings()
        self.redis_url = redis_url or (str(settings.REDIS_URL) if settings.REDIS_URL else None)
        self.prefix = prefix or settings.REDIS_PREFIX
        self._client = client
        self._owns_client = client is None
        self._clock = clock

    def _get_client(self) -> Redis:
        """Get or create Redis client."""
        if self._client is None:
            self._client = Redis.from_url(
                self.redis_url,
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
            )
        return self._client

    def _record_key(self, pk: str, sk: str) -> str:
        return f"{self.prefix}:events:{pk}:{sk}"

    def _index_key(self, pk: str) -> str:
        return f"{self.prefix}:events:{pk}"

    async def append(self, record: EventRecord) -> EventRecord:
        """
        Put the record and index its sort key.

        Raises:
            StorageError: If Redis rejects the write
        """
        index = self._index_key(record.pk)
        try:
            client = self._get_client()
            pipe = client.pipeline(transaction=True)
            pipe.set(self._record_key(record.pk, record.sk), orjson.dumps(record.to_item()), exat=record.ttl)
            pipe.zadd(index, {record.sk: 0})
            # Index lives as long as its newest record
            pipe.expireat(index, record.ttl, nx=True)
            pipe.expireat(index, record.ttl, gt=True)
            pipe.execute()
        except RedisError as e:
            log.error("redis.append_failed", error=str(e), pk=record.pk, sk=record.sk)
            raise StorageError(f"failed to append event record {record.pk}/{record.sk}: {e}") from e

        log.info(
            "event_record.appended",
            pk=record.pk,
            sk=record.sk,
            request_id=record.request_id,
            backend="redis",
        )
        return record

    async def query_by_partition(
        self,
        partition_key: str,
        event_type: str | None = None,
        limit: int | None = None,
    ) -> list[EventRecord]:
        """
        Read one partition in sort key order.

        Raises:
            StorageError: If Redis cannot be read
        """
        index = self._index_key(partition_key)
        if event_type:
            low, high = f"[{event_type}#", f"[{event_type}#\xff"
        else:
            low, high = "-", "+"

        try:
            client = self._get_client()
            sort_keys = client.zrangebylex(index, low, high)
            if not sort_keys:
                return []
            values = client.mget([self._record_key(partition_key, sk) for sk in sort_keys])

            records = []
            stale = []
            now = self._clock()
            for sk, value in zip(sort_keys, values):
                if value is None:
                    stale.append(sk)
                    continue
                record = EventRecord.model_validate(orjson.loads(value))
                if not record.is_expired(now):
                    records.append(record)

            if stale:
                client.zrem(index, *stale)
                log.debug("event_record.index_pruned", pk=partition_key, count=len(stale))
        except RedisError as e:
            log.error("redis.query_failed", error=str(e), pk=partition_key)
            raise StorageError(f"failed to query partition {partition_key}: {e}") from e

        return records[:limit] if limit is not None else records

    async def health_check(self) -> bool:
        """
        Check Redis connection health.

        Returns:
            True if Redis is accessible, False otherwise
        """
        try:
            return bool(self._get_client().ping())
        except RedisError as e:
            log.warning("redis.health_check_failed", error=str(e), component="event_store")
            return False

    async def close(self):
        """Close Redis connection if this store created it."""
        if self._client is not None and self._owns_client:
            self._client.close()
            self._client = None
