"""Redis durable queue."""
from typing import Callable, Iterable
import asyncio
import time
import uuid
import structlog
import orjson
from redis import Redis
from redis.exceptions import RedisError
from .base import DeadLetterHook, DurableQueue, RetryPolicy
from .models import DeadLetterInfo, MessageState, QueueMessage
from ..config import get_settings

log = structlog.get_logger()

# KEYS[1] ready set
# ARGV[1] now, ARGV[2] visibility timeout, ARGV[3] max messages,
# ARGV[4] message key prefix, ARGV[5..] one receipt per message
RECEIVE_SCRIPT = """
local now = tonumber(ARGV[1])
local ids = redis.call('ZRANGEBYSCORE', KEYS[1], '-inf', now, 'LIMIT', 0, tonumber(ARGV[3]))
local out = {}
for i, id in ipairs(ids) do
    local key = ARGV[4] .. id
    local visible_at = now + tonumber(ARGV[2])
    redis.call('ZADD', KEYS[1], visible_at, id)
    redis.call('HINCRBY', key, 'receive_count', 1)
    redis.call('HSET', key, 'state', 'IN_FLIGHT', 'receipt', ARGV[4 + i], 'visible_at', visible_at)
    out[#out + 1] = redis.call('HGETALL', key)
end
return out
"""

# KEYS[1] ready set, KEYS[2] message hash
# ARGV[1] message id, ARGV[2] receipt
ACK_SCRIPT = """
if redis.call('HGET', KEYS[2], 'state') ~= 'IN_FLIGHT'
    or redis.call('HGET', KEYS[2], 'receipt') ~= ARGV[2] then
    return 0
end
redis.call('DEL', KEYS[2])
redis.call('ZREM', KEYS[1], ARGV[1])
return 1
"""

# KEYS[1] ready set, KEYS[2] message hash,
# KEYS[3] dead-letter ready set (or own dead set), KEYS[4] dead-letter message hash
# ARGV[1] message id, ARGV[2] receipt, ARGV[3] now, ARGV[4] max receive count,
# ARGV[5] retry delay, ARGV[6] error, ARGV[7] '1' when redriving to a DLQ,
# ARGV[8] dead-letter info JSON
NACK_SCRIPT = """
if redis.call('HGET', KEYS[2], 'state') ~= 'IN_FLIGHT'
    or redis.call('HGET', KEYS[2], 'receipt') ~= ARGV[2] then
    return false
end
local now = tonumber(ARGV[3])
local attempt = redis.call('HINCRBY', KEYS[2], 'attempt', 1)
redis.call('HSET', KEYS[2], 'last_error', ARGV[6], 'receipt', '')
if attempt > tonumber(ARGV[4]) then
    redis.call('ZREM', KEYS[1], ARGV[1])
    if ARGV[7] == '1' then
        local fields = redis.call('HGETALL', KEYS[2])
        redis.call('DEL', KEYS[2])
        for i = 1, #fields, 2 do
            redis.call('HSET', KEYS[4], fields[i], fields[i + 1])
        end
        redis.call('HSET', KEYS[4], 'state', 'ENQUEUED', 'attempt', 0, 'receive_count', 0,
                   'last_error', '', 'sent_at', ARGV[3], 'visible_at', ARGV[3], 'dead_letter', ARGV[8])
        redis.call('ZADD', KEYS[3], now, ARGV[1])
    else
        redis.call('HSET', KEYS[2], 'state', 'DEAD_LETTERED')
        redis.call('ZADD', KEYS[3], now, ARGV[1])
    end
    return {'DEAD_LETTERED', attempt}
end
local visible_at = now + tonumber(ARGV[5])
redis.call('HSET', KEYS[2], 'state', 'ENQUEUED', 'visible_at', visible_at)
redis.call('ZADD', KEYS[1], visible_at, ARGV[1])
return {'ENQUEUED', attempt}
"""


class RedisQueue(DurableQueue):
    """Redis implementation of the durable queue.

    Messages live in one hash each; a sorted set scored by the time each
    message becomes visible holds everything receivable. Receive, ack and
    nack (including the move to the dead-letter queue) run as Lua scripts,
    so competing consumers in separate processes never share a message
    inside its visibility window.
    """

    def __init__(
        self,
        name: str,
        visibility_timeout: float = 30.0,
        retry_policy: RetryPolicy | None = None,
        dead_letter_queue: "RedisQueue | None" = None,
        on_dead_letter: Iterable[DeadLetterHook] = (),
        metrics=None,
        redis_url: str | None = None,
        client: Redis | None = None,
        prefix: str | None = None,
        poll_interval: float = 0.5,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize Redis queue.

        Args:
            name: Queue name, part of every key
            dead_letter_queue: Must be a RedisQueue on the same Redis so the redrive stays atomic
            redis_url: Redis connection URL (defaults to settings.REDIS_URL)
            client: Shared Redis client; created lazily from the URL when omitted
            poll_interval: Seconds between polls while waiting for messages
        """
        if dead_letter_queue is not None and not isinstance(dead_letter_queue, RedisQueue):
            raise TypeError("a RedisQueue can only redrive into another RedisQueue")
        super().__init__(name, visibility_timeout, retry_policy, dead_letter_queue, on_dead_letter, metrics)
        settings = get_settings()
        self.redis_url = redis_url or (str(settings.REDIS_URL) if settings.REDIS_URL else None)
        self.prefix = prefix or settings.REDIS_PREFIX
        self.poll_interval = poll_interval
        self._client = client
        self._owns_client = client is None
        self._clock = clock
        self._scripts = None

    def _get_client(self) -> Redis:
        """Get or create Redis client and register the queue scripts."""
        if self._client is None:
            self._client = Redis.from_url(
                self.redis_url,
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
            )
        if self._scripts is None:
            self._scripts = {
                "receive": self._client.register_script(RECEIVE_SCRIPT),
                "ack": self._client.register_script(ACK_SCRIPT),
                "nack": self._client.register_script(NACK_SCRIPT),
            }
        return self._client

    @property
    def ready_key(self) -> str:
        return f"{self.prefix}:queue:{self.name}:ready"

    @property
    def dead_key(self) -> str:
        return f"{self.prefix}:queue:{self.name}:dead"

    @property
    def message_key_prefix(self) -> str:
        return f"{self.prefix}:queue:{self.name}:msg:"

    def message_key(self, message_id: str) -> str:
        return f"{self.message_key_prefix}{message_id}"

    async def send(
        self,
        body: str,
        attributes: dict[str, str] | None = None,
        message_id: str | None = None,
        dead_letter: DeadLetterInfo | None = None,
    ) -> QueueMessage:
        now = self._clock()
        message = QueueMessage(
            message_id=message_id or str(uuid.uuid4()),
            body=body,
            attributes=dict(attributes or {}),
            sent_at=now,
            visible_at=now,
            dead_letter=dead_letter,
        )
        try:
            client = self._get_client()
            pipe = client.pipeline(transaction=True)
            pipe.hset(self.message_key(message.message_id), mapping=self._to_fields(message))
            pipe.zadd(self.ready_key, {message.message_id: now})
            pipe.execute()
        except RedisError as e:
            log.error("redis.send_failed", queue=self.name, message_id=message.message_id, error=str(e))
            raise

        log.info(
            "queue.message_sent",
            queue=self.name,
            message_id=message.message_id,
            event_type=message.event_type,
        )
        if self._metrics:
            self._metrics.record_queue_outcome(self.name, "sent")
        return message

    async def receive(self, max_messages: int = 1, wait_seconds: float = 0.0) -> list[QueueMessage]:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + wait_seconds
        while True:
            received = self._receive_once(max_messages)
            remaining = deadline - loop.time()
            if received or remaining <= 0:
                return received
            await asyncio.sleep(min(self.poll_interval, remaining))

    def _receive_once(self, max_messages: int) -> list[QueueMessage]:
        self._get_client()
        receipts = [str(uuid.uuid4()) for _ in range(max_messages)]
        try:
            rows = self._scripts["receive"](
                keys=[self.ready_key],
                args=[self._clock(), self.visibility_timeout, max_messages, self.message_key_prefix, *receipts],
            )
        except RedisError as e:
            log.error("redis.receive_failed", queue=self.name, error=str(e))
            raise
        return [self._from_fields(_pairs(row)) for row in rows or []]

    async def ack(self, message: QueueMessage) -> bool:
        self._get_client()
        try:
            acked = self._scripts["ack"](
                keys=[self.ready_key, self.message_key(message.message_id)],
                args=[message.message_id, message.receipt or ""],
            )
        except RedisError as e:
            log.error("redis.ack_failed", queue=self.name, message_id=message.message_id, error=str(e))
            raise

        if not acked:
            log.warning("queue.stale_receipt", queue=self.name, message_id=message.message_id, action="ack")
            return False
        log.info(
            "queue.message_acked",
            queue=self.name,
            message_id=message.message_id,
            attempt=message.attempt,
            receive_count=message.receive_count,
        )
        if self._metrics:
            self._metrics.record_queue_outcome(self.name, "acked")
        return True

    async def nack(self, message: QueueMessage, error: str) -> MessageState | None:
        self._get_client()
        dlq = self.dead_letter_queue
        if dlq is not None:
            target_keys = [dlq.ready_key, dlq.message_key(message.message_id)]
        else:
            target_keys = [self.dead_key, self.message_key(message.message_id)]
        attempt_for_delay = message.attempt + 1
        now = self._clock()
        # Only written when this nack exceeds the ceiling, so attempts is the post-increment count
        dead_letter = DeadLetterInfo(
            source_queue=self.name,
            attempts=attempt_for_delay,
            last_error=error,
            dead_lettered_at=now,
        )

        try:
            result = self._scripts["nack"](
                keys=[self.ready_key, self.message_key(message.message_id), *target_keys],
                args=[
                    message.message_id,
                    message.receipt or "",
                    now,
                    self.retry_policy.max_receive_count,
                    self.retry_policy.delay_for(attempt_for_delay),
                    error,
                    "1" if dlq is not None else "0",
                    dead_letter.model_dump_json(by_alias=True),
                ],
            )
        except RedisError as e:
            log.error("redis.nack_failed", queue=self.name, message_id=message.message_id, error=str(e))
            raise

        if not result:
            log.warning("queue.stale_receipt", queue=self.name, message_id=message.message_id, action="nack")
            return None

        state, attempt = MessageState(result[0]), int(result[1])
        if state == MessageState.DEAD_LETTERED:
            if self._metrics:
                self._metrics.record_queue_outcome(self.name, "dead_lettered")
            await self._dead_lettered(message.message_id, attempt, error)
            return state

        log.warning(
            "queue.message_retry_scheduled",
            queue=self.name,
            message_id=message.message_id,
            attempt=attempt,
            max_receive_count=self.retry_policy.max_receive_count,
            delay_seconds=self.retry_policy.delay_for(attempt),
            error=error,
        )
        if self._metrics:
            self._metrics.record_queue_outcome(self.name, "retried")
        return state

    async def depth(self) -> dict[str, int]:
        client = self._get_client()
        now = self._clock()
        visible = client.zcount(self.ready_key, "-inf", now)
        hidden = client.zrangebyscore(self.ready_key, f"({now}", "+inf")
        counts = {"visible": int(visible), "in_flight": 0, "delayed": 0,
                  "dead_lettered": int(client.zcard(self.dead_key))}
        if hidden:
            pipe = client.pipeline(transaction=False)
            for message_id in hidden:
                pipe.hget(self.message_key(message_id), "state")
            for state in pipe.execute():
                if state == MessageState.IN_FLIGHT.value:
                    counts["in_flight"] += 1
                else:
                    counts["delayed"] += 1
        return counts

    async def peek(self, limit: int = 50) -> list[QueueMessage]:
        client = self._get_client()
        ids = client.zrange(self.ready_key, 0, limit - 1)
        if len(ids) < limit:
            ids += client.zrange(self.dead_key, 0, limit - len(ids) - 1)
        if not ids:
            return []
        pipe = client.pipeline(transaction=False)
        for message_id in ids:
            pipe.hgetall(self.message_key(message_id))
        return [self._from_fields(fields) for fields in pipe.execute() if fields]

    async def health_check(self) -> bool:
        try:
            return bool(self._get_client().ping())
        except RedisError as e:
            log.warning("redis.health_check_failed", error=str(e), component="queue", queue=self.name)
            return False

    async def close(self):
        """Close Redis connection if this queue created it."""
        if self._client is not None and self._owns_client:
            self._client.close()
            self._client = None
            self._scripts = None

    @staticmethod
    def _to_fields(message: QueueMessage) -> dict[str, str | int | float]:
        return {
            "message_id": message.message_id,
            "body": message.body,
            "attributes": orjson.dumps(message.attributes).decode(),
            "attempt": message.attempt,
            "receive_count": message.receive_count,
            "state": message.state.value,
            "sent_at": message.sent_at,
            "visible_at": message.visible_at,
            "receipt": "",
            "last_error": "",
            "dead_letter": message.dead_letter.model_dump_json(by_alias=True) if message.dead_letter else "",
        }

    @staticmethod
    def _from_fields(fields: dict[str, str]) -> QueueMessage:
        dead_letter = fields.get("dead_letter")
        return QueueMessage(
            message_id=fields["message_id"],
            body=fields["body"],
            attributes=orjson.loads(fields.get("attributes") or "{}"),
            attempt=int(fields.get("attempt") or 0),
            receive_count=int(fields.get("receive_count") or 0),
            state=MessageState(fields.get("state") or MessageState.ENQUEUED.value),
            sent_at=float(fields["sent_at"]),
            visible_at=float(fields["visible_at"]),
            receipt=fields.get("receipt") or None,
            last_error=fields.get("last_error") or None,
            dead_letter=DeadLetterInfo.model_validate_json(dead_letter) if dead_letter else None,
        )


def _pairs(flat: list[str]) -> dict[str, str]:
    """HGETALL as returned from Lua: [field, value, field, value, ...]."""
    return dict(zip(flat[::2], flat[1::2]))
