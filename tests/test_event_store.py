"""Tests for event store backends."""
import pytest
import orjson
from unittest.mock import MagicMock
from redis.exceptions import ConnectionError as RedisConnectionError
from orderevents.errors import StorageError
from orderevents.events.models import EventDomain, EventRecord, TopicMessage
from orderevents.store.event_log import EventLogWriter
from orderevents.store.memory import InMemoryEventStore
from orderevents.store.redis_store import RedisEventStore


def make_record(pk="#order_O1", event_type="CREATED", created_at=1_000_000, ttl=None, request_id="R1"):
    return EventRecord(
        pk=pk,
        sk=f"{event_type}#{created_at}",
        ttl=ttl if ttl is not None else created_at // 1000 + 300,
        email="a@x.com",
        created_at=created_at,
        request_id=request_id,
        event_type=event_type,
        info={"orderId": pk.split("_", 1)[1], "productCodes": [], "messageId": None},
    )


@pytest.mark.asyncio
async def test_memory_store_append_and_query_ordered(clock):
    """Test records come back ascending by sort key."""
    store = InMemoryEventStore(clock=clock)
    await store.append(make_record(event_type="DELETED", created_at=1_000_500))
    await store.append(make_record(event_type="CREATED", created_at=1_000_200))
    await store.append(make_record(event_type="CREATED", created_at=1_000_100))

    records = await store.query_by_partition("#order_O1")

    assert [r.sk for r in records] == ["CREATED#1000100", "CREATED#1000200", "DELETED#1000500"]


@pytest.mark.asyncio
async def test_memory_store_query_by_event_type(clock):
    """Test per-type lookup within a partition."""
    store = InMemoryEventStore(clock=clock)
    await store.append(make_record(event_type="CREATED", created_at=1_000_100))
    await store.append(make_record(event_type="DELETED", created_at=1_000_200))
    await store.append(make_record(pk="#order_O2", event_type="CREATED", created_at=1_000_300))

    records = await store.query_by_partition("#order_O1", event_type="DELETED")

    assert [r.sk for r in records] == ["DELETED#1000200"]


@pytest.mark.asyncio
async def test_memory_store_limit_and_missing_partition(clock):
    store = InMemoryEventStore(clock=clock)
    for i in range(3):
        await store.append(make_record(created_at=1_000_000 + i))

    assert len(await store.query_by_partition("#order_O1", limit=2)) == 2
    assert await store.query_by_partition("#order_missing") == []


@pytest.mark.asyncio
async def test_memory_store_same_key_overwrites(clock):
    """Test a put with an existing key replaces the record."""
    store = InMemoryEventStore(clock=clock)
    await store.append(make_record(request_id="first"))
    await store.append(make_record(request_id="second"))

    records = await store.query_by_partition("#order_O1")

    assert len(records) == 1
    assert records[0].request_id == "second"


@pytest.mark.asyncio
async def test_memory_store_hides_expired_records(clock):
    """Test records disappear once their ttl passes."""
    store = InMemoryEventStore(clock=clock)
    await store.append(make_record(created_at=1_000_000))  # ttl 1300

    clock.now = 1299
    assert len(await store.query_by_partition("#order_O1")) == 1

    clock.now = 1300
    assert await store.query_by_partition("#order_O1") == []


@pytest.mark.asyncio
async def test_memory_store_health_check():
    assert await InMemoryEventStore().health_check() is True


@pytest.mark.asyncio
async def test_redis_store_append(clock):
    """Test append writes the record with native expiry and indexes its sort key."""
    client = MagicMock()
    pipe = client.pipeline.return_value
    store = RedisEventStore(client=client, prefix="test", clock=clock)
    record = make_record()

    await store.append(record)

    set_args, set_kwargs = pipe.set.call_args
    assert set_args[0] == "test:events:#order_O1:CREATED#1000000"
    assert orjson.loads(set_args[1]) == record.to_item()
    assert set_kwargs["exat"] == 1300
    pipe.zadd.assert_called_once_with("test:events:#order_O1", {"CREATED#1000000": 0})
    pipe.execute.assert_called_once()


@pytest.mark.asyncio
async def test_redis_store_query(clock):
    """Test query reads the index in order and prunes entries whose record expired."""
    client = MagicMock()
    first = make_record(created_at=1_000_100)
    second = make_record(created_at=1_000_200)
    client.zrangebylex.return_value = [first.sk, "CREATED#999", second.sk]
    client.mget.return_value = [
        orjson.dumps(first.to_item()).decode(),
        None,
        orjson.dumps(second.to_item()).decode(),
    ]
    store = RedisEventStore(client=client, prefix="test", clock=clock)

    records = await store.query_by_partition("#order_O1", event_type="CREATED")

    assert records == [first, second]
    client.zrangebylex.assert_called_once_with(
        "test:events:#order_O1", "[CREATED#", "[CREATED#\xff"
    )
    client.zrem.assert_called_once_with("test:events:#order_O1", "CREATED#999")


@pytest.mark.asyncio
async def test_redis_store_query_empty_partition(clock):
    client = MagicMock()
    client.zrangebylex.return_value = []
    store = RedisEventStore(client=client, clock=clock)

    assert await store.query_by_partition("#order_O1") == []
    client.mget.assert_not_called()


@pytest.mark.asyncio
async def test_redis_store_append_failure_raises_storage_error(clock):
    """Test Redis failures surface as StorageError chained to the Redis error."""
    client = MagicMock()
    client.pipeline.return_value.execute.side_effect = RedisConnectionError("Connection refused")
    store = RedisEventStore(client=client, clock=clock)

    with pytest.raises(StorageError) as exc_info:
        await store.append(make_record())

    assert isinstance(exc_info.value.__cause__, RedisConnectionError)


@pytest.mark.asyncio
async def test_redis_store_health_check():
    client = MagicMock()
    client.ping.return_value = True
    assert await RedisEventStore(client=client).health_check() is True

    client.ping.side_effect = RedisConnectionError("Connection refused")
    assert await RedisEventStore(client=client).health_check() is False


@pytest.mark.asyncio
async def test_event_log_writer_appends_record(order_payload, clock):
    """Test the writer keys the record by publish time and keeps the message id."""
    store = InMemoryEventStore(clock=clock)
    metrics = MagicMock()
    writer = EventLogWriter(store, EventDomain.ORDER, metrics=metrics)
    message = TopicMessage(
        message_id="m-1",
        topic="order-events",
        body=orjson.dumps(order_payload).decode(),
        attributes={"eventType": "CREATED", "domain": "order"},
        published_at=1_000_000,
    )

    record = await writer(message)

    assert record.sk == "CREATED#1000000"
    assert record.info["messageId"] == "m-1"
    assert await store.query_by_partition("#order_O1") == [record]
    metrics.record_record_appended.assert_called_once_with("order")


@pytest.mark.asyncio
async def test_event_log_writer_uses_product_event_type(product_payload, clock):
    store = InMemoryEventStore(clock=clock)
    writer = EventLogWriter(store, "product")
    message = TopicMessage(
        topic="product-events",
        body=orjson.dumps(product_payload).decode(),
        published_at=1_000_000,
    )

    record = await writer(message)

    assert record.pk == "#product_P1"
    assert record.event_type == "PRODUCT_CREATED"


@pytest.mark.asyncio
async def test_event_log_writer_propagates_storage_errors(order_payload):
    client = MagicMock()
    client.pipeline.return_value.execute.side_effect = RedisConnectionError("Connection refused")
    writer = EventLogWriter(RedisEventStore(client=client), EventDomain.ORDER)
    message = TopicMessage(
        topic="order-events",
        body=orjson.dumps(order_payload).decode(),
        attributes={"eventType": "CREATED"},
        published_at=1_000_000,
    )

    with pytest.raises(StorageError):
        await writer(message)
