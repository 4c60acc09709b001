"""Tests for the in-memory durable queue."""
import asyncio
import pytest
from unittest.mock import AsyncMock, MagicMock
from orderevents.queue.base import RetryPolicy
from orderevents.queue.memory import InMemoryQueue
from orderevents.queue.models import MessageState


@pytest.fixture
def queues(clock):
    dlq = InMemoryQueue("order-events-dlq", clock=clock)
    queue = InMemoryQueue(
        "order-events",
        visibility_timeout=30,
        retry_policy=RetryPolicy(max_receive_count=3, backoff_seconds=5),
        dead_letter_queue=dlq,
        clock=clock,
    )
    return queue, dlq


@pytest.mark.asyncio
async def test_send_receive_ack(queues):
    """Test the happy path removes the message."""
    queue, _ = queues
    await queue.send('{"orderId": "O1"}', attributes={"eventType": "CREATED"})

    [message] = await queue.receive()

    assert message.state == MessageState.IN_FLIGHT
    assert message.receive_count == 1
    assert message.attempt == 0
    assert await queue.ack(message) is True
    assert len(queue) == 0


@pytest.mark.asyncio
async def test_in_flight_message_hidden_from_other_receivers(queues):
    """Test competing consumers never receive the same message in one visibility window."""
    queue, _ = queues
    await queue.send("body")

    first = await queue.receive()
    second = await queue.receive()

    assert len(first) == 1
    assert second == []


@pytest.mark.asyncio
async def test_receive_respects_max_messages(queues):
    queue, _ = queues
    for i in range(5):
        await queue.send(f"body-{i}")

    batch = await queue.receive(max_messages=3)

    assert [m.body for m in batch] == ["body-0", "body-1", "body-2"]


@pytest.mark.asyncio
async def test_visibility_timeout_redelivers_without_counting_failure(queues, clock):
    """Test an expired visibility window redelivers but does not count as a failed attempt."""
    queue, _ = queues
    await queue.send("body")
    [first] = await queue.receive()

    clock.advance(31)
    [second] = await queue.receive()

    assert second.message_id == first.message_id
    assert second.attempt == 0
    assert second.receive_count == 2
    assert second.receipt != first.receipt
    # The first receiver's receipt no longer settles the message
    assert await queue.ack(first) is False
    assert await queue.ack(second) is True


@pytest.mark.asyncio
async def test_nack_schedules_retry_after_backoff(queues, clock):
    queue, _ = queues
    await queue.send("body")
    [message] = await queue.receive()

    assert await queue.nack(message, "smtp down") == MessageState.ENQUEUED
    assert await queue.receive() == []

    clock.advance(5)
    [retried] = await queue.receive()

    assert retried.attempt == 1
    assert retried.last_error == "smtp down"


@pytest.mark.asyncio
async def test_nack_with_stale_receipt_is_ignored(queues):
    queue, _ = queues
    await queue.send("body")
    [message] = await queue.receive()
    await queue.ack(message)

    assert await queue.nack(message, "late failure") is None


@pytest.mark.asyncio
async def test_message_dead_lettered_after_retry_ceiling(queues, clock):
    """Test the fourth failure moves the message to the dead-letter queue verbatim."""
    queue, dlq = queues
    body = '{"orderId": "O1", "productCodes": ["P1"]}'
    sent = await queue.send(body, attributes={"eventType": "CREATED"})
    hook = AsyncMock()
    queue.add_dead_letter_hook(hook)

    outcomes = []
    for _ in range(4):
        [message] = await queue.receive()
        outcomes.append(await queue.nack(message, "boom"))
        clock.advance(5)

    assert outcomes == [MessageState.ENQUEUED] * 3 + [MessageState.DEAD_LETTERED]
    assert len(queue) == 0
    assert await queue.receive() == []

    [dead] = await dlq.peek()
    assert dead.message_id == sent.message_id
    assert dead.body == body
    assert dead.attributes == {"eventType": "CREATED"}
    assert dead.dead_letter.source_queue == "order-events"
    assert dead.dead_letter.attempts == 4
    assert dead.dead_letter.last_error == "boom"

    hook.assert_awaited_once()
    event = hook.await_args.args[0]
    assert event.attempts == 4
    assert event.dead_letter_queue == "order-events-dlq"


@pytest.mark.asyncio
async def test_dead_letter_hook_failure_does_not_break_redrive(queues):
    queue, dlq = queues
    queue.retry_policy = RetryPolicy(max_receive_count=1, backoff_seconds=0)
    queue.add_dead_letter_hook(AsyncMock(side_effect=RuntimeError("pager offline")))
    await queue.send("body")

    for _ in range(2):
        [message] = await queue.receive()
        await queue.nack(message, "boom")

    assert len(dlq) == 1


@pytest.mark.asyncio
async def test_dead_lettered_in_place_without_dlq(clock):
    """Test a queue without a dead-letter queue parks the message instead of dropping it."""
    queue = InMemoryQueue(
        "standalone",
        retry_policy=RetryPolicy(max_receive_count=1, backoff_seconds=0),
        clock=clock,
    )
    await queue.send("body")

    for _ in range(2):
        [message] = await queue.receive()
        state = await queue.nack(message, "boom")

    assert state == MessageState.DEAD_LETTERED
    assert await queue.receive() == []
    [parked] = await queue.peek()
    assert parked.state == MessageState.DEAD_LETTERED
    assert (await queue.depth())["dead_lettered"] == 1


def test_retry_policy_backoff():
    fixed = RetryPolicy(backoff_seconds=5)
    exponential = RetryPolicy(backoff_seconds=2, exponential=True, max_backoff_seconds=10)

    assert [fixed.delay_for(a) for a in (1, 2, 3)] == [5, 5, 5]
    assert [exponential.delay_for(a) for a in (1, 2, 3, 4)] == [2, 4, 8, 10]
    assert fixed.exhausted(3) is False
    assert fixed.exhausted(4) is True


@pytest.mark.asyncio
async def test_depth_counts(queues, clock):
    queue, _ = queues
    for i in range(3):
        await queue.send(f"body-{i}")
    [in_flight] = await queue.receive()
    [failed] = await queue.receive()
    await queue.nack(failed, "boom")

    assert await queue.depth() == {"visible": 1, "in_flight": 1, "delayed": 1, "dead_lettered": 0}


@pytest.mark.asyncio
async def test_receive_long_poll_wakes_on_send():
    """Test a waiting receiver gets a message sent while it waits."""
    queue = InMemoryQueue("order-events")

    async def send_later():
        await asyncio.sleep(0.05)
        await queue.send("late body")

    sender = asyncio.create_task(send_later())
    messages = await queue.receive(wait_seconds=2)
    await sender

    assert [m.body for m in messages] == ["late body"]


@pytest.mark.asyncio
async def test_received_copies_do_not_alias_queue_state(queues):
    queue, _ = queues
    await queue.send("body", attributes={"eventType": "CREATED"})
    [message] = await queue.receive()

    message.attributes["eventType"] = "DELETED"

    [stored] = await queue.peek()
    assert stored.attributes["eventType"] == "CREATED"


@pytest.mark.asyncio
async def test_queue_records_metrics(clock):
    metrics = MagicMock()
    queue = InMemoryQueue("order-events", metrics=metrics, clock=clock)
    await queue.send("body")
    [message] = await queue.receive()
    await queue.ack(message)

    metrics.record_queue_outcome.assert_any_call("order-events", "sent")
    metrics.record_queue_outcome.assert_any_call("order-events", "acked")
