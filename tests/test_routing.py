"""Tests for topic fan-out and subscription filtering."""
import pytest
from pydantic import ValidationError as PydanticValidationError
from unittest.mock import MagicMock
from orderevents.events.models import TopicMessage
from orderevents.queue.memory import InMemoryQueue
from orderevents.routing.channels import HandlerChannel, QueueChannel
from orderevents.routing.policy import FilterPolicy
from orderevents.routing.topic import Topic


def make_message(event_type="CREATED", body='{"orderId": "O1"}', published_at=1000, message_id=None):
    kwargs = {"message_id": message_id} if message_id else {}
    return TopicMessage(
        topic="order-events",
        body=body,
        attributes={"eventType": event_type, "domain": "order"},
        published_at=published_at,
        **kwargs,
    )


class Recorder:
    """Handler that records every message it receives."""

    def __init__(self):
        self.messages = []

    async def __call__(self, message):
        self.messages.append(message)


async def failing_handler(message):
    raise RuntimeError("subscriber down")


def test_filter_policy_matches_allow_list():
    policy = FilterPolicy.event_types("CREATED")

    assert policy.matches({"eventType": "CREATED"}) is True
    assert policy.matches({"eventType": "DELETED"}) is False
    assert policy.matches({}) is False


def test_filter_policy_requires_every_attribute():
    """Test attributes are ANDed across the policy."""
    policy = FilterPolicy(allowlists={
        "eventType": frozenset({"CREATED", "DELETED"}),
        "domain": frozenset({"order"}),
    })

    assert policy.matches({"eventType": "DELETED", "domain": "order"}) is True
    assert policy.matches({"eventType": "DELETED", "domain": "product"}) is False
    assert policy.matches({"eventType": "DELETED"}) is False


def test_filter_policy_rejects_empty_allow_list():
    with pytest.raises(PydanticValidationError):
        FilterPolicy(allowlists={})

    with pytest.raises(PydanticValidationError):
        FilterPolicy(allowlists={"eventType": frozenset()})


@pytest.mark.asyncio
async def test_topic_fans_out_to_every_subscriber():
    """Test each subscriber receives the same message."""
    topic = Topic("order-events")
    first, second = Recorder(), Recorder()
    topic.subscribe("first", HandlerChannel(first))
    topic.subscribe("second", HandlerChannel(second))
    message = make_message()

    report = await topic.publish(message)

    assert report.delivered == ["first", "second"]
    assert first.messages == [message]
    assert second.messages == [message]


@pytest.mark.asyncio
async def test_topic_failure_is_isolated():
    """Test a failing subscriber neither blocks others nor raises to the publisher."""
    topic = Topic("order-events")
    healthy = Recorder()
    topic.subscribe("broken", HandlerChannel(failing_handler))
    topic.subscribe("healthy", HandlerChannel(healthy))

    report = await topic.publish(make_message())

    assert report.failed == ["broken"]
    assert report.delivered == ["healthy"]
    assert "subscriber down" in report.results[0].error
    assert len(healthy.messages) == 1


@pytest.mark.asyncio
async def test_topic_rejects_duplicate_subscription():
    topic = Topic("order-events")
    topic.subscribe("billing", HandlerChannel(Recorder()))

    with pytest.raises(ValueError):
        topic.subscribe("billing", HandlerChannel(Recorder()))


@pytest.mark.asyncio
@pytest.mark.parametrize("event_type,expected", [("CREATED", 1), ("DELETED", 0), ("UPDATED", 0)])
async def test_billing_subscription_only_receives_created(event_type, expected):
    """Test the billing filter drops everything except CREATED."""
    topic = Topic("order-events")
    billing = InMemoryQueue("order-billing")
    everything = Recorder()
    topic.subscribe("billing", QueueChannel(billing), FilterPolicy.event_types("CREATED"))
    topic.subscribe("event-log", HandlerChannel(everything))

    report = await topic.publish(make_message(event_type))

    assert len(billing) == expected
    assert len(everything.messages) == 1
    if expected == 0:
        assert report.filtered == ["billing"]


@pytest.mark.asyncio
async def test_queue_channel_keeps_body_and_attributes():
    """Test the queued copy keeps the message id, body and routing attributes."""
    queue = InMemoryQueue("order-events")
    topic = Topic("order-events")
    topic.subscribe("emails", QueueChannel(queue))
    message = make_message(published_at=4242, message_id="m-1")

    await topic.publish(message)

    [queued] = await queue.peek()
    assert queued.message_id == "m-1"
    assert queued.body == message.body
    assert queued.attributes == {
        "eventType": "CREATED",
        "domain": "order",
        "topic": "order-events",
        "publishedAt": "4242",
    }


@pytest.mark.asyncio
async def test_subscriber_sees_messages_in_publish_order():
    topic = Topic("order-events")
    recorder = Recorder()
    topic.subscribe("log", HandlerChannel(recorder))

    for i in range(5):
        await topic.publish(make_message(published_at=1000 + i))

    assert [m.published_at for m in recorder.messages] == [1000, 1001, 1002, 1003, 1004]


@pytest.mark.asyncio
async def test_topic_records_delivery_metrics():
    metrics = MagicMock()
    topic = Topic("order-events", metrics=metrics)
    topic.subscribe("billing", HandlerChannel(Recorder()), FilterPolicy.event_types("CREATED"))
    topic.subscribe("broken", HandlerChannel(failing_handler))

    await topic.publish(make_message("DELETED"))

    metrics.record_delivery.assert_any_call("order-events", "billing", "filtered")
    metrics.record_delivery.assert_any_call("order-events", "broken", "failed")
