"""Order and product workflow: validates domain events and publishes them."""
from enum import Enum
from typing import Any, Callable, Mapping
import threading
import time
import structlog
from .events.codec import coerce_event_type, decode_event, serialize_event
from .events.models import EventDomain, OrderEvent, ProductEvent, TopicMessage
from .routing.topic import DeliveryReport, Topic
from .store.event_log import EventLogWriter

log = structlog.get_logger()


class MonotonicClock:
    """Millisecond wall clock that never returns the same value twice."""

    def __init__(self, source: Callable[[], float] = time.time):
        self._source = source
        self._last = 0
        self._lock = threading.Lock()

    def now_ms(self) -> int:
        with self._lock:
            now = int(self._source() * 1000)
            self._last = now if now > self._last else self._last + 1
            return self._last


class EventPublisher:
    """
    Publishes order and product events to their topics.

    Events are validated before anything is published: an invalid event
    raises ValidationError and reaches no subscriber. An accepted event is
    appended to its domain's event log first; a StorageError from that
    append propagates and nothing is fanned out. After that the call
    returns the delivery report whatever the per-subscriber outcome.
    """

    def __init__(
        self,
        orders_topic: Topic,
        products_topic: Topic,
        clock: MonotonicClock | None = None,
        metrics=None,
        event_logs: Mapping[EventDomain, EventLogWriter] | None = None,
    ):
        self.orders_topic = orders_topic
        self.products_topic = products_topic
        self.event_logs = dict(event_logs or {})
        self.clock = clock or MonotonicClock()
        self._metrics = metrics

    async def publish_order_event(
        self,
        event: OrderEvent | Mapping[str, Any],
        event_type: Enum | str,
    ) -> DeliveryReport:
        """
        Publish an order event.

        Raises:
            ValidationError: Unknown event type or malformed event
            StorageError: The event log append failed
        """
        resolved = coerce_event_type(EventDomain.ORDER, event_type)
        if not isinstance(event, OrderEvent):
            event = decode_event(EventDomain.ORDER, event)
        return await self._publish(self.orders_topic, event, resolved.value)

    async def publish_product_event(self, event: ProductEvent | Mapping[str, Any]) -> DeliveryReport:
        """
        Publish a product event; its type is carried by the event itself.

        Raises:
            ValidationError: Unknown event type or malformed event
            StorageError: The event log append failed
        """
        if not isinstance(event, ProductEvent):
            event = decode_event(EventDomain.PRODUCT, event)
        return await self._publish(self.products_topic, event, event.event_type.value)

    async def _publish(self, topic: Topic, event: OrderEvent | ProductEvent, event_type: str) -> DeliveryReport:
        body = serialize_event(event)
        message = TopicMessage(
            topic=topic.name,
            body=body,
            attributes={"eventType": event_type, "domain": event.domain.value},
            published_at=self.clock.now_ms(),
        )
        event_log = self.event_logs.get(event.domain)
        if event_log is not None:
            await event_log(message)
        log.info(
            "workflow.event_published",
            topic=topic.name,
            message_id=message.message_id,
            event_type=event_type,
            subject_id=event.subject_id,
            request_id=event.request_id,
        )
        if self._metrics:
            self._metrics.record_event_published(topic.name, event_type, len(body))
        return await topic.publish(message)
