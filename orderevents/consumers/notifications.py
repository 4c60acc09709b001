"""Order notification consumer: emails the customer for every order event."""
from abc import ABC, abstractmethod
import structlog
from .base import QueueConsumer
from ..events.codec import coerce_event_type, decode_event
from ..events.models import EventDomain, OrderEvent, OrderEventType
from ..queue.base import DurableQueue
from ..queue.models import QueueMessage

log = structlog.get_logger()


class Notifier(ABC):
    """External notification side effect (email provider, webhook, ...)."""

    @abstractmethod
    async def send(self, recipient: str, subject: str, body: str) -> None:
        """
        Deliver one notification.

        Raises:
            Exception: Any failure; the message will be retried
        """
        pass


class LoggingNotifier(Notifier):
    """Notifier that only records what would have been sent."""

    def __init__(self):
        self.sent: list[dict[str, str]] = []

    async def send(self, recipient: str, subject: str, body: str) -> None:
        self.sent.append({"recipient": recipient, "subject": subject, "body": body})
        log.info("notification.sent", recipient=recipient, subject=subject)


SUBJECTS = {
    OrderEventType.CREATED: "Your order {order_id} was received",
    OrderEventType.DELETED: "Your order {order_id} was cancelled",
}


def render_order_email(event: OrderEvent, event_type: OrderEventType) -> tuple[str, str]:
    """Subject and plain-text body for an order event."""
    subject = SUBJECTS[event_type].format(order_id=event.order_id)
    lines = [
        f"Order: {event.order_id}",
        f"Products: {', '.join(event.product_codes) or '-'}",
    ]
    if event.billing:
        lines.append(f"Total: {event.billing.total_price:.2f} ({event.billing.payment})")
    if event.shipping:
        lines.append(f"Shipping: {event.shipping.type} via {event.shipping.carrier}")
    lines.append(f"Request: {event.request_id}")
    return subject, "\n".join(lines)


class OrderEmailHandler:
    """Decodes a queued order event and sends the customer email."""

    def __init__(self, notifier: Notifier):
        self.notifier = notifier

    async def __call__(self, message: QueueMessage) -> None:
        # Malformed messages raise ValidationError and end up dead-lettered
        event = decode_event(EventDomain.ORDER, message.body)
        event_type = coerce_event_type(EventDomain.ORDER, message.event_type)
        subject, body = render_order_email(event, event_type)
        await self.notifier.send(event.email, subject, body)


class NotificationConsumer(QueueConsumer):
    """Competing consumer of the order notifications queue."""

    def __init__(self, queue: DurableQueue, notifier: Notifier | None = None, **kwargs):
        self.notifier = notifier or LoggingNotifier()
        kwargs.setdefault("name", "order-emails")
        super().__init__(queue, OrderEmailHandler(self.notifier), **kwargs)
