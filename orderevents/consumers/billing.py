"""Billing trigger consumer: receives only order-created events."""
from typing import Awaitable, Callable
import structlog
from .base import QueueConsumer
from ..events.codec import decode_event
from ..events.models import EventDomain, OrderEvent
from ..queue.base import DurableQueue
from ..queue.models import QueueMessage

log = structlog.get_logger()

BillingAction = Callable[[OrderEvent, QueueMessage], Awaitable[None]]


async def log_billing_trigger(event: OrderEvent, message: QueueMessage) -> None:
    """Default billing action: record the trigger."""
    log.info(
        "billing.triggered",
        order_id=event.order_id,
        request_id=event.request_id,
        total_price=event.billing.total_price if event.billing else None,
        message_id=message.message_id,
    )


class BillingHandler:
    def __init__(self, action: BillingAction = log_billing_trigger):
        self.action = action

    async def __call__(self, message: QueueMessage) -> None:
        event = decode_event(EventDomain.ORDER, message.body)
        await self.action(event, message)


class BillingConsumer(QueueConsumer):
    """Drains the billing queue; the billing side effect itself is pluggable."""

    def __init__(self, queue: DurableQueue, action: BillingAction = log_billing_trigger, **kwargs):
        kwargs.setdefault("name", "billing")
        super().__init__(queue, BillingHandler(action), **kwargs)
