"""Subscriber channels a topic delivers into."""
from abc import ABC, abstractmethod
from typing import Awaitable, Callable
from ..events.models import TopicMessage
from ..queue.base import DurableQueue


class Channel(ABC):
    """Inbound channel of one subscriber."""

    @abstractmethod
    async def deliver(self, message: TopicMessage) -> None:
        """
        Hand a published message to the subscriber.

        Raises:
            Exception: Any failure; the topic records it as a DeliveryError
        """
        pass


class QueueChannel(Channel):
    """Buffers messages in a durable queue for at-least-once consumption."""

    def __init__(self, queue: DurableQueue):
        self.queue = queue

    async def deliver(self, message: TopicMessage) -> None:
        attributes = {
            **message.attributes,
            "topic": message.topic,
            "publishedAt": str(message.published_at),
        }
        await self.queue.send(message.body, attributes=attributes, message_id=message.message_id)

    def __repr__(self):
        return f"QueueChannel({self.queue.name!r})"


class HandlerChannel(Channel):
    """Invokes an async handler directly. Failures are not retried."""

    def __init__(self, handler: Callable[[TopicMessage], Awaitable[None]]):
        self.handler = handler

    async def deliver(self, message: TopicMessage) -> None:
        await self.handler(message)

    def __repr__(self):
        return f"HandlerChannel({self.handler!r})"
