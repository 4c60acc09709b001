"""Topic router: fan-out of published messages to filtered subscriptions."""
import asyncio
import structlog
from pydantic import BaseModel, Field
from .channels import Channel
from .policy import FilterPolicy
from ..events.models import TopicMessage
from ..errors import DeliveryError

log = structlog.get_logger()


class Subscription:
    """A named subscriber channel with an optional filter policy."""

    def __init__(self, name: str, channel: Channel, filter_policy: FilterPolicy | None = None):
        self.name = name
        self.channel = channel
        self.filter_policy = filter_policy

    def accepts(self, message: TopicMessage) -> bool:
        """No policy means the subscription receives everything."""
        if self.filter_policy is None:
            return True
        return self.filter_policy.matches(message.attributes)

    def __repr__(self):
        return f"Subscription({self.name!r}, {self.channel!r}, filter_policy={self.filter_policy!r})"


class DeliveryResult(BaseModel):
    subscriber: str
    outcome: str = Field(..., description="delivered, filtered or failed")
    error: str | None = None


class DeliveryReport(BaseModel):
    """Per-subscriber outcome of one publish. Diagnostic only."""
    message_id: str
    topic: str
    results: list[DeliveryResult] = Field(default_factory=list)

    def _subscribers(self, outcome: str) -> list[str]:
        return [r.subscriber for r in self.results if r.outcome == outcome]

    @property
    def delivered(self) -> list[str]:
        return self._subscribers("delivered")

    @property
    def filtered(self) -> list[str]:
        return self._subscribers("filtered")

    @property
    def failed(self) -> list[str]:
        return self._subscribers("failed")


class Topic:
    """
    Fans out each published message to every matching subscription.

    Delivery to each subscriber is independent: a failing channel is logged
    and reported but never blocks, rolls back, or fails delivery to the
    others, and never raises to the publisher.
    """

    def __init__(self, name: str, metrics=None):
        self.name = name
        self._subscriptions: list[Subscription] = []
        self._metrics = metrics

    @property
    def subscriptions(self) -> list[Subscription]:
        return list(self._subscriptions)

    def subscribe(self, name: str, channel: Channel, filter_policy: FilterPolicy | None = None) -> Subscription:
        """
        Register a subscriber.

        Raises:
            ValueError: If a subscription with the same name exists
        """
        if any(s.name == name for s in self._subscriptions):
            raise ValueError(f"subscription {name!r} already exists on topic {self.name!r}")
        subscription = Subscription(name, channel, filter_policy)
        self._subscriptions.append(subscription)
        log.info(
            "topic.subscribed",
            topic=self.name,
            subscriber=name,
            filtered=filter_policy is not None,
        )
        return subscription

    async def publish(self, message: TopicMessage) -> DeliveryReport:
        """
        Deliver a message to all matching subscriptions.

        Returns:
            Report with one result per subscription
        """
        matching = []
        results: dict[str, DeliveryResult] = {}
        for subscription in self._subscriptions:
            if subscription.accepts(message):
                matching.append(subscription)
            else:
                results[subscription.name] = DeliveryResult(subscriber=subscription.name, outcome="filtered")
                log.debug(
                    "topic.filtered",
                    topic=self.name,
                    subscriber=subscription.name,
                    message_id=message.message_id,
                    event_type=message.event_type,
                )

        delivered = await asyncio.gather(*(self._deliver(s, message) for s in matching))
        for result in delivered:
            results[result.subscriber] = result

        report = DeliveryReport(
            message_id=message.message_id,
            topic=self.name,
            results=[results[s.name] for s in self._subscriptions],
        )

        if self._metrics:
            for result in report.results:
                self._metrics.record_delivery(self.name, result.subscriber, result.outcome)

        log.info(
            "topic.published",
            topic=self.name,
            message_id=message.message_id,
            event_type=message.event_type,
            delivered=report.delivered,
            filtered=report.filtered,
            failed=report.failed,
        )
        return report

    async def _deliver(self, subscription: Subscription, message: TopicMessage) -> DeliveryResult:
        try:
            await subscription.channel.deliver(message)
        except Exception as e:
            error = DeliveryError(subscription.name, message.message_id, e)
            log.warning(
                "topic.delivery_failed",
                topic=self.name,
                subscriber=subscription.name,
                message_id=message.message_id,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            return DeliveryResult(subscriber=subscription.name, outcome="failed", error=str(error))

        log.debug(
            "topic.delivered",
            topic=self.name,
            subscriber=subscription.name,
            message_id=message.message_id,
        )
        return DeliveryResult(subscriber=subscription.name, outcome="delivered")
