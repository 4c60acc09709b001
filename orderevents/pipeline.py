"""Pipeline wiring: topics, subscriptions, queues, consumers and their lifecycle."""
from functools import lru_cache
from typing import Callable
import time
import structlog
from redis import Redis
from .config import Settings, get_settings
from .metrics import get_metrics
from .consumers.base import QueueConsumer
from .consumers.billing import BillingConsumer
from .consumers.notifications import NotificationConsumer, Notifier
from .events.codec import coerce_event_type
from .events.models import EventDomain
from .queue.base import DurableQueue, RetryPolicy
from .queue.memory import InMemoryQueue
from .queue.redis_queue import RedisQueue
from .routing.channels import QueueChannel
from .routing.policy import FilterPolicy
from .routing.topic import Topic
from .store.base import EventStore
from .store.event_log import EventLogWriter
from .store.memory import InMemoryEventStore
from .store.redis_store import RedisEventStore
from .workflow import EventPublisher, MonotonicClock

log = structlog.get_logger()

ORDERS_TOPIC = "order-events"
PRODUCTS_TOPIC = "product-events"
NOTIFICATIONS_QUEUE = "order-events"
NOTIFICATIONS_DLQ = "order-events-dlq"
BILLING_QUEUE = "order-billing"
BILLING_DLQ = "order-billing-dlq"


class Pipeline:
    """
    The wired order-event pipeline.

    publisher      -> event log (appended before fan-out)
    orders topic   -> billing queue (CREATED only), notifications queue (everything)
    products topic -> no subscribers; product events are only logged
    """

    def __init__(
        self,
        settings: Settings,
        store: EventStore,
        queues: dict[str, DurableQueue],
        notifier: Notifier | None = None,
        clock: Callable[[], float] = time.time,
        metrics=None,
        redis_client: Redis | None = None,
    ):
        self.settings = settings
        self._redis_client = redis_client
        self.store = store
        self.queues = queues
        self.metrics = metrics

        self.orders_topic = Topic(ORDERS_TOPIC, metrics=metrics)
        self.products_topic = Topic(PRODUCTS_TOPIC, metrics=metrics)

        self.orders_topic.subscribe(
            "billing",
            QueueChannel(queues[BILLING_QUEUE]),
            filter_policy=FilterPolicy.event_types(
                *(coerce_event_type(EventDomain.ORDER, t).value for t in settings.billing_event_types)
            ),
        )
        self.orders_topic.subscribe("order-emails", QueueChannel(queues[NOTIFICATIONS_QUEUE]))

        consumer_options = {
            "timeout_seconds": settings.CONSUMER_TIMEOUT_SECONDS,
            "batch_size": settings.CONSUMER_BATCH_SIZE,
            "wait_seconds": settings.CONSUMER_WAIT_SECONDS,
            "metrics": metrics,
        }
        self.notifications = NotificationConsumer(queues[NOTIFICATIONS_QUEUE], notifier, **consumer_options)
        self.billing = BillingConsumer(queues[BILLING_QUEUE], **consumer_options)
        self.consumers: list[QueueConsumer] = [self.notifications, self.billing]

        self.publisher = EventPublisher(
            self.orders_topic,
            self.products_topic,
            clock=MonotonicClock(clock),
            metrics=metrics,
            event_logs={
                domain: EventLogWriter(store, domain, settings.EVENTS_RETENTION_SECONDS, metrics=metrics)
                for domain in EventDomain
            },
        )

    @property
    def notifications_queue(self) -> DurableQueue:
        return self.queues[NOTIFICATIONS_QUEUE]

    @property
    def billing_queue(self) -> DurableQueue:
        return self.queues[BILLING_QUEUE]

    def start(self):
        """Start every consumer as a background task."""
        for consumer in self.consumers:
            consumer.start()
        log.info("pipeline.started", consumers=[c.name for c in self.consumers])

    async def stop(self):
        """Stop consumers and release backends."""
        for consumer in self.consumers:
            await consumer.stop()
        for queue in self.queues.values():
            await queue.close()
        await self.store.close()
        if self._redis_client is not None:
            self._redis_client.close()
        log.info("pipeline.stopped")


def _retry_policy(settings: Settings) -> RetryPolicy:
    return RetryPolicy(
        max_receive_count=settings.MAX_RECEIVE_COUNT,
        backoff_seconds=settings.RETRY_BACKOFF_SECONDS,
        exponential=settings.RETRY_BACKOFF_EXPONENTIAL,
        max_backoff_seconds=settings.RETRY_BACKOFF_MAX_SECONDS,
    )


def build_pipeline(
    settings: Settings | None = None,
    metrics=None,
    notifier: Notifier | None = None,
    clock: Callable[[], float] = time.time,
) -> Pipeline:
    """
    Build the pipeline on the configured backend.

    With BACKEND=redis one Redis client is shared by the store and all queues.
    """
    settings = settings or get_settings()
    policy = _retry_policy(settings)
    visibility = settings.VISIBILITY_TIMEOUT_SECONDS

    backend = settings.BACKEND
    if backend == "redis" and not settings.REDIS_URL:
        log.warning(
            "backend.fallback",
            requested="redis",
            actual="memory",
            reason="REDIS_URL not configured",
        )
        backend = "memory"

    client = None
    if backend == "redis":
        client = Redis.from_url(
            str(settings.REDIS_URL),
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
        )
        log.info("backend.selected", type="redis", url=str(settings.REDIS_URL))
        store: EventStore = RedisEventStore(client=client, prefix=settings.REDIS_PREFIX, clock=clock)

        def make_queue(name, dead_letter_queue=None):
            return RedisQueue(
                name,
                visibility_timeout=visibility,
                retry_policy=policy,
                dead_letter_queue=dead_letter_queue,
                metrics=metrics,
                client=client,
                prefix=settings.REDIS_PREFIX,
                clock=clock,
            )
    else:
        log.info("backend.selected", type="memory")
        store = InMemoryEventStore(clock=clock)

        def make_queue(name, dead_letter_queue=None):
            return InMemoryQueue(
                name,
                visibility_timeout=visibility,
                retry_policy=policy,
                dead_letter_queue=dead_letter_queue,
                metrics=metrics,
                clock=clock,
            )

    notifications_dlq = make_queue(NOTIFICATIONS_DLQ)
    billing_dlq = make_queue(BILLING_DLQ)
    queues = {
        NOTIFICATIONS_QUEUE: make_queue(NOTIFICATIONS_QUEUE, notifications_dlq),
        NOTIFICATIONS_DLQ: notifications_dlq,
        BILLING_QUEUE: make_queue(BILLING_QUEUE, billing_dlq),
        BILLING_DLQ: billing_dlq,
    }
    return Pipeline(
        settings, store, queues, notifier=notifier, clock=clock, metrics=metrics, redis_client=client
    )


@lru_cache(maxsize=1)
def get_pipeline() -> Pipeline:
    """Process-wide pipeline, built on first use."""
    return build_pipeline(get_settings(), metrics=get_metrics())
