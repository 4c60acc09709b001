"""Competing-consumer loop over a durable queue."""
from typing import AsyncIterator, Awaitable, Callable
import asyncio
import time
import structlog
from ..errors import ConsumerFailure
from ..queue.base import DurableQueue
from ..queue.models import MessageState, QueueMessage

log = structlog.get_logger()

MessageHandler = Callable[[QueueMessage], Awaitable[None]]


class QueueConsumer:
    """
    Drains a durable queue and runs a side effect for each message.

    Every delivery attempt invokes the handler once, bounded by
    ``timeout_seconds``. Success acks the message; any error or timeout is
    reported as a failure so the queue can retry or dead-letter it. All
    delivery state lives in the queue, so a consumer can be stopped and a
    new one started at any time, and several may drain the same queue.
    """

    def __init__(
        self,
        queue: DurableQueue,
        handler: MessageHandler,
        name: str | None = None,
        timeout_seconds: float = 10.0,
        batch_size: int = 10,
        wait_seconds: float = 20.0,
        error_backoff_seconds: float = 1.0,
        metrics=None,
    ):
        self.queue = queue
        self.handler = handler
        self.name = name or f"{queue.name}-consumer"
        self.timeout_seconds = timeout_seconds
        self.batch_size = batch_size
        self.wait_seconds = wait_seconds
        self.error_backoff_seconds = error_backoff_seconds
        self._metrics = metrics
        self._stop = asyncio.Event()
        self._task: asyncio.Task | None = None

    async def drain(self, stop: asyncio.Event | None = None) -> AsyncIterator[QueueMessage]:
        """
        Yield received messages until stopped.

        Long-polls the queue, so iteration suspends while it is empty.
        Receive errors are logged and retried after a short backoff.
        """
        while stop is None or not stop.is_set():
            try:
                batch = await self.queue.receive(self.batch_size, self.wait_seconds)
            except Exception as e:
                log.error(
                    "consumer.receive_failed",
                    consumer=self.name,
                    queue=self.queue.name,
                    error=str(e),
                    exc_info=True,
                )
                await asyncio.sleep(self.error_backoff_seconds)
                continue
            if not batch:
                # Yield to the loop when the queue does not long-poll
                await asyncio.sleep(0)
            for message in batch:
                yield message

    async def process(self, message: QueueMessage) -> MessageState | None:
        """
        Run the handler for one delivery and settle the message.

        Returns:
            ACKED on success, otherwise the state reported by the queue's nack
            (None when the receipt went stale)
        """
        start_time = time.time()
        failure: ConsumerFailure | None = None
        try:
            # Handler logs (notification.sent, billing.triggered) carry the delivery context
            with structlog.contextvars.bound_contextvars(
                consumer=self.name,
                queue=self.queue.name,
                message_id=message.message_id,
                receive_count=message.receive_count,
            ):
                await asyncio.wait_for(self.handler(message), self.timeout_seconds)
        except asyncio.TimeoutError:
            failure = ConsumerFailure(
                message.message_id,
                f"handler timed out after {self.timeout_seconds}s",
                timed_out=True,
            )
        except Exception as e:
            failure = ConsumerFailure(message.message_id, f"{type(e).__name__}: {e}")

        duration = time.time() - start_time
        if self._metrics:
            self._metrics.observe_consumer_duration(self.queue.name, duration)

        if failure is None:
            acked = await self.queue.ack(message)
            log.info(
                "consumer.message_processed",
                consumer=self.name,
                queue=self.queue.name,
                message_id=message.message_id,
                receive_count=message.receive_count,
                duration_ms=round(duration * 1000, 2),
            )
            return MessageState.ACKED if acked else None

        log.warning(
            "consumer.message_failed",
            consumer=self.name,
            queue=self.queue.name,
            message_id=message.message_id,
            attempt=message.attempt + 1,
            timed_out=failure.timed_out,
            error=failure.reason,
        )
        return await self.queue.nack(message, failure.reason)

    async def run(self, stop: asyncio.Event | None = None):
        """
        Process messages until the stop event is set.

        A message whose ack or nack fails stays hidden until its visibility
        timeout expires and is then redelivered; the loop keeps going.
        """
        stop = stop or self._stop
        log.info("consumer.started", consumer=self.name, queue=self.queue.name)
        async for message in self.drain(stop):
            try:
                await self.process(message)
            except Exception as e:
                log.error(
                    "consumer.settle_failed",
                    consumer=self.name,
                    queue=self.queue.name,
                    message_id=message.message_id,
                    error=str(e),
                    error_type=type(e).__name__,
                    exc_info=True,
                )
                await asyncio.sleep(self.error_backoff_seconds)
        log.info("consumer.stopped", consumer=self.name, queue=self.queue.name)

    def start(self) -> asyncio.Task:
        """Run the consumer as a background task."""
        if self._task is None or self._task.done():
            self._stop = asyncio.Event()
            self._task = asyncio.create_task(self.run(self._stop), name=self.name)
        return self._task

    async def stop(self):
        """
        Stop the background task.

        Messages received but not yet processed stay hidden until their
        visibility timeout expires and are then redelivered.
        """
        if self._task is None:
            return
        self._stop.set()
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            log.error(
                "consumer.task_failed",
                consumer=self.name,
                queue=self.queue.name,
                error=str(e),
                error_type=type(e).__name__,
            )
        finally:
            self._task = None
