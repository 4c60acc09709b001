"""In-memory durable queue."""
from typing import Callable, Iterable
import asyncio
import time
import uuid
import structlog
from .base import DeadLetterHook, DurableQueue, RetryPolicy
from .models import DeadLetterInfo, MessageState, QueueMessage

log = structlog.get_logger()


class InMemoryQueue(DurableQueue):
    """In-memory implementation of the durable queue.

    All state changes happen without awaiting, so a message is handed to at
    most one receiver per visibility window within the event loop.
    """

    def __init__(
        self,
        name: str,
        visibility_timeout: float = 30.0,
        retry_policy: RetryPolicy | None = None,
        dead_letter_queue: DurableQueue | None = None,
        on_dead_letter: Iterable[DeadLetterHook] = (),
        metrics=None,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__(name, visibility_timeout, retry_policy, dead_letter_queue, on_dead_letter, metrics)
        self._messages: dict[str, QueueMessage] = {}
        self._clock = clock
        self._wakeup = asyncio.Event()

    async def send(
        self,
        body: str,
        attributes: dict[str, str] | None = None,
        message_id: str | None = None,
        dead_letter: DeadLetterInfo | None = None,
    ) -> QueueMessage:
        now = self._clock()
        message = QueueMessage(
            message_id=message_id or str(uuid.uuid4()),
            body=body,
            attributes=dict(attributes or {}),
            sent_at=now,
            visible_at=now,
            dead_letter=dead_letter,
        )
        self._messages[message.message_id] = message
        self._wakeup.set()
        log.info(
            "queue.message_sent",
            queue=self.name,
            message_id=message.message_id,
            event_type=message.event_type,
        )
        if self._metrics:
            self._metrics.record_queue_outcome(self.name, "sent")
        return message.model_copy(deep=True)

    async def receive(self, max_messages: int = 1, wait_seconds: float = 0.0) -> list[QueueMessage]:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + wait_seconds
        while True:
            self._wakeup.clear()
            received = self._take_visible(max_messages)
            remaining = deadline - loop.time()
            if received or remaining <= 0:
                return received

            timeout = remaining
            next_visible = self._next_visible_in()
            if next_visible is not None:
                timeout = min(timeout, max(next_visible, 0.0))
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout)
            except asyncio.TimeoutError:
                pass

    def _take_visible(self, max_messages: int) -> list[QueueMessage]:
        now = self._clock()
        received = []
        for message in self._messages.values():
            if len(received) >= max_messages:
                break
            if message.state not in (MessageState.ENQUEUED, MessageState.IN_FLIGHT):
                continue
            if message.visible_at > now:
                continue
            if message.state == MessageState.IN_FLIGHT:
                log.info(
                    "queue.visibility_expired",
                    queue=self.name,
                    message_id=message.message_id,
                    receive_count=message.receive_count,
                )
            message.state = MessageState.IN_FLIGHT
            message.receipt = str(uuid.uuid4())
            message.receive_count += 1
            message.visible_at = now + self.visibility_timeout
            received.append(message.model_copy(deep=True))
        return received

    def _next_visible_in(self) -> float | None:
        pending = [
            m.visible_at for m in self._messages.values()
            if m.state in (MessageState.ENQUEUED, MessageState.IN_FLIGHT)
        ]
        if not pending:
            return None
        return min(pending) - self._clock()

    def _settle(self, message: QueueMessage, action: str) -> QueueMessage | None:
        """Look up the live message for a receipt, or None if the receipt is stale."""
        current = self._messages.get(message.message_id)
        if (
            current is None
            or current.state != MessageState.IN_FLIGHT
            or message.receipt is None
            or current.receipt != message.receipt
        ):
            log.warning(
                "queue.stale_receipt",
                queue=self.name,
                message_id=message.message_id,
                action=action,
            )
            return None
        return current

    async def ack(self, message: QueueMessage) -> bool:
        current = self._settle(message, "ack")
        if current is None:
            return False
        del self._messages[current.message_id]
        log.info(
            "queue.message_acked",
            queue=self.name,
            message_id=current.message_id,
            attempt=current.attempt,
            receive_count=current.receive_count,
        )
        if self._metrics:
            self._metrics.record_queue_outcome(self.name, "acked")
        return True

    async def nack(self, message: QueueMessage, error: str) -> MessageState | None:
        current = self._settle(message, "nack")
        if current is None:
            return None

        now = self._clock()
        current.attempt += 1
        current.last_error = error
        current.receipt = None

        if self.retry_policy.exhausted(current.attempt):
            if self.dead_letter_queue is not None:
                await self.dead_letter_queue.send(
                    current.body,
                    attributes=current.attributes,
                    message_id=current.message_id,
                    dead_letter=DeadLetterInfo(
                        source_queue=self.name,
                        attempts=current.attempt,
                        last_error=error,
                        dead_lettered_at=now,
                    ),
                )
                del self._messages[current.message_id]
            else:
                # Kept in place, never received again, visible through peek()
                current.state = MessageState.DEAD_LETTERED
            if self._metrics:
                self._metrics.record_queue_outcome(self.name, "dead_lettered")
            await self._dead_lettered(current.message_id, current.attempt, error)
            return MessageState.DEAD_LETTERED

        delay = self.retry_policy.delay_for(current.attempt)
        current.state = MessageState.ENQUEUED
        current.visible_at = now + delay
        self._wakeup.set()
        log.warning(
            "queue.message_retry_scheduled",
            queue=self.name,
            message_id=current.message_id,
            attempt=current.attempt,
            max_receive_count=self.retry_policy.max_receive_count,
            delay_seconds=delay,
            error=error,
        )
        if self._metrics:
            self._metrics.record_queue_outcome(self.name, "retried")
        return MessageState.ENQUEUED

    async def depth(self) -> dict[str, int]:
        now = self._clock()
        counts = {"visible": 0, "in_flight": 0, "delayed": 0, "dead_lettered": 0}
        for message in self._messages.values():
            if message.state == MessageState.DEAD_LETTERED:
                counts["dead_lettered"] += 1
            elif message.visible_at <= now:
                counts["visible"] += 1
            elif message.state == MessageState.IN_FLIGHT:
                counts["in_flight"] += 1
            else:
                counts["delayed"] += 1
        return counts

    async def peek(self, limit: int = 50) -> list[QueueMessage]:
        return [m.model_copy(deep=True) for m in list(self._messages.values())[:limit]]

    async def health_check(self) -> bool:
        """In-memory queue is always healthy."""
        return True

    def __len__(self):
        return len(self._messages)
