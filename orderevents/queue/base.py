"""Base interface for durable queue backends."""
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Iterable
import structlog
from pydantic import BaseModel, Field
from .models import DeadLetterInfo, MessageState, QueueMessage
from ..errors import DeadLettered

log = structlog.get_logger()

DeadLetterHook = Callable[[DeadLettered], Awaitable[None]]


class RetryPolicy(BaseModel):
    """Redrive policy: retry ceiling plus backoff before a failed message is visible again."""
    max_receive_count: int = Field(default=3, ge=1)
    backoff_seconds: float = Field(default=5.0, ge=0)
    exponential: bool = False
    max_backoff_seconds: float = Field(default=300.0, ge=0)

    def delay_for(self, attempt: int) -> float:
        """Delay before redelivery after the given failed attempt (1-based)."""
        if not self.exponential:
            return self.backoff_seconds
        return min(self.backoff_seconds * (2 ** max(attempt - 1, 0)), self.max_backoff_seconds)

    def exhausted(self, attempt: int) -> bool:
        """True once failures exceed the retry ceiling."""
        return attempt > self.max_receive_count


class DurableQueue(ABC):
    """
    At-least-once queue with visibility timeout and dead-letter redrive.

    Message lifecycle:
        ENQUEUED -> IN_FLIGHT -> ACKED (removed)
                              -> failed -> ENQUEUED (attempt + 1)
                              -> failed past max_receive_count -> DEAD_LETTERED
    """

    def __init__(
        self,
        name: str,
        visibility_timeout: float = 30.0,
        retry_policy: RetryPolicy | None = None,
        dead_letter_queue: "DurableQueue | None" = None,
        on_dead_letter: Iterable[DeadLetterHook] = (),
        metrics=None,
    ):
        self.name = name
        self.visibility_timeout = visibility_timeout
        self.retry_policy = retry_policy or RetryPolicy()
        self.dead_letter_queue = dead_letter_queue
        self._on_dead_letter = list(on_dead_letter)
        self._metrics = metrics

    def add_dead_letter_hook(self, hook: DeadLetterHook):
        """Register an alerting callback invoked for every dead-lettered message."""
        self._on_dead_letter.append(hook)

    @abstractmethod
    async def send(
        self,
        body: str,
        attributes: dict[str, str] | None = None,
        message_id: str | None = None,
        dead_letter: DeadLetterInfo | None = None,
    ) -> QueueMessage:
        """
        Enqueue a message, immediately visible.

        Args:
            body: Payload, stored verbatim
            attributes: String attributes (eventType, topic, ...)
            message_id: Identifier to keep; generated when omitted
            dead_letter: Set when the message is being redriven from another queue
        """
        pass

    @abstractmethod
    async def receive(self, max_messages: int = 1, wait_seconds: float = 0.0) -> list[QueueMessage]:
        """
        Take up to max_messages visible messages and hide them for the visibility timeout.

        Waits up to wait_seconds for a message when the queue is empty.
        Each returned message carries a fresh receipt used to ack or nack it.
        """
        pass

    @abstractmethod
    async def ack(self, message: QueueMessage) -> bool:
        """
        Remove a successfully processed message.

        Returns:
            False if the receipt is stale (message redelivered or already settled)
        """
        pass

    @abstractmethod
    async def nack(self, message: QueueMessage, error: str) -> MessageState | None:
        """
        Report a failed processing attempt.

        Returns:
            ENQUEUED when the message will be retried, DEAD_LETTERED when the
            retry ceiling was exceeded, None if the receipt is stale
        """
        pass

    @abstractmethod
    async def depth(self) -> dict[str, int]:
        """Counts of visible, in-flight and delayed messages."""
        pass

    @abstractmethod
    async def peek(self, limit: int = 50) -> list[QueueMessage]:
        """List messages without receiving them (operational inspection)."""
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        pass

    async def close(self) -> None:
        """Release backend resources."""

    async def _dead_lettered(self, message_id: str, attempts: int, last_error: str | None):
        """Log, count and announce a dead-lettered message."""
        event = DeadLettered(
            message_id=message_id,
            queue=self.name,
            attempts=attempts,
            last_error=last_error,
            dead_letter_queue=self.dead_letter_queue.name if self.dead_letter_queue else None,
        )
        log.error(
            "queue.message_dead_lettered",
            queue=self.name,
            message_id=message_id,
            attempts=attempts,
            last_error=last_error,
            dead_letter_queue=event.dead_letter_queue,
        )
        if self._metrics:
            self._metrics.record_dead_lettered(self.name)
        for hook in self._on_dead_letter:
            try:
                await hook(event)
            except Exception as e:
                log.warning(
                    "queue.dead_letter_hook_failed",
                    queue=self.name,
                    message_id=message_id,
                    error=str(e),
                    exc_info=True,
                )
