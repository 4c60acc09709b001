"""Error taxonomy for the order-event pipeline."""
from typing import Any


class PipelineError(Exception):
    """Base class for all pipeline errors."""


class ValidationError(PipelineError):
    """Malformed or unknown event shape. Rejected before anything is stored or queued."""

    def __init__(self, message: str, errors: list[dict[str, Any]] | None = None):
        super().__init__(message)
        self.message = message
        self.errors = errors or []


class StorageError(PipelineError):
    """Event store unavailable or rejected the write. Not retried by the store."""


class DeliveryError(PipelineError):
    """A subscriber channel could not accept a published message."""

    def __init__(self, subscriber: str, message_id: str, cause: BaseException):
        super().__init__(f"delivery to {subscriber} failed: {cause}")
        self.subscriber = subscriber
        self.message_id = message_id
        self.cause = cause


class ConsumerFailure(PipelineError):
    """The consumer side effect failed or timed out; drives the queue retry state machine."""

    def __init__(self, message_id: str, reason: str, timed_out: bool = False):
        super().__init__(reason)
        self.message_id = message_id
        self.reason = reason
        self.timed_out = timed_out


class DeadLettered(PipelineError):
    """A message exceeded the retry ceiling and was moved to the dead-letter queue."""

    def __init__(self, message_id: str, queue: str, attempts: int, last_error: str | None,
                 dead_letter_queue: str | None = None):
        super().__init__(
            f"message {message_id} dead-lettered from {queue} after {attempts} attempts"
        )
        self.message_id = message_id
        self.queue = queue
        self.attempts = attempts
        self.last_error = last_error
        self.dead_letter_queue = dead_letter_queue
