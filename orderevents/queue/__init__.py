"""Durable queues with visibility timeout and dead-letter redrive."""

from .base import DurableQueue, RetryPolicy
from .memory import InMemoryQueue
from .models import DeadLetterInfo, MessageState, QueueMessage
from .redis_queue import RedisQueue

__all__ = [
    "DurableQueue",
    "RetryPolicy",
    "InMemoryQueue",
    "RedisQueue",
    "DeadLetterInfo",
    "MessageState",
    "QueueMessage",
]
