"""Queue message models."""
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field


class MessageState(str, Enum):
    ENQUEUED = "ENQUEUED"
    IN_FLIGHT = "IN_FLIGHT"
    ACKED = "ACKED"
    DEAD_LETTERED = "DEAD_LETTERED"


class DeadLetterInfo(BaseModel):
    """Why and when a message left its source queue."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    source_queue: str = Field(..., alias="sourceQueue")
    attempts: int
    last_error: str | None = Field(default=None, alias="lastError")
    dead_lettered_at: float = Field(..., alias="deadLetteredAt")


class QueueMessage(BaseModel):
    """
    One queued event plus its delivery metadata.

    ``attempt`` counts consumer-reported failures only; ``receive_count``
    counts every delivery, including redeliveries after an expired
    visibility timeout. ``body`` is never modified by the queue.
    """
    model_config = ConfigDict(populate_by_name=True)

    message_id: str = Field(..., alias="messageId")
    body: str
    attributes: dict[str, str] = Field(default_factory=dict)
    attempt: int = 0
    receive_count: int = Field(default=0, alias="receiveCount")
    state: MessageState = MessageState.ENQUEUED
    sent_at: float = Field(..., alias="sentAt")
    visible_at: float = Field(..., alias="visibleAt")
    receipt: str | None = None
    last_error: str | None = Field(default=None, alias="lastError")
    dead_letter: DeadLetterInfo | None = Field(default=None, alias="deadLetter")

    @property
    def event_type(self) -> str | None:
        return self.attributes.get("eventType")
