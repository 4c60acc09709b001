from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, List
from ..events.models import EventRecord
from ..queue.models import QueueMessage
from ..routing.topic import DeliveryReport

class OrderEventRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    event_type: str = Field(..., alias="eventType")
    event: Dict[str, Any]

class PublishResponse(BaseModel):
    message_id: str
    status: str
    deliveries: Dict[str, str]

    @classmethod
    def from_report(cls, report: DeliveryReport) -> "PublishResponse":
        return cls(
            message_id=report.message_id,
            status="accepted",
            deliveries={r.subscriber: r.outcome for r in report.results},
        )

class EventListResponse(BaseModel):
    total: int
    events: List[Dict[str, Any]]

    @classmethod
    def from_records(cls, records: List[EventRecord]) -> "EventListResponse":
        return cls(total=len(records), events=[r.to_item() for r in records])

class QueueStatsResponse(BaseModel):
    queues: Dict[str, Dict[str, int]]

class QueueMessagesResponse(BaseModel):
    queue: str
    total: int
    messages: List[QueueMessage]
