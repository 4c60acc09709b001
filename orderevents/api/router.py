from fastapi import APIRouter, HTTPException, Query, Request
from .schemas import (
    EventListResponse,
    OrderEventRequest,
    PublishResponse,
    QueueMessagesResponse,
    QueueStatsResponse,
)
from ..events.codec import partition_key
from ..events.models import EventDomain
from ..pipeline import get_pipeline

router = APIRouter(prefix="/v1")


def _with_request_id(event: dict, request: Request) -> dict:
    """Fill requestId from the X-Request-ID header when the caller left it out."""
    if not event.get("requestId") and hasattr(request.state, "request_id"):
        return {**event, "requestId": request.state.request_id}
    return event


@router.post("/orders/events", response_model=PublishResponse, status_code=202)
async def publish_order_event(req: OrderEventRequest, request: Request):
    pipeline = get_pipeline()
    report = await pipeline.publisher.publish_order_event(
        _with_request_id(req.event, request), req.event_type
    )
    return PublishResponse.from_report(report)


@router.post("/products/events", response_model=PublishResponse, status_code=202)
async def publish_product_event(event: dict, request: Request):
    pipeline = get_pipeline()
    report = await pipeline.publisher.publish_product_event(_with_request_id(event, request))
    return PublishResponse.from_report(report)


@router.get("/events/{domain}/{subject}", response_model=EventListResponse)
async def list_events(
    domain: EventDomain,
    subject: str,
    event_type: str | None = None,
    limit: int = Query(100, ge=1),
):
    pipeline = get_pipeline()
    records = await pipeline.store.query_by_partition(
        partition_key(domain, subject), event_type=event_type, limit=limit
    )
    return EventListResponse.from_records(records)


@router.get("/queues", response_model=QueueStatsResponse)
async def queue_stats():
    pipeline = get_pipeline()
    return QueueStatsResponse(
        queues={name: await queue.depth() for name, queue in pipeline.queues.items()}
    )


@router.get("/queues/{name}/messages", response_model=QueueMessagesResponse)
async def peek_queue(name: str, limit: int = Query(50, ge=1)):
    pipeline = get_pipeline()
    queue = pipeline.queues.get(name)
    if queue is None:
        raise HTTPException(404, detail=f"Queue {name} not found")
    messages = await queue.peek(limit)
    return QueueMessagesResponse(queue=name, total=len(messages), messages=messages)
