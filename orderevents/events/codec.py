"""
Event log record codec.

Builds the canonical stored record for a domain event:

    pk  = "#<domain>_<orderId | productCode>"
    sk  = "<eventType>#<createdAtMillis>"
    ttl = floor(createdAtMillis / 1000) + retention seconds
"""
from enum import Enum
from typing import Any, Mapping

import orjson
import pydantic

from .models import (
    EVENT_MODELS,
    EVENT_TYPES,
    DomainEvent,
    EventDomain,
    EventRecord,
    OrderEvent,
    ProductEvent,
)
from ..errors import ValidationError

DEFAULT_RETENTION_SECONDS = 300

PARTITION_PREFIXES = {
    EventDomain.ORDER: "#order_",
    EventDomain.PRODUCT: "#product_",
}


def partition_key(domain: EventDomain | str, subject: str) -> str:
    """Partition key for all events of one subject."""
    return f"{PARTITION_PREFIXES[EventDomain(domain)]}{subject}"


def sort_key(event_type: str, now_ms: int) -> str:
    """Sort key ordering a partition by event type, then creation time."""
    return f"{event_type}#{now_ms}"


def coerce_event_type(domain: EventDomain | str, event_type: Any) -> Enum:
    """
    Resolve an event type against the domain's enumerated set.

    Raises:
        ValidationError: If the value is not one of the domain's event types
    """
    enum_cls = EVENT_TYPES[EventDomain(domain)]
    if isinstance(event_type, enum_cls):
        return event_type
    value = event_type.value if isinstance(event_type, Enum) else event_type
    try:
        return enum_cls(value)
    except ValueError:
        allowed = [member.value for member in enum_cls]
        raise ValidationError(
            f"unknown {EventDomain(domain).value} event type: {value!r}",
            errors=[{"loc": ["eventType"], "msg": f"must be one of {allowed}", "input": value}],
        ) from None


def decode_event(domain: EventDomain | str, payload: str | bytes | Mapping[str, Any]) -> DomainEvent:
    """
    Parse and validate a domain event from JSON text, bytes, or a mapping.

    Raises:
        ValidationError: If the payload is not valid JSON or fails schema validation
    """
    model = EVENT_MODELS[EventDomain(domain)]
    if isinstance(payload, (str, bytes)):
        try:
            payload = orjson.loads(payload)
        except orjson.JSONDecodeError as e:
            raise ValidationError(f"event body is not valid JSON: {e}") from e
    if not isinstance(payload, Mapping):
        raise ValidationError("event body must be a JSON object")
    try:
        return model.model_validate(dict(payload))
    except pydantic.ValidationError as e:
        raise ValidationError(
            f"invalid {EventDomain(domain).value} event",
            errors=e.errors(include_url=False, include_context=False),
        ) from e


def serialize_event(event: DomainEvent) -> str:
    """JSON text of the event in its wire (camelCase) form."""
    return orjson.dumps(event.model_dump(mode="json", by_alias=True, exclude_none=True)).decode()


def encode(
    event: DomainEvent,
    event_type: Enum | str,
    now_ms: int,
    message_id: str | None = None,
    retention_seconds: int = DEFAULT_RETENTION_SECONDS,
) -> EventRecord:
    """
    Build the event log record for a domain event. Pure: identical inputs give identical records.

    Args:
        event: Validated order or product event
        event_type: Event type; must belong to the event's domain
        now_ms: Creation time, epoch milliseconds
        message_id: Identifier of the message that carried the event, if any
        retention_seconds: Time-to-live added to the creation time

    Raises:
        ValidationError: On a foreign event type or an unvalidated event
    """
    if not isinstance(event, (OrderEvent, ProductEvent)):
        raise ValidationError(f"unsupported event: {type(event).__name__}")

    resolved = coerce_event_type(event.domain, event_type)
    if isinstance(event, ProductEvent) and resolved != event.event_type:
        raise ValidationError(
            f"event type {resolved.value!r} does not match product event type {event.event_type.value!r}"
        )

    if isinstance(event, OrderEvent):
        info: dict[str, Any] = {
            "orderId": event.order_id,
            "productCodes": list(event.product_codes),
            "messageId": message_id,
        }
    else:
        info = {
            "productId": event.product_id,
            "price": event.product_price,
        }
        if message_id is not None:
            info["messageId"] = message_id

    return EventRecord(
        pk=partition_key(event.domain, event.subject_code),
        sk=sort_key(resolved.value, now_ms),
        ttl=now_ms // 1000 + retention_seconds,
        email=event.actor_email,
        created_at=now_ms,
        request_id=event.request_id,
        event_type=resolved.value,
        info=info,
    )
