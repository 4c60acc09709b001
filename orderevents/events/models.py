"""Domain event and stored record models."""
from enum import Enum
from typing import Any, ClassVar, Mapping
import time
import uuid

import pydantic
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..errors import ValidationError


class EventDomain(str, Enum):
    """Subject domains that publish events."""
    ORDER = "order"
    PRODUCT = "product"


class OrderEventType(str, Enum):
    CREATED = "CREATED"
    DELETED = "DELETED"


class ProductEventType(str, Enum):
    CREATED = "PRODUCT_CREATED"
    UPDATED = "PRODUCT_UPDATED"
    DELETED = "PRODUCT_DELETED"


EVENT_TYPES: dict[EventDomain, type[Enum]] = {
    EventDomain.ORDER: OrderEventType,
    EventDomain.PRODUCT: ProductEventType,
}


class _WireModel(BaseModel):
    """camelCase on the wire, snake_case in Python, unknown fields rejected."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
        frozen=True,
    )


class ShippingInfo(_WireModel):
    type: str = Field(..., min_length=1)
    carrier: str = Field(..., min_length=1)


class BillingInfo(_WireModel):
    payment: str = Field(..., min_length=1)
    total_price: float = Field(..., ge=0)


class OrderEvent(_WireModel):
    """Order state change. The event type travels as a message attribute."""
    domain: ClassVar[EventDomain] = EventDomain.ORDER

    request_id: str = Field(..., min_length=1)
    order_id: str = Field(..., min_length=1)
    email: str = Field(..., min_length=1)
    product_codes: list[str]
    shipping: ShippingInfo | None = None
    billing: BillingInfo | None = None

    @property
    def subject_id(self) -> str:
        return self.order_id

    @property
    def subject_code(self) -> str:
        # Orders have no business code; the event log is keyed by order id.
        return self.order_id

    @property
    def actor_email(self) -> str:
        return self.email


class ProductEvent(_WireModel):
    """Product state change, carrying its own event type."""
    domain: ClassVar[EventDomain] = EventDomain.PRODUCT

    request_id: str = Field(..., min_length=1)
    event_type: ProductEventType
    product_id: str = Field(..., min_length=1)
    product_code: str = Field(..., min_length=1)
    product_price: float
    email: str = Field(..., min_length=1)

    @property
    def subject_id(self) -> str:
        return self.product_id

    @property
    def subject_code(self) -> str:
        return self.product_code

    @property
    def actor_email(self) -> str:
        return self.email

    @classmethod
    def from_product(
        cls,
        product: Mapping[str, Any],
        event_type: ProductEventType | str,
        request_id: str,
        email: str,
    ) -> "ProductEvent":
        """
        Build an event from a product record ({id, productName, code, price, model}).

        Raises:
            ValidationError: If the record lacks an id, code or price
        """
        try:
            return cls(
                request_id=request_id,
                event_type=event_type,
                product_id=product.get("id"),
                product_code=product.get("code"),
                product_price=product.get("price"),
                email=email,
            )
        except pydantic.ValidationError as e:
            raise ValidationError(
                "invalid product record",
                errors=e.errors(include_url=False, include_context=False),
            ) from e


DomainEvent = OrderEvent | ProductEvent

EVENT_MODELS: dict[EventDomain, type[_WireModel]] = {
    EventDomain.ORDER: OrderEvent,
    EventDomain.PRODUCT: ProductEvent,
}


class EventRecord(BaseModel):
    """Event log entry. Field aliases are the stored attribute names."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    pk: str
    sk: str
    ttl: int = Field(..., description="Expiry, epoch seconds")
    email: str
    created_at: int = Field(..., alias="createdAt", description="Epoch millis")
    request_id: str = Field(..., alias="requestId")
    event_type: str = Field(..., alias="eventType")
    info: dict[str, Any] = Field(default_factory=dict)

    @property
    def expires_at(self) -> int:
        return self.ttl

    def is_expired(self, now_seconds: float) -> bool:
        return self.ttl <= now_seconds

    def to_item(self) -> dict[str, Any]:
        """Stored shape: pk, sk, ttl, email, createdAt, requestId, eventType, info."""
        return self.model_dump(by_alias=True)


class TopicMessage(BaseModel):
    """A published event as seen by topic subscribers."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    message_id: str = Field(default_factory=lambda: str(uuid.uuid4()), alias="messageId")
    topic: str
    body: str = Field(..., description="JSON text of the domain event")
    attributes: dict[str, str] = Field(default_factory=dict)
    published_at: int = Field(
        default_factory=lambda: int(time.time() * 1000),
        alias="publishedAt",
        description="Epoch millis",
    )

    @property
    def event_type(self) -> str | None:
        return self.attributes.get("eventType")
