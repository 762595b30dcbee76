"""
Typed view of Stripe webhook events.

Only the six event kinds the billing service acts on are modelled; every
other type parses to IgnoredEvent. Payload models keep the fields we read
and drop the rest.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

CHECKOUT_COMPLETED = "checkout.session.completed"
SUBSCRIPTION_CREATED = "customer.subscription.created"
SUBSCRIPTION_UPDATED = "customer.subscription.updated"
SUBSCRIPTION_DELETED = "customer.subscription.deleted"
INVOICE_PAID = "invoice.paid"
INVOICE_PAYMENT_FAILED = "invoice.payment_failed"

USER_ID_METADATA_KEY = "user_id"


def _expandable_id(value: Any) -> Any:
    # Stripe returns either an id string or the expanded object
    if isinstance(value, dict):
        return value.get("id")
    return value


def parse_user_id(value: Optional[str]) -> Optional[int]:
    """Internal user id from a correlation field, None if absent or malformed."""
    if value is None:
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        return None


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore")


class Price(_Payload):
    id: str


class SubscriptionItem(_Payload):
    price: Price
    current_period_end: Optional[int] = None


class SubscriptionItemList(_Payload):
    data: List[SubscriptionItem] = Field(default_factory=list)


class SubscriptionPayload(_Payload):
    id: str
    customer: Optional[str] = None
    status: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)
    items: SubscriptionItemList = Field(default_factory=SubscriptionItemList)
    current_period_end: Optional[int] = None

    @field_validator("customer", mode="before")
    @classmethod
    def expand_customer(cls, value):
        return _expandable_id(value)

    @property
    def price_id(self) -> Optional[str]:
        if not self.items.data:
            return None
        return self.items.data[0].price.id

    @property
    def period_end(self) -> Optional[datetime]:
        # Newer API versions moved the period onto the subscription items
        timestamp = self.current_period_end
        if timestamp is None and self.items.data:
            timestamp = self.items.data[0].current_period_end
        if timestamp is None:
            return None
        return datetime.fromtimestamp(timestamp, tz=timezone.utc)

    @property
    def user_id(self) -> Optional[int]:
        return parse_user_id(self.metadata.get(USER_ID_METADATA_KEY))


class CheckoutSessionPayload(_Payload):
    id: str
    mode: Optional[str] = None
    customer: Optional[str] = None
    subscription: Optional[str] = None
    client_reference_id: Optional[str] = None

    @field_validator("customer", "subscription", mode="before")
    @classmethod
    def expand_ids(cls, value):
        return _expandable_id(value)

    @property
    def user_id(self) -> Optional[int]:
        return parse_user_id(self.client_reference_id)


class _InvoiceSubscriptionDetails(_Payload):
    subscription: Optional[str] = None

    @field_validator("subscription", mode="before")
    @classmethod
    def expand_subscription(cls, value):
        return _expandable_id(value)


class _InvoiceParent(_Payload):
    subscription_details: Optional[_InvoiceSubscriptionDetails] = None


class InvoicePayload(_Payload):
    id: str
    customer: Optional[str] = None
    subscription: Optional[str] = None
    parent: Optional[_InvoiceParent] = None

    @field_validator("customer", "subscription", mode="before")
    @classmethod
    def expand_ids(cls, value):
        return _expandable_id(value)

    @property
    def subscription_id(self) -> Optional[str]:
        if self.subscription:
            return self.subscription
        if self.parent and self.parent.subscription_details:
            return self.parent.subscription_details.subscription
        return None


class _Event(BaseModel):
    id: str
    type: str
    created: int


class CheckoutCompletedEvent(_Event):
    type: Literal["checkout.session.completed"]
    payload: CheckoutSessionPayload


class SubscriptionCreatedEvent(_Event):
    type: Literal["customer.subscription.created"]
    payload: SubscriptionPayload


class SubscriptionUpdatedEvent(_Event):
    type: Literal["customer.subscription.updated"]
    payload: SubscriptionPayload


class SubscriptionDeletedEvent(_Event):
    type: Literal["customer.subscription.deleted"]
    payload: SubscriptionPayload


class InvoicePaidEvent(_Event):
    type: Literal["invoice.paid"]
    payload: InvoicePayload


class InvoicePaymentFailedEvent(_Event):
    type: Literal["invoice.payment_failed"]
    payload: InvoicePayload


class IgnoredEvent(_Event):
    """Any event type the billing service does not act on."""


BillingEvent = Union[
    CheckoutCompletedEvent,
    SubscriptionCreatedEvent,
    SubscriptionUpdatedEvent,
    SubscriptionDeletedEvent,
    InvoicePaidEvent,
    InvoicePaymentFailedEvent,
    IgnoredEvent,
]

EVENT_MODELS = {
    CHECKOUT_COMPLETED: CheckoutCompletedEvent,
    SUBSCRIPTION_CREATED: SubscriptionCreatedEvent,
    SUBSCRIPTION_UPDATED: SubscriptionUpdatedEvent,
    SUBSCRIPTION_DELETED: SubscriptionDeletedEvent,
    INVOICE_PAID: InvoicePaidEvent,
    INVOICE_PAYMENT_FAILED: InvoicePaymentFailedEvent,
}


class _EventData(BaseModel):
    object: Dict[str, Any]


class _EventEnvelope(_Payload):
    id: str
    type: str
    created: int
    data: _EventData


def parse_billing_event(raw_body: Union[bytes, str]) -> BillingEvent:
    """
    Parse a verified webhook body into its typed event.

    Raises pydantic.ValidationError when the body or a recognised payload
    is malformed.
    """
    envelope = _EventEnvelope.model_validate_json(raw_body)
    model = EVENT_MODELS.get(envelope.type)
    if model is None:
        return IgnoredEvent(id=envelope.id, type=envelope.type, created=envelope.created)
    return model(
        id=envelope.id,
        type=envelope.type,
        created=envelope.created,
        payload=envelope.data.object,
    )
