"""
Stripe boundary.

Every call into the Stripe API goes through StripeGateway, and every object
coming back is decoded once into the pydantic models below. The rest of the
billing code works with these typed models and never probes raw Stripe
payloads for optional fields.

Stripe exceptions (``stripe.CardError``, ``stripe.InvalidRequestError`` ...)
are not translated here. Callers decide what a decline or a stale item means
for their operation.

Usage:
    gateway = StripeGateway()
    subscription = gateway.retrieve_subscription(company.stripe_subscription_id)
    subscription.quantities_by_price()
"""

from __future__ import annotations

import logging
from typing import Any
from typing import Literal

import stripe
from django.conf import settings
from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field
from pydantic import field_validator
from pydantic import model_validator

from maintenancehub.billing.constants import STRIPE_STATUS_MAP
from maintenancehub.billing.errors import ConfigurationError

logger = logging.getLogger(__name__)


def to_plain(obj: Any) -> Any:
    """Turn a StripeObject (or anything nested in one) into plain dicts/lists."""
    to_dict = getattr(obj, "to_dict", None)
    if callable(to_dict) and not isinstance(obj, dict):
        obj = to_dict()
    if isinstance(obj, dict):
        return {key: to_plain(value) for key, value in obj.items()}
    if isinstance(obj, list | tuple):
        return [to_plain(value) for value in obj]
    return obj


def _id_of(value: Any) -> Any:
    """Expanded Stripe references arrive as objects, collapsed ones as ids."""
    if isinstance(value, dict):
        return value.get("id")
    return value


class StripeModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


# =============================================================================
# Subscriptions
# =============================================================================


class SubscriptionItem(StripeModel):
    """One line item of a subscription: a seat bucket's price and quantity."""

    id: str
    price_id: str | None = None
    quantity: int = 0
    current_period_end: int | None = None

    @model_validator(mode="before")
    @classmethod
    def _flatten_price(cls, data: Any) -> Any:
        if isinstance(data, dict) and "price_id" not in data:
            data = {**data, "price_id": _id_of(data.get("price"))}
        return data


class LiveSubscription(StripeModel):
    """The subscription as Stripe currently holds it."""

    id: str
    status: str
    customer: str | None = None
    items: list[SubscriptionItem] = Field(default_factory=list)
    cancel_at_period_end: bool = False
    cancel_at: int | None = None
    current_period_end: int | None = None
    metadata: dict[str, str] = Field(default_factory=dict)

    @field_validator("customer", mode="before")
    @classmethod
    def _customer_id(cls, value: Any) -> Any:
        return _id_of(value)

    @field_validator("items", mode="before")
    @classmethod
    def _unwrap_list(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return value.get("data") or []
        return value or []

    @model_validator(mode="after")
    def _period_end_from_items(self) -> LiveSubscription:
        # Newer API versions report the period on the items only.
        if self.current_period_end is None:
            ends = [i.current_period_end for i in self.items if i.current_period_end]
            if ends:
                self.current_period_end = max(ends)
        return self

    @property
    def local_status(self) -> str | None:
        return STRIPE_STATUS_MAP.get(self.status)

    @property
    def is_canceling(self) -> bool:
        return self.cancel_at_period_end or self.cancel_at is not None

    def quantities_by_price(self) -> dict[str, tuple[str, int]]:
        """Map price id -> (item id, quantity)."""
        return {
            item.price_id: (item.id, item.quantity)
            for item in self.items
            if item.price_id
        }


# =============================================================================
# Invoices
# =============================================================================


class InvoiceLine(StripeModel):
    id: str | None = None
    amount: int = 0
    description: str | None = None
    quantity: int | None = None
    proration: bool = False
    type: str | None = None
    period_start: int | None = None
    period_end: int | None = None

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        period = data.get("period") or {}
        data.setdefault("period_start", period.get("start"))
        data.setdefault("period_end", period.get("end"))
        # Newer API versions move proration and line type under ``parent``.
        parent = data.get("parent") or {}
        parent_type = parent.get("type")
        if parent_type == "invoice_item_details":
            data.setdefault("type", "invoiceitem")
        elif parent_type == "subscription_item_details":
            data.setdefault("type", "subscription")
        details = parent.get(parent_type) if parent_type else None
        if data.get("proration") is None:
            data["proration"] = bool(details and details.get("proration"))
        return data

    @property
    def is_standalone_item(self) -> bool:
        return self.type == "invoiceitem"


class InvoicePreview(StripeModel):
    lines: list[InvoiceLine] = Field(default_factory=list)
    subtotal: int = 0
    total: int = 0

    @field_validator("lines", mode="before")
    @classmethod
    def _unwrap_list(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return value.get("data") or []
        return value or []


# =============================================================================
# Checkout
# =============================================================================


class CheckoutSession(StripeModel):
    id: str
    url: str | None = None
    customer: str | None = None
    subscription: str | None = None
    client_reference_id: str | None = None
    payment_status: str | None = None
    status: str | None = None
    metadata: dict[str, str] = Field(default_factory=dict)

    @field_validator("customer", "subscription", mode="before")
    @classmethod
    def _collapse(cls, value: Any) -> Any:
        return _id_of(value)

    @property
    def company_id(self) -> str | None:
        return self.metadata.get("company_id") or self.client_reference_id

    @property
    def is_paid(self) -> bool:
        return self.payment_status == "paid"


# =============================================================================
# Webhook events
# =============================================================================


class InvoiceRef(StripeModel):
    id: str | None = None
    customer: str | None = None
    subscription: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _subscription_from_parent(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("subscription"):
            parent = data.get("parent") or {}
            details = parent.get("subscription_details") or {}
            data = {**data, "subscription": details.get("subscription")}
        return data

    @field_validator("customer", "subscription", mode="before")
    @classmethod
    def _collapse(cls, value: Any) -> Any:
        return _id_of(value)


class BaseEvent(StripeModel):
    id: str
    type: str

    @model_validator(mode="before")
    @classmethod
    def _lift_object(cls, data: Any) -> Any:
        # The envelope's own "object" is always "event". The payload is
        # data.object and replaces it.
        if isinstance(data, dict) and isinstance(data.get("data"), dict):
            data = {**data, "object": data["data"].get("object")}
        return data


class CheckoutCompletedEvent(BaseEvent):
    type: Literal["checkout.session.completed"]
    object: CheckoutSession


class InvoicePaidEvent(BaseEvent):
    type: Literal["invoice.paid"]
    object: InvoiceRef


class InvoicePaymentFailedEvent(BaseEvent):
    type: Literal["invoice.payment_failed"]
    object: InvoiceRef


class SubscriptionUpdatedEvent(BaseEvent):
    type: Literal["customer.subscription.updated"]
    object: LiveSubscription


class SubscriptionDeletedEvent(BaseEvent):
    type: Literal["customer.subscription.deleted"]
    object: LiveSubscription


class UnhandledEvent(BaseEvent):
    """Any event type the reconciler does not act on."""


StripeEvent = (
    CheckoutCompletedEvent
    | InvoicePaidEvent
    | InvoicePaymentFailedEvent
    | SubscriptionUpdatedEvent
    | SubscriptionDeletedEvent
    | UnhandledEvent
)

EVENT_MODELS: dict[str, type[BaseEvent]] = {
    "checkout.session.completed": CheckoutCompletedEvent,
    "invoice.paid": InvoicePaidEvent,
    "invoice.payment_failed": InvoicePaymentFailedEvent,
    "customer.subscription.updated": SubscriptionUpdatedEvent,
    "customer.subscription.deleted": SubscriptionDeletedEvent,
}


def decode_event(payload: dict) -> StripeEvent:
    """Decode a verified event payload into its typed model."""
    model = EVENT_MODELS.get(payload.get("type", ""), UnhandledEvent)
    return model.model_validate(payload)


def verify_event(payload: bytes, sig_header: str, secret: str) -> dict:
    """
    Verify a webhook signature against the raw request body.

    Raises ``ValueError`` for an unparsable body and
    ``stripe.SignatureVerificationError`` for a bad signature.
    """
    event = stripe.Webhook.construct_event(payload, sig_header, secret)
    return to_plain(event)


# =============================================================================
# Gateway
# =============================================================================


class StripeGateway:
    """
    Thin wrapper around the Stripe API calls used by billing.

    Requires STRIPE_SECRET_KEY. Network retries are disabled so that each
    call is attempted once; retries happen at the request level with a fresh
    idempotency key, or through DriftRecovery.
    """

    def __init__(self):
        if not settings.STRIPE_SECRET_KEY:
            raise ConfigurationError
        stripe.api_key = settings.STRIPE_SECRET_KEY
        stripe.max_network_retries = 0

    def retrieve_subscription(self, subscription_id: str) -> LiveSubscription:
        return LiveSubscription.model_validate(
            to_plain(stripe.Subscription.retrieve(subscription_id)),
        )

    def modify_subscription(
        self,
        subscription_id: str,
        *,
        items: list[dict],
        proration_behavior: str,
        idempotency_key: str,
    ) -> LiveSubscription:
        stripe_sub = stripe.Subscription.modify(
            subscription_id,
            items=items,
            proration_behavior=proration_behavior,
            idempotency_key=idempotency_key,
        )
        return LiveSubscription.model_validate(to_plain(stripe_sub))

    def preview_invoice(
        self,
        *,
        customer_id: str,
        subscription_id: str,
        items: list[dict],
        proration_behavior: str,
    ) -> InvoicePreview:
        invoice = stripe.Invoice.create_preview(
            customer=customer_id,
            subscription=subscription_id,
            subscription_details={
                "items": items,
                "proration_behavior": proration_behavior,
            },
        )
        return InvoicePreview.model_validate(to_plain(invoice))

    def create_product(
        self,
        *,
        name: str,
        description: str,
        idempotency_key: str,
    ) -> str:
        product = stripe.Product.create(
            name=name,
            description=description,
            idempotency_key=idempotency_key,
        )
        return to_plain(product)["id"]

    def create_price(
        self,
        *,
        product_id: str,
        unit_amount: int,
        currency: str,
        nickname: str,
        metadata: dict[str, str],
        idempotency_key: str,
    ) -> str:
        price = stripe.Price.create(
            product=product_id,
            unit_amount=unit_amount,
            currency=currency,
            recurring={"interval": "month"},
            nickname=nickname,
            metadata=metadata,
            idempotency_key=idempotency_key,
        )
        return to_plain(price)["id"]

    def create_customer(
        self,
        *,
        email: str,
        name: str,
        metadata: dict[str, str],
        idempotency_key: str,
    ) -> str:
        customer = stripe.Customer.create(
            email=email,
            name=name,
            metadata=metadata,
            idempotency_key=idempotency_key,
        )
        return to_plain(customer)["id"]

    def create_checkout_session(self, **params) -> CheckoutSession:
        session = stripe.checkout.Session.create(**params)
        return CheckoutSession.model_validate(to_plain(session))

    def retrieve_checkout_session(self, session_id: str) -> CheckoutSession:
        return CheckoutSession.model_validate(
            to_plain(stripe.checkout.Session.retrieve(session_id)),
        )

    def create_portal_session(self, *, customer_id: str, return_url: str) -> str:
        session = stripe.billing_portal.Session.create(
            customer=customer_id,
            return_url=return_url,
        )
        return to_plain(session)["url"]
