"""
Billing constants for the seat licensing system.

These enums define the seat buckets and subscription lifecycle states used
throughout the billing module. Stripe status strings are translated into
SubscriptionStatus through STRIPE_STATUS_MAP at the provider boundary.
"""

from django.db import models
from django.utils.translation import gettext_lazy as _

from maintenancehub.users.constants import RoleCode


class SeatBucket(models.TextChoices):
    """
    Pricing tiers that seats are sold in.

    Admins and managers share the MANAGER bucket, technicians use TECH.
    """

    MANAGER = "manager", _("Manager/Admin")
    TECH = "tech", _("Technician")


class SubscriptionStatus(models.TextChoices):
    """
    Subscription lifecycle states.

    Typical flow for a paid company:
        NONE → PENDING_PAYMENT (checkout started)
        PENDING_PAYMENT → ACTIVE / TRIALING (checkout.session.completed)
        ACTIVE → PAST_DUE (payment failed) → ACTIVE (invoice.paid)
        ACTIVE → CANCELED (subscription deleted)

    Transitions only happen through verified Stripe events or provider reads,
    never from client-reported checkout success.
    """

    NONE = "none", _("None")
    PENDING_PAYMENT = "pending_payment", _("Pending Payment")
    ACTIVE = "active", _("Active")
    TRIALING = "trialing", _("Trialing")
    PAST_DUE = "past_due", _("Past Due")
    CANCELED = "canceled", _("Canceled")


# Statuses that grant access to the product.
ACTIVE_STATUSES = frozenset({SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING})

# Stripe subscription status -> local status
STRIPE_STATUS_MAP = {
    "trialing": SubscriptionStatus.TRIALING,
    "active": SubscriptionStatus.ACTIVE,
    "past_due": SubscriptionStatus.PAST_DUE,
    "unpaid": SubscriptionStatus.PAST_DUE,
    "paused": SubscriptionStatus.PAST_DUE,
    "incomplete": SubscriptionStatus.PENDING_PAYMENT,
    "incomplete_expired": SubscriptionStatus.CANCELED,
    "canceled": SubscriptionStatus.CANCELED,
}

# Role -> seat bucket. Roles not listed here fall into TECH.
ROLE_BUCKETS = {
    RoleCode.ADMIN: SeatBucket.MANAGER,
    RoleCode.MANAGER: SeatBucket.MANAGER,
    RoleCode.TECH: SeatBucket.TECH,
}

# Monthly unit prices in cents
MANAGER_PRICE_CENTS = 10000
TECH_PRICE_CENTS = 5000

SEAT_PRICE_CENTS = {
    SeatBucket.MANAGER: MANAGER_PRICE_CENTS,
    SeatBucket.TECH: TECH_PRICE_CENTS,
}

PRICE_NICKNAMES = {
    SeatBucket.MANAGER: "Manager/Admin License",
    SeatBucket.TECH: "Technician License",
}

CURRENCY = "usd"
PRODUCT_NAME = "MaintenanceHub"
PRODUCT_DESCRIPTION = "Industrial maintenance management platform - per-user billing"


class CatalogKey:
    """Keys used in the BillingConfig key/value store."""

    PRODUCT = "stripe_product_id"
    MANAGER_PRICE = "stripe_manager_price_id"
    TECH_PRICE = "stripe_tech_price_id"

    @classmethod
    def for_bucket(cls, bucket: str) -> str:
        if bucket == SeatBucket.MANAGER:
            return cls.MANAGER_PRICE
        return cls.TECH_PRICE


class ProrationBehavior:
    """Stripe proration_behavior values used for seat changes."""

    ALWAYS_INVOICE = "always_invoice"
    NONE = "none"
    CREATE_PRORATIONS = "create_prorations"


class WebhookEventStatus(models.TextChoices):
    RECEIVED = "received", _("Received")
    PROCESSED = "processed", _("Processed")
    FAILED = "failed", _("Failed")
    IGNORED = "ignored", _("Ignored")


# Minimum manager seats every company must keep so someone can administer it.
MIN_MANAGER_SEATS = 1
