"""
Billing service for Stripe operations.

This service provides a clean interface for:
- Creating Stripe checkout sessions (first purchase of seats)
- Reporting subscription status, seat breakdown and seat summary
- Catching up with Stripe after checkout when webhooks are delayed
- Opening the Stripe Customer Portal (payment methods, invoices, cancel)

We use Stripe Checkout (not custom payment forms) for PCI compliance.
Seats bought through checkout only become effective once Stripe confirms
payment, either through the webhook or through ``sync_subscription``.
"""

from __future__ import annotations

import logging
import math
from datetime import UTC
from datetime import datetime
from typing import TYPE_CHECKING
from uuid import uuid4

import stripe
from django.db import transaction

from maintenancehub.billing.catalog import PriceCatalogCache
from maintenancehub.billing.constants import MIN_MANAGER_SEATS
from maintenancehub.billing.constants import SEAT_PRICE_CENTS
from maintenancehub.billing.constants import SeatBucket
from maintenancehub.billing.constants import SubscriptionStatus
from maintenancehub.billing.errors import AuthorizationError
from maintenancehub.billing.errors import ConfigurationError
from maintenancehub.billing.errors import PaymentRequiredError
from maintenancehub.billing.errors import ProviderError
from maintenancehub.billing.errors import ValidationError
from maintenancehub.billing.provider import StripeGateway
from maintenancehub.billing.seats import SeatCounts
from maintenancehub.billing.seats import bucket_usage
from maintenancehub.billing.webhooks import PROCESSED
from maintenancehub.billing.webhooks import WebhookReconciler
from maintenancehub.users.constants import PackageType
from maintenancehub.users.models import Company

if TYPE_CHECKING:
    from maintenancehub.billing.provider import LiveSubscription
    from maintenancehub.users.models import User

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400


class BillingService:
    """
    Service for Stripe billing operations.

    Read-only reports (seat summary, breakdown, demo status) work without
    Stripe keys. Anything that talks to Stripe raises ConfigurationError when
    billing is not configured.

    Usage:
        service = BillingService()
        checkout_url = service.create_checkout_session(
            company,
            user,
            SeatCounts(manager=1, tech=4),
            base_url="https://app.example.com",
        )
    """

    def __init__(self, gateway: StripeGateway | None = None):
        self._gateway = gateway
        self.catalog = PriceCatalogCache(gateway)

    @property
    def gateway(self) -> StripeGateway:
        if self._gateway is None:
            self._gateway = StripeGateway()
            self.catalog = PriceCatalogCache(self._gateway)
        return self._gateway

    @property
    def reconciler(self) -> WebhookReconciler:
        return WebhookReconciler(self.gateway, self.catalog)

    # -------------------------------------------------------------------------
    # Checkout
    # -------------------------------------------------------------------------

    def get_or_create_stripe_customer(self, company: Company, email: str) -> str:
        """
        Get existing Stripe customer or create a new one.

        Returns the Stripe customer ID (cus_xxx).
        """
        if company.stripe_customer_id:
            return company.stripe_customer_id

        customer_id = self.gateway.create_customer(
            email=email,
            name=company.name,
            metadata={"company_id": str(company.pk), "company_name": company.name},
            idempotency_key=f"maintenancehub-customer-{company.pk}",
        )
        company.stripe_customer_id = customer_id
        company.save(update_fields=["stripe_customer_id", "modified"])

        logger.info("Created Stripe customer %s for company %s", customer_id, company.name)
        return customer_id

    def create_checkout_session(
        self,
        company: Company,
        user: User,
        seats: SeatCounts,
        *,
        base_url: str,
        success_path: str | None = None,
        cancel_path: str | None = None,
    ) -> str:
        """
        Create a Stripe Checkout session for buying seats.

        Returns the checkout session URL to redirect the user to.

        The requested seats are only echoed into metadata for support. The
        webhook reads the real quantities from the created subscription.
        """
        if seats.manager < MIN_MANAGER_SEATS:
            raise ValidationError(
                "At least 1 Manager/Admin seat is required to manage your company.",
                code="MIN_MANAGER_SEAT_REQUIRED",
            )

        try:
            customer_id = self.get_or_create_stripe_customer(company, user.email)
            line_items = [
                {"price": self.catalog.get_or_create(bucket), "quantity": seats.get(bucket)}
                for bucket in SeatBucket
                if seats.get(bucket) > 0
            ]

            if success_path:
                separator = "&" if "?" in success_path else "?"
                success_url = (
                    f"{base_url}{success_path}{separator}"
                    "session_id={CHECKOUT_SESSION_ID}"
                )
            else:
                success_url = (
                    f"{base_url}/billing?success=true&session_id={{CHECKOUT_SESSION_ID}}"
                )
            cancel_url = f"{base_url}{cancel_path or '/billing?canceled=true'}"

            session = self.gateway.create_checkout_session(
                mode="subscription",
                customer=customer_id,
                line_items=line_items,
                success_url=success_url,
                cancel_url=cancel_url,
                # client_reference_id is how the webhook finds the company
                client_reference_id=str(company.pk),
                metadata={
                    "company_id": str(company.pk),
                    "user_id": str(user.pk),
                    "manager_seats": str(seats.manager),
                    "tech_seats": str(seats.tech),
                },
                subscription_data={"metadata": {"company_id": str(company.pk)}},
                idempotency_key=f"checkout-{company.pk}-{uuid4().hex}",
            )
        except stripe.StripeError as e:
            logger.exception("Failed to create checkout session for company=%s", company.pk)
            raise ProviderError from e

        if company.subscription_status == SubscriptionStatus.NONE:
            company.subscription_status = SubscriptionStatus.PENDING_PAYMENT
            company.save(update_fields=["subscription_status", "modified"])

        logger.info(
            "Created checkout session %s for company %s: %s",
            session.id,
            company.name,
            seats.as_dict(),
        )
        return session.url

    # -------------------------------------------------------------------------
    # Reports
    # -------------------------------------------------------------------------

    def get_subscription_status(self, company: Company) -> dict:
        """
        Current subscription state, read live from Stripe.

        A subscription Stripe reports as ended is unlinked here so the admin
        can start a fresh checkout.
        """
        seats = SeatCounts.purchased(company)
        if not company.stripe_subscription_id:
            return {
                "has_subscription": False,
                "status": company.subscription_status,
                "seats": seats.as_dict(),
            }

        live = self._retrieve_live(company)
        if live.local_status == SubscriptionStatus.CANCELED:
            self.reconciler.unlink_subscription(company.pk, live.id)
            company.refresh_from_db()
            return {
                "has_subscription": False,
                "status": company.subscription_status,
                "seats": SeatCounts.purchased(company).as_dict(),
            }

        return {
            "has_subscription": True,
            "status": live.local_status or company.subscription_status,
            "seats": seats.as_dict(),
            "current_period_end": live.current_period_end,
            "cancel_at_period_end": live.is_canceling,
        }

    def get_seat_breakdown(self, company: Company) -> dict:
        """Purchased, used, pending and available seats per bucket."""
        usage = {bucket: bucket_usage(company, bucket) for bucket in SeatBucket}
        data = {
            "purchased": {b.value: u.purchased for b, u in usage.items()},
            "used": {b.value: u.active for b, u in usage.items()},
            "pending": {b.value: u.pending for b, u in usage.items()},
            "available": {b.value: u.available for b, u in usage.items()},
            "unit_price_cents": {b.value: SEAT_PRICE_CENTS[b] for b in SeatBucket},
            "has_subscription": company.has_active_subscription,
            "subscription_status": company.subscription_status,
            "payment_restricted": company.payment_restricted,
            "current_period_end": None,
            "cancel_at_period_end": False,
        }

        if company.stripe_subscription_id:
            try:
                live = self.gateway.retrieve_subscription(company.stripe_subscription_id)
            except (stripe.StripeError, ConfigurationError) as e:
                # The breakdown is still useful without the live period.
                logger.warning(
                    "Could not load subscription %s for company=%s: %s",
                    company.stripe_subscription_id,
                    company.pk,
                    e,
                )
            else:
                data["current_period_end"] = live.current_period_end
                data["cancel_at_period_end"] = live.is_canceling
        return data

    def get_seat_summary(self, company: Company) -> dict:
        """Seat counts in use and what they cost per month."""
        manager = bucket_usage(company, SeatBucket.MANAGER)
        tech = bucket_usage(company, SeatBucket.TECH)
        in_use = SeatCounts(manager=manager.used, tech=tech.used)
        return {
            "manager": manager.as_dict(),
            "tech": tech.as_dict(),
            "total_seats": in_use.total,
            "monthly_cost_cents": SeatCounts.purchased(company).monthly_cost_cents,
            "is_demo": not company.is_live,
            "payment_restricted": company.payment_restricted,
        }

    def demo_status(self, company: Company, now: datetime | None = None) -> dict:
        now = now or datetime.now(tz=UTC)
        expires_at = company.demo_expires_at
        is_demo = not company.is_live
        days_remaining = None
        if expires_at is not None:
            remaining = (expires_at - now).total_seconds()
            days_remaining = max(0, math.ceil(remaining / SECONDS_PER_DAY))
        return {
            "is_demo": is_demo,
            "expires_at": expires_at.isoformat() if expires_at else None,
            "days_remaining": days_remaining,
            "is_expired": is_demo and (expires_at is None or expires_at <= now),
        }

    # -------------------------------------------------------------------------
    # Sync and portal
    # -------------------------------------------------------------------------

    def sync_subscription(self, company: Company, session_id: str | None = None) -> dict:
        """
        Pull subscription state from Stripe after checkout.

        A checkout session only counts when Stripe reports it as paid.
        Otherwise the company's linked subscription, if any, is refreshed.
        """
        try:
            if session_id:
                session = self.gateway.retrieve_checkout_session(session_id)
                if session.company_id and session.company_id != str(company.pk):
                    raise AuthorizationError(
                        "This checkout session belongs to another company.",
                    )
                if session.is_paid and session.subscription:
                    live = self.gateway.retrieve_subscription(session.subscription)
                    status = self.reconciler.link_subscription(
                        company.pk,
                        live,
                        customer_id=session.customer,
                    )
                    return self._sync_result(company, synced=status == PROCESSED)

            if company.stripe_subscription_id:
                live = self.gateway.retrieve_subscription(company.stripe_subscription_id)
                status = self.reconciler.refresh_subscription(company.pk, live)
                return self._sync_result(company, synced=status == PROCESSED)
        except stripe.StripeError as e:
            logger.exception("Failed to sync subscription for company=%s", company.pk)
            raise ProviderError from e

        return {"synced": False, "message": "No subscription to sync."}

    def get_customer_portal_url(self, company: Company, return_url: str) -> str:
        """
        Get a Stripe Customer Portal URL for self-service management.

        The portal allows customers to update payment methods, view invoices
        and cancel their subscription. It needs an existing Stripe customer.
        """
        if not company.stripe_customer_id:
            raise PaymentRequiredError(
                "No billing account found. Please set up billing first.",
            )
        try:
            url = self.gateway.create_portal_session(
                customer_id=company.stripe_customer_id,
                return_url=return_url,
            )
        except stripe.StripeError as e:
            logger.exception("Failed to open billing portal for company=%s", company.pk)
            raise ProviderError from e

        logger.info("Created portal session for company %s", company.name)
        return url

    def _retrieve_live(self, company: Company) -> LiveSubscription:
        try:
            return self.gateway.retrieve_subscription(company.stripe_subscription_id)
        except stripe.StripeError as e:
            logger.exception("Failed to load subscription for company=%s", company.pk)
            raise ProviderError from e

    def _sync_result(self, company: Company, *, synced: bool) -> dict:
        company.refresh_from_db()
        return {
            "synced": synced,
            "subscription_status": company.subscription_status,
            "seats": SeatCounts.purchased(company).as_dict(),
        }


def cleanup_orphaned_seats(*, dry_run: bool = False) -> list[Company]:
    """
    Zero purchased seats of paid companies that have no active subscription.

    Demo companies keep their preset seats. Returns the affected companies.
    """
    candidates = (
        Company.objects.exclude(package_type=PackageType.DEMO)
        .exclude(purchased_manager_seats=0, purchased_tech_seats=0)
        .order_by("pk")
    )
    affected = [company for company in candidates if not company.has_active_subscription]
    if dry_run:
        return affected

    for company in affected:
        with transaction.atomic():
            locked = Company.objects.select_for_update().get(pk=company.pk)
            if locked.has_active_subscription:
                continue
            locked.purchased_manager_seats = 0
            locked.purchased_tech_seats = 0
            locked.save(
                update_fields=["purchased_manager_seats", "purchased_tech_seats", "modified"],
            )
        logger.info("Cleared orphaned seats for company=%s", company.pk)
    return affected
