"""
Stripe webhook reconciliation.

Verified Stripe events are the only thing that moves a company through the
subscription lifecycle:

    none -> pending_payment -> active/trialing -> past_due <-> active -> canceled

A client reporting a successful checkout changes nothing. Payment capture is
only trusted once Stripe tells us.

Key events handled:
- checkout.session.completed: Link the subscription and activate seats
- invoice.paid: Back to active, lift the payment restriction
- invoice.payment_failed: Past due, restrict immediately
- customer.subscription.updated: Re-derive seats from the live subscription
- customer.subscription.deleted: Unlink, zero seats, revert to demo

Every handler writes absolute state (never deltas) under the company row
lock, so replaying an event leaves the company exactly as the first delivery
did. Events are not assumed to arrive in order: invoice and subscription
events that name a subscription other than the company's current one are
ignored as stale, and handlers that need the subscription read it live from
Stripe instead of trusting the event snapshot.

To test locally:
    stripe listen --forward-to localhost:8000/api/billing/webhooks/stripe/
"""

from __future__ import annotations

import logging
from datetime import UTC
from datetime import datetime
from typing import TYPE_CHECKING

from django.db import transaction

from maintenancehub.billing.catalog import PriceCatalogCache
from maintenancehub.billing.constants import ACTIVE_STATUSES
from maintenancehub.billing.constants import SeatBucket
from maintenancehub.billing.constants import SubscriptionStatus
from maintenancehub.billing.constants import WebhookEventStatus
from maintenancehub.billing.drift import item_ids_from_live
from maintenancehub.billing.models import WebhookEvent
from maintenancehub.billing.provider import StripeGateway
from maintenancehub.billing.provider import decode_event
from maintenancehub.billing.seats import SeatCounts
from maintenancehub.users.constants import PackageType
from maintenancehub.users.models import Company

if TYPE_CHECKING:
    from maintenancehub.billing.provider import CheckoutCompletedEvent
    from maintenancehub.billing.provider import InvoicePaidEvent
    from maintenancehub.billing.provider import InvoicePaymentFailedEvent
    from maintenancehub.billing.provider import LiveSubscription
    from maintenancehub.billing.provider import StripeEvent
    from maintenancehub.billing.provider import SubscriptionDeletedEvent
    from maintenancehub.billing.provider import SubscriptionUpdatedEvent

logger = logging.getLogger(__name__)

PROCESSED = WebhookEventStatus.PROCESSED
IGNORED = WebhookEventStatus.IGNORED


def seats_from_live(
    live: LiveSubscription,
    catalog: PriceCatalogCache,
) -> SeatCounts:
    """Seat quantities per bucket, matched by our cached price ids."""
    quantities = {bucket.value: 0 for bucket in SeatBucket}
    for item in live.items:
        bucket = catalog.bucket_for_price(item.price_id)
        if bucket is None:
            logger.warning(
                "Subscription %s has item %s with unknown price %s",
                live.id,
                item.id,
                item.price_id,
            )
            continue
        quantities[bucket] += item.quantity
    return SeatCounts(**quantities)


class WebhookReconciler:
    """
    Fold verified Stripe events into the company seat ledger.

    Usage:
        status = WebhookReconciler().handle(decode_event(payload))
    """

    def __init__(
        self,
        gateway: StripeGateway | None = None,
        catalog: PriceCatalogCache | None = None,
    ):
        self._gateway = gateway
        self.catalog = catalog or PriceCatalogCache(gateway)
        self._handlers = {
            "checkout.session.completed": self.handle_checkout_completed,
            "invoice.paid": self.handle_invoice_paid,
            "invoice.payment_failed": self.handle_invoice_payment_failed,
            "customer.subscription.updated": self.handle_subscription_updated,
            "customer.subscription.deleted": self.handle_subscription_deleted,
        }

    @property
    def gateway(self) -> StripeGateway:
        # Invoice events never call Stripe, so the gateway is built lazily.
        if self._gateway is None:
            self._gateway = StripeGateway()
        return self._gateway

    def handle(self, event: StripeEvent) -> str:
        """Apply ``event``. Returns the WebhookEventStatus to record."""
        handler = self._handlers.get(event.type)
        if handler is None:
            logger.debug("Ignoring unhandled Stripe event %s", event.type)
            return IGNORED
        return handler(event)

    # -------------------------------------------------------------------------
    # Handlers
    # -------------------------------------------------------------------------

    def handle_checkout_completed(self, event: CheckoutCompletedEvent) -> str:
        """
        Activate the subscription a checkout created.

        Seat counts come from the live subscription's items, never from the
        checkout request or session metadata.
        """
        session = event.object
        if not session.subscription:
            logger.warning("checkout.session.completed %s has no subscription", session.id)
            return IGNORED

        company = self._company_for_checkout(session.company_id, session.customer)
        if company is None:
            logger.warning(
                "checkout.session.completed %s matches no company (company_id=%s)",
                session.id,
                session.company_id,
            )
            return IGNORED

        live = self.gateway.retrieve_subscription(session.subscription)
        return self.link_subscription(company.pk, live, customer_id=session.customer)

    def handle_invoice_paid(self, event: InvoicePaidEvent) -> str:
        """Recovery path from past_due. Lifts the payment restriction."""
        invoice = event.object
        company = self._current_company(invoice.customer, invoice.subscription)
        if company is None:
            return IGNORED

        with transaction.atomic():
            company = Company.objects.select_for_update().get(pk=company.pk)
            if company.stripe_subscription_id != invoice.subscription:
                return IGNORED
            company.subscription_status = SubscriptionStatus.ACTIVE
            company.payment_restricted = False
            company.save(
                update_fields=["subscription_status", "payment_restricted", "modified"],
            )

        logger.info("invoice.paid: company=%s is active", company.pk)
        return PROCESSED

    def handle_invoice_payment_failed(self, event: InvoicePaymentFailedEvent) -> str:
        """
        Mark past due and restrict access right away.

        Unlike a subscription update to past_due, a failure on the current
        invoice gets no grace period.
        """
        invoice = event.object
        company = self._current_company(invoice.customer, invoice.subscription)
        if company is None:
            return IGNORED

        with transaction.atomic():
            company = Company.objects.select_for_update().get(pk=company.pk)
            if company.stripe_subscription_id != invoice.subscription:
                return IGNORED
            company.subscription_status = SubscriptionStatus.PAST_DUE
            company.payment_restricted = True
            company.save(
                update_fields=["subscription_status", "payment_restricted", "modified"],
            )

        logger.warning(
            "invoice.payment_failed: company=%s is past due and restricted",
            company.pk,
        )
        return PROCESSED

    def handle_subscription_updated(self, event: SubscriptionUpdatedEvent) -> str:
        """
        Re-derive seats and status from the live subscription.

        Covers changes made outside MaintenanceHub (Stripe dashboard, billing
        portal).
        """
        company = self._current_company(event.object.customer, event.object.id)
        if company is None:
            return IGNORED

        live = self.gateway.retrieve_subscription(event.object.id)
        return self.refresh_subscription(company.pk, live)

    def handle_subscription_deleted(self, event: SubscriptionDeletedEvent) -> str:
        company = self._current_company(event.object.customer, event.object.id)
        if company is None:
            return IGNORED
        return self.unlink_subscription(company.pk, event.object.id)

    # -------------------------------------------------------------------------
    # State writers
    # -------------------------------------------------------------------------

    def link_subscription(
        self,
        company_id,
        live: LiveSubscription,
        *,
        customer_id: str | None = None,
    ) -> str:
        """
        Make ``live`` the company's subscription and activate it.

        Used after a confirmed checkout. Clears the payment restriction and
        takes the company live on a paid package.
        """
        if live.local_status == SubscriptionStatus.CANCELED:
            return self.unlink_subscription(company_id, live.id)

        seats = seats_from_live(live, self.catalog)
        item_ids = item_ids_from_live(live, self.catalog)
        status = live.local_status or SubscriptionStatus.ACTIVE

        with transaction.atomic():
            company = Company.objects.select_for_update().get(pk=company_id)
            company.stripe_customer_id = (
                customer_id or live.customer or company.stripe_customer_id
            )
            company.stripe_subscription_id = live.id
            company.subscription_status = status
            self._set_seats(company, seats, item_ids)
            company.payment_restricted = False
            company.is_live = True
            company.package_type = PackageType.PAID
            company.save()

        logger.info(
            "Linked subscription %s to company=%s: status=%s seats=%s",
            live.id,
            company_id,
            status,
            seats.as_dict(),
        )
        return PROCESSED

    def refresh_subscription(self, company_id, live: LiveSubscription) -> str:
        """
        Copy seats, item ids and status from the company's current subscription.

        Active or trialing lifts the restriction and takes the company live.
        A past_due or unpaid status is stored but the restriction is left as
        it is, so the customer keeps a grace period.
        """
        if live.local_status == SubscriptionStatus.CANCELED:
            return self.unlink_subscription(company_id, live.id)

        seats = seats_from_live(live, self.catalog)
        item_ids = item_ids_from_live(live, self.catalog)
        status = live.local_status

        with transaction.atomic():
            company = Company.objects.select_for_update().get(pk=company_id)
            if company.stripe_subscription_id != live.id:
                return IGNORED
            self._set_seats(company, seats, item_ids)
            if status:
                company.subscription_status = status
            if status in ACTIVE_STATUSES:
                company.payment_restricted = False
                company.is_live = True
                company.package_type = PackageType.PAID
            company.save()

        logger.info(
            "Refreshed subscription %s for company=%s: status=%s seats=%s",
            live.id,
            company_id,
            live.status,
            seats.as_dict(),
        )
        return PROCESSED

    def unlink_subscription(self, company_id, subscription_id: str) -> str:
        """Unlink the subscription, zero seats and revert to a lapsed demo."""
        with transaction.atomic():
            company = Company.objects.select_for_update().get(pk=company_id)
            if company.stripe_subscription_id != subscription_id:
                return IGNORED
            company.stripe_subscription_id = ""
            company.stripe_manager_item_id = ""
            company.stripe_tech_item_id = ""
            company.purchased_manager_seats = 0
            company.purchased_tech_seats = 0
            company.subscription_status = SubscriptionStatus.CANCELED
            company.payment_restricted = True
            company.is_live = False
            company.package_type = PackageType.DEMO
            company.demo_expires_at = None
            company.save()

        logger.info(
            "Subscription %s ended: company=%s reverted to demo",
            subscription_id,
            company_id,
        )
        return PROCESSED

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _set_seats(
        self,
        company: Company,
        seats: SeatCounts,
        item_ids: dict[str, str],
    ) -> None:
        company.purchased_manager_seats = seats.manager
        company.purchased_tech_seats = seats.tech
        company.stripe_manager_item_id = item_ids[SeatBucket.MANAGER]
        company.stripe_tech_item_id = item_ids[SeatBucket.TECH]

    def _company_for_checkout(self, company_id, customer_id) -> Company | None:
        if company_id and str(company_id).isdigit():
            company = Company.objects.filter(pk=int(company_id)).first()
            if company is not None:
                return company
        if customer_id:
            return Company.objects.filter(stripe_customer_id=customer_id).first()
        return None

    def _current_company(self, customer_id, subscription_id) -> Company | None:
        """
        Find the company whose *current* subscription is ``subscription_id``.

        Returns None (event is stale or unrelated) when no company currently
        holds that subscription.
        """
        if not subscription_id:
            return None
        company = Company.objects.filter(stripe_subscription_id=subscription_id).first()
        if company is None:
            logger.info(
                "Ignoring event for subscription %s (customer=%s): not current",
                subscription_id,
                customer_id,
            )
        return company


# =============================================================================
# Event log
# =============================================================================


def record_and_process(
    payload: dict,
    reconciler: WebhookReconciler | None = None,
) -> WebhookEvent:
    """
    Log a verified event and reconcile it.

    The WebhookEvent row is written first. Handler failures are recorded on
    it and never propagate, so the endpoint can always acknowledge Stripe. A
    redelivered event that was already processed or ignored is not re-run.
    """
    record, created = WebhookEvent.objects.get_or_create(
        event_id=payload["id"],
        defaults={
            "event_type": payload.get("type", ""),
            "payload": payload,
        },
    )
    if not created and record.status in (PROCESSED, IGNORED):
        logger.info("Stripe event %s already handled, skipping", record.event_id)
        return record

    reconciler = reconciler or WebhookReconciler()
    try:
        status = reconciler.handle(decode_event(payload))
    except Exception as e:
        logger.exception(
            "Failed to handle Stripe event %s (%s)",
            record.event_id,
            record.event_type,
        )
        record.status = WebhookEventStatus.FAILED
        record.error = str(e) or e.__class__.__name__
        record.save(update_fields=["status", "error", "modified"])
        return record

    record.status = status
    record.error = ""
    record.processed_at = datetime.now(tz=UTC)
    record.save(update_fields=["status", "error", "processed_at", "modified"])
    return record
