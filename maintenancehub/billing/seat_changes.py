"""
Seat count changes mirrored onto the Stripe subscription.

An admin asks for new seat counts per bucket. SeatChangeService validates
the request against current usage, patches the subscription's line items
in Stripe and, only after Stripe accepted the change, stores the new counts
and item ids on the company.

Billing policy:
- Net seat increase: ``always_invoice``. The prorated amount is charged now.
- Net seat decrease (or a shift between buckets): ``none``. The change
  applies immediately, no credit is issued for the rest of the period.

Line item patch per bucket:
- no cached item, desired > 0  -> create an item with the bucket price
- cached item, desired > 0     -> update the quantity
- cached item, desired == 0    -> delete the item

References:
- https://docs.stripe.com/billing/subscriptions/quantities
- https://docs.stripe.com/billing/subscriptions/prorations
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from dataclasses import field
from enum import Enum
from typing import TYPE_CHECKING
from uuid import uuid4

import stripe
from django.db import transaction

from maintenancehub.billing.catalog import PriceCatalogCache
from maintenancehub.billing.constants import MIN_MANAGER_SEATS
from maintenancehub.billing.constants import ProrationBehavior
from maintenancehub.billing.constants import SeatBucket
from maintenancehub.billing.drift import DriftRecovery
from maintenancehub.billing.drift import item_ids_from_live
from maintenancehub.billing.errors import PaymentFailedError
from maintenancehub.billing.errors import ProviderError
from maintenancehub.billing.errors import ValidationError
from maintenancehub.billing.provider import StripeGateway
from maintenancehub.billing.seats import SeatCounts
from maintenancehub.billing.seats import used_seats
from maintenancehub.users.models import Company

if TYPE_CHECKING:
    from maintenancehub.billing.errors import BillingError
    from maintenancehub.billing.provider import InvoicePreview
    from maintenancehub.billing.provider import LiveSubscription

logger = logging.getLogger(__name__)


class SeatChangeOutcome(str, Enum):
    APPLIED = "applied"
    PREVIEW_ONLY = "preview_only"  # No active subscription, nothing changed
    REJECTED = "rejected"
    PAYMENT_FAILED = "payment_failed"


class RejectionCode:
    MIN_MANAGER_SEAT_REQUIRED = "MIN_MANAGER_SEAT_REQUIRED"
    BELOW_COMMITTED_USAGE = "BELOW_COMMITTED_USAGE"
    SUBSCRIPTION_CANCELING = "SUBSCRIPTION_CANCELING"
    PAYMENT_FAILED = "PAYMENT_FAILED"


@dataclass
class SeatChangeResult:
    """Result of a seat change request."""

    outcome: SeatChangeOutcome
    seats: SeatCounts
    message: str = ""
    code: str = ""
    min_required: dict[str, int] | None = None
    monthly_cost_cents: int = 0
    proration_behavior: str | None = None

    @property
    def success(self) -> bool:
        return self.outcome == SeatChangeOutcome.APPLIED

    def as_dict(self) -> dict:
        data = {
            "success": self.success,
            "outcome": self.outcome.value,
            "message": self.message,
            "seats": self.seats.as_dict(),
            "monthly_cost_cents": self.monthly_cost_cents,
        }
        if self.code:
            data["code"] = self.code
        if self.min_required is not None:
            data["min_required"] = self.min_required
        if self.outcome == SeatChangeOutcome.PREVIEW_ONLY:
            data["requires_checkout"] = True
        return data

    def to_error(self) -> BillingError:
        return PaymentFailedError(self.message)


@dataclass
class CostPreview:
    """Cost of a proposed seat change. Amounts are in cents."""

    immediate_charge_cents: int
    new_monthly_total_cents: int
    proration_lines: list[dict] = field(default_factory=list)
    next_cycle_lines: list[dict] = field(default_factory=list)
    proration_total_cents: int = 0
    next_cycle_total_cents: int = 0
    invoice_subtotal_cents: int = 0
    invoice_total_cents: int = 0
    has_subscription: bool = False

    def as_dict(self) -> dict:
        data = {
            "immediate_charge_cents": self.immediate_charge_cents,
            "new_monthly_total_cents": self.new_monthly_total_cents,
            "proration_details": None,
        }
        if self.has_subscription:
            data["proration_details"] = {
                "proration_total_cents": self.proration_total_cents,
                "next_cycle_total_cents": self.next_cycle_total_cents,
                "proration_lines": self.proration_lines,
                "next_cycle_lines": self.next_cycle_lines,
                "invoice_subtotal_cents": self.invoice_subtotal_cents,
                "invoice_total_cents": self.invoice_total_cents,
            }
        return data


# =============================================================================
# Helpers
# =============================================================================


def parse_seat_counts(data) -> SeatCounts:
    """
    Read ``manager_seats`` / ``tech_seats`` from request data.

    Raises ValidationError unless both are non-negative integers.
    """
    counts = {}
    for bucket in SeatBucket:
        raw = data.get(f"{bucket.value}_seats")
        if isinstance(raw, bool) or not isinstance(raw, int | str):
            raise ValidationError("Invalid seat counts.", code="invalid_seat_count")
        try:
            value = int(raw)
        except ValueError as e:
            raise ValidationError(
                "Invalid seat counts.",
                code="invalid_seat_count",
            ) from e
        if value < 0:
            raise ValidationError(
                "Seat counts cannot be negative.",
                code="invalid_seat_count",
            )
        counts[bucket.value] = value
    return SeatCounts(**counts)


def build_item_patch(
    company: Company,
    desired: SeatCounts,
    catalog: PriceCatalogCache,
) -> list[dict]:
    items = []
    for bucket in SeatBucket:
        item_id = company.item_id(bucket)
        quantity = desired.get(bucket)
        if item_id and quantity > 0:
            items.append(
                {
                    "id": item_id,
                    "price": catalog.get_or_create(bucket),
                    "quantity": quantity,
                },
            )
        elif item_id:
            items.append({"id": item_id, "deleted": True})
        elif quantity > 0:
            items.append({"price": catalog.get_or_create(bucket), "quantity": quantity})
    return items


def below_usage(desired: SeatCounts, used: SeatCounts) -> SeatChangeResult | None:
    """REJECTED when ``desired`` is below the seats in use in any bucket."""
    short = [
        f"{bucket.value} seats below {used.get(bucket)}"
        for bucket in SeatBucket
        if desired.get(bucket) < used.get(bucket)
    ]
    if not short:
        return None
    return SeatChangeResult(
        outcome=SeatChangeOutcome.REJECTED,
        seats=desired,
        code=RejectionCode.BELOW_COMMITTED_USAGE,
        min_required=used.as_dict(),
        message=(
            f"Cannot reduce {' or '.join(short)}. Remove members or "
            "pending invitations first."
        ),
    )


def proration_behavior_for(current: SeatCounts, desired: SeatCounts) -> str:
    if desired.total > current.total:
        return ProrationBehavior.ALWAYS_INVOICE
    return ProrationBehavior.NONE


def classify_preview_lines(
    preview: InvoicePreview,
    current_period_end: int | None,
) -> tuple[list[dict], list[dict]]:
    """
    Split invoice preview lines into proration and next-cycle lines.

    A line is a proration when Stripe flags it as one, when it is a
    standalone invoice item, or when its period ends no later than the
    subscription's current period.
    """
    proration_lines = []
    next_cycle_lines = []
    for line in preview.lines:
        entry = {"description": line.description, "amount_cents": line.amount}
        ends_this_period = (
            current_period_end is not None
            and line.period_end is not None
            and line.period_end <= current_period_end
        )
        if line.proration or line.is_standalone_item or ends_this_period:
            proration_lines.append(entry)
        else:
            next_cycle_lines.append(entry)
    return proration_lines, next_cycle_lines


# =============================================================================
# Service
# =============================================================================


class SeatChangeService:
    """
    Apply and preview seat count changes.

    Usage:
        service = SeatChangeService()
        preview = service.preview_cost(company, SeatCounts(manager=2, tech=5))
        result = service.update_seats(company, SeatCounts(manager=2, tech=5))
        if result.outcome == SeatChangeOutcome.PAYMENT_FAILED:
            # send the admin to the billing portal
            ...
    """

    def __init__(
        self,
        gateway: StripeGateway | None = None,
        catalog: PriceCatalogCache | None = None,
    ):
        self.gateway = gateway or StripeGateway()
        self.catalog = catalog or PriceCatalogCache(self.gateway)
        self.recovery = DriftRecovery(self.gateway, self.catalog)

    def check_desired(
        self,
        company: Company,
        desired: SeatCounts,
    ) -> SeatChangeResult | None:
        """Return a REJECTED result if ``desired`` breaks a seat rule."""
        if desired.manager < 0 or desired.tech < 0:
            raise ValidationError(
                "Seat counts cannot be negative.",
                code="invalid_seat_count",
            )

        if desired.manager < MIN_MANAGER_SEATS:
            return SeatChangeResult(
                outcome=SeatChangeOutcome.REJECTED,
                seats=desired,
                code=RejectionCode.MIN_MANAGER_SEAT_REQUIRED,
                message=(
                    "At least 1 Manager/Admin seat is required to manage "
                    "your company."
                ),
            )

        # Usage is re-read here, never taken from the caller.
        return below_usage(desired, used_seats(company.pk))

    def update_seats(self, company: Company, desired: SeatCounts) -> SeatChangeResult:
        """
        Change the purchased seats of ``company`` to ``desired``.

        The request is validated under the company lock, Stripe is called
        without it, and usage is counted again under the lock before the new
        counts are stored. If members or invitations admitted during the
        Stripe call no longer fit, the subscription is put back to the
        previous counts and the change is REJECTED.

        Raises:
            ValidationError: For negative seat counts.
            ProviderDriftError: If item ids were still stale after one repair.
            ProviderError: For any other Stripe failure.
        """
        with transaction.atomic():
            Company.objects.select_for_update().get(pk=company.pk)
            company.refresh_from_db()
            rejection = self.check_desired(company, desired)
        if rejection is not None:
            return rejection

        if not company.has_active_subscription:
            # Seats are never activated without a completed checkout.
            return SeatChangeResult(
                outcome=SeatChangeOutcome.PREVIEW_ONLY,
                seats=desired,
                monthly_cost_cents=desired.monthly_cost_cents,
                message="Please complete billing setup to activate seats.",
            )

        current = SeatCounts.purchased(company)
        if desired == current:
            return SeatChangeResult(
                outcome=SeatChangeOutcome.APPLIED,
                seats=desired,
                monthly_cost_cents=desired.monthly_cost_cents,
                message="Seat counts unchanged.",
            )

        proration_behavior = proration_behavior_for(current, desired)

        try:
            live = self.gateway.retrieve_subscription(company.stripe_subscription_id)
            if live.is_canceling:
                return SeatChangeResult(
                    outcome=SeatChangeOutcome.REJECTED,
                    seats=desired,
                    code=RejectionCode.SUBSCRIPTION_CANCELING,
                    message=(
                        "Cannot modify seats while the subscription is set to "
                        "cancel. Reactivate it via Manage Billing first."
                    ),
                )
            updated = self._modify(
                company,
                desired,
                proration_behavior,
                key_prefix="seat-update",
            )
        except stripe.CardError as e:
            logger.warning(
                "Payment failed during seat update for company=%s: %s",
                company.pk,
                e,
            )
            return SeatChangeResult(
                outcome=SeatChangeOutcome.PAYMENT_FAILED,
                seats=current,
                code=RejectionCode.PAYMENT_FAILED,
                message="Payment failed. Please update your payment method and try again.",
            )
        except stripe.StripeError as e:
            logger.exception("Stripe rejected seat update for company=%s", company.pk)
            raise ProviderError from e

        rejection = self._persist(company, desired, updated)
        if rejection is not None:
            logger.warning(
                "Seat usage of company=%s grew to %s during the update; "
                "restoring %s in Stripe",
                company.pk,
                rejection.min_required,
                current.as_dict(),
            )
            self._restore(company, current)
            return rejection

        logger.info(
            "Seats updated for company=%s: %s -> %s (%s)",
            company.pk,
            current.as_dict(),
            desired.as_dict(),
            proration_behavior,
        )
        return SeatChangeResult(
            outcome=SeatChangeOutcome.APPLIED,
            seats=desired,
            monthly_cost_cents=desired.monthly_cost_cents,
            proration_behavior=proration_behavior,
            message="Seats updated and payment processed successfully.",
        )

    def _modify(
        self,
        company: Company,
        seats: SeatCounts,
        proration_behavior: str,
        *,
        key_prefix: str,
    ) -> LiveSubscription:
        def modify(target: Company) -> LiveSubscription:
            return self.gateway.modify_subscription(
                target.stripe_subscription_id,
                items=build_item_patch(target, seats, self.catalog),
                proration_behavior=proration_behavior,
                idempotency_key=f"{key_prefix}-{target.pk}-{uuid4().hex}",
            )

        return self.recovery.call_with_recovery(company, modify)

    def _persist(
        self,
        company: Company,
        desired: SeatCounts,
        live: LiveSubscription,
    ) -> SeatChangeResult | None:
        """
        Store ``desired`` and the live item ids under the company lock.

        Item ids always follow Stripe. The seat counts are only stored if the
        seats in use, counted again under the lock, still fit; otherwise the
        REJECTED result is returned.
        """
        item_ids = item_ids_from_live(live, self.catalog)
        with transaction.atomic():
            locked = Company.objects.select_for_update().get(pk=company.pk)
            rejection = below_usage(desired, used_seats(locked.pk))
            locked.stripe_manager_item_id = item_ids[SeatBucket.MANAGER]
            locked.stripe_tech_item_id = item_ids[SeatBucket.TECH]
            fields = ["stripe_manager_item_id", "stripe_tech_item_id", "modified"]
            if rejection is None:
                locked.purchased_manager_seats = desired.manager
                locked.purchased_tech_seats = desired.tech
                fields += ["purchased_manager_seats", "purchased_tech_seats"]
            locked.save(update_fields=fields)
        company.refresh_from_db()
        return rejection

    def _restore(self, company: Company, seats: SeatCounts) -> None:
        """Put the subscription back to ``seats`` without charging or crediting."""
        try:
            restored = self._modify(
                company,
                seats,
                ProrationBehavior.NONE,
                key_prefix="seat-restore",
            )
        except stripe.StripeError as e:
            logger.exception(
                "Could not restore seats %s in Stripe for company=%s",
                seats.as_dict(),
                company.pk,
            )
            raise ProviderError from e
        self._persist(company, seats, restored)

    def preview_cost(self, company: Company, desired: SeatCounts) -> CostPreview:
        """
        Ask Stripe what a seat change would cost, without changing anything.

        Without a subscription there is nothing to prorate, so only the new
        monthly total is returned.
        """
        if desired.manager < 0 or desired.tech < 0:
            raise ValidationError(
                "Seat counts cannot be negative.",
                code="invalid_seat_count",
            )

        new_monthly = desired.monthly_cost_cents
        if not company.stripe_subscription_id:
            return CostPreview(immediate_charge_cents=0, new_monthly_total_cents=new_monthly)

        try:
            live = self.gateway.retrieve_subscription(company.stripe_subscription_id)

            def preview(target: Company) -> InvoicePreview:
                return self.gateway.preview_invoice(
                    customer_id=target.stripe_customer_id,
                    subscription_id=target.stripe_subscription_id,
                    items=build_item_patch(target, desired, self.catalog),
                    proration_behavior=ProrationBehavior.CREATE_PRORATIONS,
                )

            invoice = self.recovery.call_with_recovery(company, preview)
        except stripe.StripeError as e:
            logger.exception("Failed to preview seat change for company=%s", company.pk)
            raise ProviderError from e

        proration_lines, next_cycle_lines = classify_preview_lines(
            invoice,
            live.current_period_end,
        )
        proration_total = sum(line["amount_cents"] for line in proration_lines)
        next_cycle_total = sum(line["amount_cents"] for line in next_cycle_lines)

        return CostPreview(
            # A net credit never turns into a negative charge.
            immediate_charge_cents=max(0, proration_total),
            new_monthly_total_cents=new_monthly,
            proration_lines=proration_lines,
            next_cycle_lines=next_cycle_lines,
            proration_total_cents=proration_total,
            next_cycle_total_cents=next_cycle_total,
            invoice_subtotal_cents=invoice.subtotal,
            invoice_total_cents=invoice.total,
            has_subscription=True,
        )
