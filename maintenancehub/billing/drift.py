"""
Recovery from stale subscription item ids.

Company caches the Stripe subscription item id of each seat bucket. Those
ids go stale when someone edits the subscription in the Stripe dashboard or
the customer portal, and Stripe then rejects any patch that references them.

DriftRecovery re-reads the live subscription, re-matches its items to our
cached price ids, stores the corrected item ids and retries the failed
operation once. If the retry fails the same way, ProviderDriftError is
raised. There is no further retry.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING
from typing import TypeVar

import stripe
from django.db import transaction

from maintenancehub.billing.catalog import PriceCatalogCache
from maintenancehub.billing.constants import SeatBucket
from maintenancehub.billing.errors import ProviderDriftError
from maintenancehub.billing.provider import StripeGateway

if TYPE_CHECKING:
    from maintenancehub.billing.provider import LiveSubscription
    from maintenancehub.users.models import Company

logger = logging.getLogger(__name__)

T = TypeVar("T")


def run_with_single_retry(
    operation: Callable[[], T],
    *,
    should_retry: Callable[[Exception], bool],
    refresh: Callable[[], None],
) -> T:
    """
    Run ``operation``. If it fails with an error ``should_retry`` accepts,
    call ``refresh`` and run it exactly once more.

    Errors from the second attempt propagate unchanged.
    """
    try:
        return operation()
    except Exception as exc:
        if not should_retry(exc):
            raise
        logger.info("Retrying after recoverable error: %s", exc)
    refresh()
    return operation()


def is_stale_item_error(exc: Exception) -> bool:
    """True when Stripe rejected a request because a subscription item is gone."""
    if not isinstance(exc, stripe.InvalidRequestError):
        return False
    if exc.code != "resource_missing":
        return False
    message = (getattr(exc, "user_message", None) or str(exc) or "").lower()
    return "subscription item" in message


def item_ids_from_live(
    live: LiveSubscription,
    catalog: PriceCatalogCache,
) -> dict[str, str]:
    """Bucket -> live item id, "" for buckets with no matching item."""
    matched = {bucket.value: "" for bucket in SeatBucket}
    for item in live.items:
        bucket = catalog.bucket_for_price(item.price_id)
        if bucket:
            matched[bucket] = item.id
    return matched


class DriftRecovery:
    """Repair cached item ids and retry a Stripe call once."""

    def __init__(
        self,
        gateway: StripeGateway | None = None,
        catalog: PriceCatalogCache | None = None,
    ):
        self.gateway = gateway or StripeGateway()
        self.catalog = catalog or PriceCatalogCache(self.gateway)

    def refresh_item_ids(self, company: Company) -> Company:
        """
        Overwrite the company's item ids with the live subscription's.

        Seat counts are left alone. Only the references are repaired.
        """
        from maintenancehub.users.models import Company

        live = self.gateway.retrieve_subscription(company.stripe_subscription_id)
        item_ids = item_ids_from_live(live, self.catalog)

        with transaction.atomic():
            locked = Company.objects.select_for_update().get(pk=company.pk)
            locked.stripe_manager_item_id = item_ids[SeatBucket.MANAGER]
            locked.stripe_tech_item_id = item_ids[SeatBucket.TECH]
            locked.save(
                update_fields=[
                    "stripe_manager_item_id",
                    "stripe_tech_item_id",
                    "modified",
                ],
            )

        logger.warning(
            "Repaired stale subscription items for company=%s: %s",
            company.pk,
            item_ids,
        )
        company.refresh_from_db()
        return company

    def call_with_recovery(
        self,
        company: Company,
        operation: Callable[[Company], T],
    ) -> T:
        """
        Run ``operation(company)``, recovering once from stale item ids.

        ``operation`` is rebuilt from the reloaded company on the retry, so it
        must read item ids from its argument.
        """
        try:
            return run_with_single_retry(
                lambda: operation(company),
                should_retry=is_stale_item_error,
                refresh=lambda: self.refresh_item_ids(company),
            )
        except stripe.InvalidRequestError as exc:
            if is_stale_item_error(exc):
                logger.exception(
                    "Subscription items still stale after recovery for company=%s",
                    company.pk,
                )
                raise ProviderDriftError from exc
            raise
