"""
Stripe catalog cache.

MaintenanceHub sells one Stripe product with one monthly price per seat
bucket. These objects are created lazily on first use and their ids are
persisted in BillingConfig, so they survive restarts and are shared by every
process.

Creation is guarded by deterministic idempotency keys
(``maintenancehub-catalog-<key>-<version>``). Two processes racing to create
the same price send the same key, Stripe returns the same object to both,
and both converge on one row in BillingConfig.

Bump BILLING_CATALOG_VERSION to create a fresh catalog (e.g. after a price
change) without colliding with the keys of the previous one.

Usage:
    price_id = PriceCatalogCache().get_or_create(SeatBucket.TECH)
"""

from __future__ import annotations

import logging

from django.conf import settings

from maintenancehub.billing.constants import CURRENCY
from maintenancehub.billing.constants import PRICE_NICKNAMES
from maintenancehub.billing.constants import PRODUCT_DESCRIPTION
from maintenancehub.billing.constants import PRODUCT_NAME
from maintenancehub.billing.constants import SEAT_PRICE_CENTS
from maintenancehub.billing.constants import CatalogKey
from maintenancehub.billing.constants import SeatBucket
from maintenancehub.billing.models import BillingConfig
from maintenancehub.billing.provider import StripeGateway

logger = logging.getLogger(__name__)


def catalog_idempotency_key(key: str) -> str:
    return f"maintenancehub-catalog-{key}-{settings.BILLING_CATALOG_VERSION}"


class PriceCatalogCache:
    """Create-once cache of the Stripe product and per-bucket prices."""

    def __init__(self, gateway: StripeGateway | None = None):
        self._gateway = gateway

    @property
    def gateway(self) -> StripeGateway:
        # Created on demand so cached lookups work without Stripe keys.
        if self._gateway is None:
            self._gateway = StripeGateway()
        return self._gateway

    def cached_price_id(self, bucket: str) -> str | None:
        return BillingConfig.get_value(CatalogKey.for_bucket(bucket))

    def cached_price_ids(self) -> dict[str, str]:
        """Map bucket -> price id for every price created so far."""
        prices = {}
        for bucket in SeatBucket:
            price_id = self.cached_price_id(bucket)
            if price_id:
                prices[bucket.value] = price_id
        return prices

    def bucket_for_price(self, price_id: str | None) -> str | None:
        if not price_id:
            return None
        for bucket, cached in self.cached_price_ids().items():
            if cached == price_id:
                return bucket
        return None

    def get_or_create_product(self) -> str:
        cached = BillingConfig.get_value(CatalogKey.PRODUCT)
        if cached:
            return cached

        product_id = self.gateway.create_product(
            name=PRODUCT_NAME,
            description=PRODUCT_DESCRIPTION,
            idempotency_key=catalog_idempotency_key(CatalogKey.PRODUCT),
        )
        stored = self._store(CatalogKey.PRODUCT, product_id)
        logger.info("Created Stripe product %s", stored)
        return stored

    def get_or_create(self, bucket: str) -> str:
        """Return the monthly price id for a seat bucket, creating it if needed."""
        key = CatalogKey.for_bucket(bucket)
        cached = BillingConfig.get_value(key)
        if cached:
            return cached

        product_id = self.get_or_create_product()
        price_id = self.gateway.create_price(
            product_id=product_id,
            unit_amount=SEAT_PRICE_CENTS[bucket],
            currency=CURRENCY,
            nickname=PRICE_NICKNAMES[bucket],
            metadata={"bucket": str(bucket)},
            idempotency_key=catalog_idempotency_key(key),
        )
        stored = self._store(key, price_id)
        logger.info("Created Stripe price %s for %s seats", stored, bucket)
        return stored

    def warm(self) -> dict[str, str]:
        """Make sure the product and every bucket price exist."""
        return {bucket.value: self.get_or_create(bucket) for bucket in SeatBucket}

    def _store(self, key: str, value: str) -> str:
        # A racing writer may have stored the same id first. Keep its row.
        entry, _created = BillingConfig.objects.get_or_create(
            key=key,
            defaults={"value": value},
        )
        return entry.value
