"""
Management command to create and cache the Stripe seat catalog.

Creates the MaintenanceHub product and one monthly price per seat bucket in
Stripe (if they do not exist yet) and stores their ids in BillingConfig.
Safe to run repeatedly: cached ids are reused and creation is idempotent.

Usage:
    python manage.py cache_stripe_prices
"""

from django.core.management.base import BaseCommand
from django.core.management.base import CommandError

from maintenancehub.billing.catalog import PriceCatalogCache
from maintenancehub.billing.errors import ConfigurationError


class Command(BaseCommand):
    help = "Create (if needed) and cache the Stripe product and seat prices"

    def handle(self, *args, **options):
        try:
            prices = PriceCatalogCache().warm()
        except ConfigurationError as e:
            msg = "STRIPE_SECRET_KEY not configured. Add STRIPE_SECRET_KEY=sk_test_..."
            raise CommandError(msg) from e

        for bucket, price_id in prices.items():
            self.stdout.write(self.style.SUCCESS(f"  ✓ {bucket}: {price_id}"))
