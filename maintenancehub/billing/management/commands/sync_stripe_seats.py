"""
Management command to reconcile companies with their Stripe subscriptions.

Reads each linked subscription from Stripe and copies seat counts, item ids
and status onto the company, exactly as a customer.subscription.updated
webhook would. Use it after webhook outages.

Usage:
    python manage.py sync_stripe_seats                  # All linked companies
    python manage.py sync_stripe_seats --company acme   # One company by slug
"""

import stripe
from django.core.management.base import BaseCommand
from django.core.management.base import CommandError

from maintenancehub.billing.errors import ConfigurationError
from maintenancehub.billing.provider import StripeGateway
from maintenancehub.billing.webhooks import PROCESSED
from maintenancehub.billing.webhooks import WebhookReconciler
from maintenancehub.users.models import Company


class Command(BaseCommand):
    help = "Sync seat counts and subscription status from Stripe"

    def add_arguments(self, parser):
        parser.add_argument(
            "--company",
            help="Only sync the company with this slug",
        )

    def handle(self, *args, **options):
        try:
            gateway = StripeGateway()
        except ConfigurationError as e:
            msg = "STRIPE_SECRET_KEY not configured. Add STRIPE_SECRET_KEY=sk_test_..."
            raise CommandError(msg) from e

        companies = Company.objects.exclude(stripe_subscription_id="").order_by("pk")
        if options["company"]:
            companies = companies.filter(slug=options["company"])
            if not companies.exists():
                msg = f"No company with slug '{options['company']}' has a subscription"
                raise CommandError(msg)

        reconciler = WebhookReconciler(gateway)
        synced = failed = 0
        for company in companies:
            try:
                live = gateway.retrieve_subscription(company.stripe_subscription_id)
            except stripe.StripeError as e:
                failed += 1
                self.stdout.write(
                    self.style.ERROR(f"  ✗ {company.slug}: {e}"),
                )
                continue

            if reconciler.refresh_subscription(company.pk, live) == PROCESSED:
                synced += 1
                company.refresh_from_db()
                self.stdout.write(
                    self.style.SUCCESS(
                        f"  ✓ {company.slug}: {company.subscription_status}, "
                        f"{company.purchased_manager_seats} manager / "
                        f"{company.purchased_tech_seats} tech",
                    ),
                )

        self.stdout.write(f"\nSynced {synced} company(ies), {failed} failed.")
