"""
Management command to clear seats that no subscription pays for.

Paid companies whose subscription is gone or inactive but still hold
purchased seats get their seats reset to zero. Demo companies keep their
preset seats.

Usage:
    python manage.py cleanup_seats            # Reset orphaned seats
    python manage.py cleanup_seats --dry-run  # Only list affected companies
"""

from django.core.management.base import BaseCommand

from maintenancehub.billing.services import cleanup_orphaned_seats


class Command(BaseCommand):
    help = "Reset purchased seats of companies without an active subscription"

    def add_arguments(self, parser):
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="List affected companies without changing them",
        )

    def handle(self, *args, **options):
        dry_run = options["dry_run"]
        affected = cleanup_orphaned_seats(dry_run=dry_run)

        for company in affected:
            self.stdout.write(
                f"  {company.slug}: {company.purchased_manager_seats} manager / "
                f"{company.purchased_tech_seats} tech "
                f"(status={company.subscription_status})",
            )

        if dry_run:
            self.stdout.write(
                self.style.WARNING(f"Dry run: {len(affected)} company(ies) would be reset."),
            )
        else:
            self.stdout.write(
                self.style.SUCCESS(f"Reset seats for {len(affected)} company(ies)."),
            )
