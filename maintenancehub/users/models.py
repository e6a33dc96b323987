from __future__ import annotations

from datetime import UTC
from datetime import datetime
from datetime import timedelta
from uuid import uuid4

from django.conf import settings
from django.contrib.auth.models import AbstractUser
from django.db import models
from django.db.models import CharField
from django.utils.text import slugify
from django.utils.translation import gettext_lazy as _
from model_utils.models import TimeStampedModel

from maintenancehub.billing.constants import ACTIVE_STATUSES
from maintenancehub.billing.constants import SeatBucket
from maintenancehub.billing.constants import SubscriptionStatus
from maintenancehub.users.constants import INVITATION_EXPIRY_DAYS
from maintenancehub.users.constants import InvitationStatus
from maintenancehub.users.constants import PackageType
from maintenancehub.users.constants import RoleCode


def _generate_unique_slug(model, base: str) -> str:
    base_slug = slugify(base) or uuid4().hex[:10]
    slug = base_slug
    counter = 2
    while model.objects.filter(slug=slug).exists():
        slug = f"{base_slug}-{counter}"
        counter += 1
    return slug


class Company(TimeStampedModel):
    """
    A tenant of the product.

    Besides its name, a company carries the seat ledger (purchased seats per
    bucket) and its link to the Stripe subscription that pays for those seats.
    Stripe is the source of truth for payment; the fields here are the last
    reconciled view of it.

    Usage:
        company.purchased_seats(SeatBucket.TECH)
        company.has_active_access()
    """

    name = CharField(
        max_length=255,
        help_text=_("Name of the company, e.g. 'Acme Plant 3'"),
    )
    slug = models.SlugField(unique=True, blank=True)

    # Seat ledger
    purchased_manager_seats = models.IntegerField(
        default=0,
        help_text=_("Seats purchased for admins and managers."),
    )
    purchased_tech_seats = models.IntegerField(
        default=0,
        help_text=_("Seats purchased for technicians."),
    )

    # Stripe integration
    stripe_customer_id = models.CharField(
        max_length=255,
        blank=True,
        help_text=_("Stripe Customer ID (cus_xxx)."),
    )
    stripe_subscription_id = models.CharField(
        max_length=255,
        blank=True,
        help_text=_("Stripe Subscription ID (sub_xxx)."),
    )
    stripe_manager_item_id = models.CharField(
        max_length=255,
        blank=True,
        help_text=_("Subscription item (si_xxx) for manager seats."),
    )
    stripe_tech_item_id = models.CharField(
        max_length=255,
        blank=True,
        help_text=_("Subscription item (si_xxx) for tech seats."),
    )
    subscription_status = models.CharField(
        max_length=20,
        choices=SubscriptionStatus.choices,
        default=SubscriptionStatus.NONE,
    )
    payment_restricted = models.BooleanField(
        default=False,
        help_text=_("Set when a payment failed or the subscription ended."),
    )

    # Package
    package_type = models.CharField(
        max_length=10,
        choices=PackageType.choices,
        default=PackageType.DEMO,
    )
    demo_expires_at = models.DateTimeField(null=True, blank=True)
    is_live = models.BooleanField(
        default=False,
        help_text=_("True once the company has paid and left the demo."),
    )

    class Meta:
        verbose_name_plural = "companies"
        indexes = [
            models.Index(
                fields=["stripe_customer_id"],
                name="users_compa_stripe__c1a2e4_idx",
            ),
            models.Index(
                fields=["stripe_subscription_id"],
                name="users_compa_stripe__5b7d90_idx",
            ),
        ]

    def __str__(self):
        return self.name

    def save(self, *args, **kwargs):
        """Set the slug and, for new demo companies, the demo expiry."""
        if not self.slug:
            self.slug = _generate_unique_slug(Company, self.name)
        if (
            self._state.adding
            and self.package_type == PackageType.DEMO
            and self.demo_expires_at is None
        ):
            self.demo_expires_at = datetime.now(tz=UTC) + timedelta(
                days=settings.DEMO_DURATION_DAYS,
            )
        super().save(*args, **kwargs)

    def purchased_seats(self, bucket: str) -> int:
        if bucket == SeatBucket.MANAGER:
            return self.purchased_manager_seats
        return self.purchased_tech_seats

    def item_id(self, bucket: str) -> str:
        if bucket == SeatBucket.MANAGER:
            return self.stripe_manager_item_id
        return self.stripe_tech_item_id

    @property
    def has_active_subscription(self) -> bool:
        return bool(self.stripe_subscription_id) and (
            self.subscription_status in ACTIVE_STATUSES
        )

    def has_valid_demo(self, now: datetime | None = None) -> bool:
        now = now or datetime.now(tz=UTC)
        return (
            self.package_type == PackageType.DEMO
            and self.demo_expires_at is not None
            and self.demo_expires_at > now
        )

    def has_active_access(self, now: datetime | None = None) -> bool:
        """Active subscription, or a demo that has not expired yet."""
        return self.subscription_status in ACTIVE_STATUSES or self.has_valid_demo(now)


class User(AbstractUser):
    """
    A member of a company.

    Every active user attached to a company occupies one seat in the bucket
    of their role.
    """

    # First and last name do not cover name patterns around the globe
    name = CharField(_("Name of User"), blank=True, max_length=255)
    first_name = None  # type: ignore[assignment]
    last_name = None  # type: ignore[assignment]

    company = models.ForeignKey(
        Company,
        on_delete=models.CASCADE,
        related_name="members",
        null=True,
        blank=True,
    )
    role = models.CharField(
        max_length=16,
        choices=RoleCode.choices,
        default=RoleCode.TECH,
    )

    def __str__(self):
        return self.email or self.username


class Invitation(TimeStampedModel):
    """
    A pending offer for someone to join a company with a given role.

    A pending invitation holds a seat in its role's bucket until it is
    accepted (the seat passes to the new member) or expires.
    """

    id = models.UUIDField(primary_key=True, default=uuid4, editable=False)
    company = models.ForeignKey(
        Company,
        on_delete=models.CASCADE,
        related_name="invitations",
    )
    invited_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        related_name="sent_invitations",
        null=True,
        blank=True,
    )
    email = models.EmailField()
    role = models.CharField(
        max_length=16,
        choices=RoleCode.choices,
        default=RoleCode.TECH,
    )
    status = models.CharField(
        max_length=16,
        choices=InvitationStatus.choices,
        default=InvitationStatus.PENDING,
    )
    expires_at = models.DateTimeField()
    token = models.UUIDField(default=uuid4, editable=False, unique=True)

    class Meta:
        ordering = ["-created"]
        indexes = [
            models.Index(
                fields=["company", "status"],
                name="users_invit_company_8e3f21_idx",
            ),
        ]

    def __str__(self):
        return f"Invitation to {self.company} for {self.email}"

    @classmethod
    def default_expiry(cls) -> datetime:
        return datetime.now(tz=UTC) + timedelta(days=INVITATION_EXPIRY_DAYS)
