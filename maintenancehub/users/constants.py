from django.db import models
from django.utils.translation import gettext_lazy as _


class RoleCode(models.TextChoices):
    """
    Enum for member roles within a company.

    Roles also decide which seat bucket a member consumes. ADMIN and MANAGER
    share the manager bucket, TECH has its own.
    """

    # Company administrator. Manages members, invitations and billing.
    ADMIN = "admin", _("Admin")

    # Maintenance manager. Plans work but cannot change billing.
    MANAGER = "manager", _("Manager")

    # Technician executing work orders.
    TECH = "tech", _("Technician")


class PackageType(models.TextChoices):
    DEMO = "demo", _("Demo")
    PAID = "paid", _("Paid")


class InvitationStatus(models.TextChoices):
    PENDING = "pending", _("Pending")
    ACCEPTED = "accepted", _("Accepted")
    EXPIRED = "expired", _("Expired")


# Roles allowed to change seats, start checkout and open the billing portal.
BILLING_ADMIN_ROLES = {RoleCode.ADMIN}

INVITATION_EXPIRY_DAYS = 7
