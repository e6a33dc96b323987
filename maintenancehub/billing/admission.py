"""
Seat admission.

Adding a member or creating an invitation consumes one seat in the role's
bucket. The check and the consuming write run in one transaction that holds
the company row lock, so two concurrent admissions for the same company can
never both see the last free seat.

No Stripe call happens on this path. Seat *counts* are changed separately
through SeatChangeService, so Stripe latency never blocks member creation.

Failures are returned as typed results rather than raised, since running out
of seats is an everyday outcome and the caller needs the exact counts:

    result = AdmissionController().create_invitation(
        company.pk, RoleCode.MANAGER, email="ana@example.com",
    )
    if not result.granted:
        raise result.to_error()
    invitation = result.value
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC
from datetime import datetime
from typing import TYPE_CHECKING
from typing import Any

from django.db import transaction

from maintenancehub.billing.errors import NoActiveAccessError
from maintenancehub.billing.errors import NotFoundError
from maintenancehub.billing.errors import SeatExhaustedError
from maintenancehub.billing.errors import ValidationError
from maintenancehub.billing.seats import bucket_for_role
from maintenancehub.billing.seats import count_used
from maintenancehub.users.constants import InvitationStatus
from maintenancehub.users.constants import RoleCode
from maintenancehub.users.models import Company
from maintenancehub.users.models import Invitation
from maintenancehub.users.models import User

if TYPE_CHECKING:
    from maintenancehub.billing.errors import BillingError

logger = logging.getLogger(__name__)


# =============================================================================
# Results
# =============================================================================


@dataclass(frozen=True)
class SeatGranted:
    bucket: str
    value: Any = None

    granted = True


@dataclass(frozen=True)
class SeatExhausted:
    used: int
    purchased: int
    bucket: str

    granted = False

    @property
    def message(self) -> str:
        label = "manager/admin" if self.bucket == "manager" else "technician"
        return (
            f"All {label} seats are in use ({self.used} of {self.purchased}). "
            f"Purchase additional {label} seats to add more members."
        )

    def to_error(self) -> BillingError:
        return SeatExhaustedError(
            self.message,
            used=self.used,
            purchased=self.purchased,
            bucket=self.bucket,
        )


@dataclass(frozen=True)
class NoActiveAccess:
    subscription_status: str

    granted = False

    def to_error(self) -> BillingError:
        return NoActiveAccessError()


@dataclass(frozen=True)
class CompanyNotFound:
    company_id: Any

    granted = False

    def to_error(self) -> BillingError:
        return NotFoundError("Company not found.", code="company_not_found")


AdmissionResult = SeatGranted | SeatExhausted | NoActiveAccess | CompanyNotFound


def normalize_role(role: str | None) -> str:
    """Missing role means tech. Anything else must be a known role."""
    if not role:
        return RoleCode.TECH
    if role not in RoleCode.values:
        raise ValidationError(f"Unknown role '{role}'.", code="invalid_role")
    return role


# =============================================================================
# Controller
# =============================================================================


class AdmissionController:
    """
    Check-and-reserve seats for members and invitations.

    Every public method locks the company row with ``select_for_update``
    before reading seat usage, and performs its write before the lock is
    released.
    """

    def reserve_seat(
        self,
        company_id,
        role: str | None,
        *,
        on_grant: Callable[[Company], Any] | None = None,
    ) -> AdmissionResult:
        """
        Reserve one seat in the bucket of ``role``.

        ``on_grant`` is the consuming write. It runs inside the locked
        transaction only when a seat is free, and its return value is
        carried on SeatGranted.value. If it raises, the transaction rolls
        back and the exception propagates.
        """
        bucket = bucket_for_role(role)

        with transaction.atomic():
            company = Company.objects.select_for_update().filter(pk=company_id).first()
            if company is None:
                return CompanyNotFound(company_id=company_id)

            # Access is checked first: a lapsed company gets no seats even if
            # some are free.
            if not company.has_active_access():
                logger.info(
                    "Admission denied for company=%s: no active access (status=%s)",
                    company.pk,
                    company.subscription_status,
                )
                return NoActiveAccess(subscription_status=company.subscription_status)

            used = count_used(company.pk, bucket)
            purchased = company.purchased_seats(bucket)
            if used >= purchased:
                logger.info(
                    "Admission denied for company=%s: %s seats exhausted (%s/%s)",
                    company.pk,
                    bucket,
                    used,
                    purchased,
                )
                return SeatExhausted(used=used, purchased=purchased, bucket=bucket)

            value = on_grant(company) if on_grant is not None else None

        return SeatGranted(bucket=bucket, value=value)

    def add_member(
        self,
        company_id,
        role: str | None,
        *,
        email: str,
        name: str = "",
    ) -> AdmissionResult:
        """Create an active user in the company if a seat is free."""
        role = normalize_role(role)
        email = email.strip().lower()

        def create_user(company: Company) -> User:
            if User.objects.filter(username__iexact=email).exists():
                raise ValidationError(
                    f"A user with email {email} already exists.",
                    code="duplicate_user",
                )
            user = User(
                username=email,
                email=email,
                name=name,
                company=company,
                role=role,
                is_active=True,
            )
            user.set_unusable_password()
            user.save()
            return user

        result = self.reserve_seat(company_id, role, on_grant=create_user)
        if result.granted:
            logger.info("Added %s member %s to company=%s", role, email, company_id)
        return result

    def create_invitation(
        self,
        company_id,
        role: str | None,
        *,
        email: str,
        invited_by: User | None = None,
    ) -> AdmissionResult:
        """Create a pending invitation if a seat is free. It holds that seat."""
        role = normalize_role(role)
        email = email.strip().lower()

        def create(company: Company) -> Invitation:
            if User.objects.filter(
                company=company,
                email__iexact=email,
                is_active=True,
            ).exists():
                raise ValidationError(
                    f"{email} is already a member of this company.",
                    code="already_member",
                )
            if Invitation.objects.filter(
                company=company,
                email__iexact=email,
                status=InvitationStatus.PENDING,
            ).exists():
                raise ValidationError(
                    f"An invitation for {email} is already pending.",
                    code="duplicate_invitation",
                )
            return Invitation.objects.create(
                company=company,
                email=email,
                role=role,
                invited_by=invited_by,
                expires_at=Invitation.default_expiry(),
            )

        result = self.reserve_seat(company_id, role, on_grant=create)
        if result.granted:
            logger.info(
                "Created %s invitation for %s in company=%s",
                role,
                email,
                company_id,
            )
        return result

    def accept_invitation(self, invitation: Invitation, user: User) -> User:
        """
        Turn a pending invitation into a membership.

        The invitation already holds a seat in its bucket, so no new seat is
        checked: the seat passes from the invitation to the member.

        Raises:
            ValidationError: If the invitation is not pending, has expired, or
                the user belongs to another company.
        """
        expired = False
        with transaction.atomic():
            Company.objects.select_for_update().get(pk=invitation.company_id)
            invitation = Invitation.objects.select_for_update().get(pk=invitation.pk)

            if invitation.status != InvitationStatus.PENDING:
                raise ValidationError(
                    "This invitation is no longer valid.",
                    code="invitation_not_pending",
                )
            if user.company_id and user.company_id != invitation.company_id:
                raise ValidationError(
                    "You already belong to another company.",
                    code="other_company",
                )
            if user.company_id == invitation.company_id and user.is_active:
                raise ValidationError(
                    "You are already a member of this company.",
                    code="already_member",
                )

            if invitation.expires_at <= datetime.now(tz=UTC):
                # Frees the held seat. Committed even though we reject.
                invitation.status = InvitationStatus.EXPIRED
                invitation.save(update_fields=["status", "modified"])
                expired = True
            else:
                user.company_id = invitation.company_id
                user.role = invitation.role
                user.is_active = True
                user.save(update_fields=["company", "role", "is_active"])
                invitation.status = InvitationStatus.ACCEPTED
                invitation.save(update_fields=["status", "modified"])

        if expired:
            raise ValidationError(
                "This invitation has expired.",
                code="invitation_expired",
            )

        logger.info(
            "User %s accepted invitation %s for company=%s",
            user.pk,
            invitation.pk,
            invitation.company_id,
        )
        return user

    def remove_member(self, member: User, *, acting_user: User | None = None) -> User:
        """
        Deactivate a member, freeing their seat.

        The last active admin of a company cannot be removed, so that
        someone is always left to manage members and billing.
        """
        if acting_user is not None and acting_user.pk == member.pk:
            raise ValidationError(
                "You cannot remove your own account.",
                code="cannot_remove_self",
            )

        with transaction.atomic():
            Company.objects.select_for_update().get(pk=member.company_id)
            member = User.objects.select_for_update().get(pk=member.pk)
            if not member.is_active:
                return member

            if member.role == RoleCode.ADMIN:
                other_admins = (
                    User.objects.filter(
                        company_id=member.company_id,
                        role=RoleCode.ADMIN,
                        is_active=True,
                    )
                    .exclude(pk=member.pk)
                    .exists()
                )
                if not other_admins:
                    raise ValidationError(
                        "A company must keep at least one admin.",
                        code="last_admin_required",
                    )

            member.is_active = False
            member.save(update_fields=["is_active"])

        logger.info("Removed member %s from company=%s", member.pk, member.company_id)
        return member
