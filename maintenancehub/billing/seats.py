"""
Seat ledger math.

A seat is consumed by an active member or by a pending invitation in the
member's role bucket:

    used(bucket) = active members in bucket + pending invitations in bucket

These helpers always read from the database so callers get the current
count, never a value supplied by a client.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from maintenancehub.billing.constants import ROLE_BUCKETS
from maintenancehub.billing.constants import SEAT_PRICE_CENTS
from maintenancehub.billing.constants import SeatBucket
from maintenancehub.users.constants import InvitationStatus
from maintenancehub.users.constants import RoleCode

if TYPE_CHECKING:
    from maintenancehub.users.models import Company


@dataclass(frozen=True)
class SeatCounts:
    """Seat quantities per bucket."""

    manager: int = 0
    tech: int = 0

    def get(self, bucket: str) -> int:
        if bucket == SeatBucket.MANAGER:
            return self.manager
        return self.tech

    @property
    def total(self) -> int:
        return self.manager + self.tech

    @property
    def monthly_cost_cents(self) -> int:
        return sum(self.get(bucket) * SEAT_PRICE_CENTS[bucket] for bucket in SeatBucket)

    @classmethod
    def purchased(cls, company: Company) -> SeatCounts:
        return cls(
            manager=company.purchased_manager_seats,
            tech=company.purchased_tech_seats,
        )

    def as_dict(self) -> dict[str, int]:
        return {SeatBucket.MANAGER.value: self.manager, SeatBucket.TECH.value: self.tech}


def bucket_for_role(role: str | None) -> SeatBucket:
    """Map a role to its seat bucket. Missing or unknown roles count as tech."""
    return ROLE_BUCKETS.get(role or RoleCode.TECH, SeatBucket.TECH)


def roles_in_bucket(bucket: str) -> list[str]:
    return [role for role, role_bucket in ROLE_BUCKETS.items() if role_bucket == bucket]


def count_active_members(company_id, bucket: str) -> int:
    from maintenancehub.users.models import User

    return User.objects.filter(
        company_id=company_id,
        is_active=True,
        role__in=roles_in_bucket(bucket),
    ).count()


def count_pending_invitations(company_id, bucket: str) -> int:
    from maintenancehub.users.models import Invitation

    return Invitation.objects.filter(
        company_id=company_id,
        status=InvitationStatus.PENDING,
        role__in=roles_in_bucket(bucket),
    ).count()


def count_used(company_id, bucket: str) -> int:
    return count_active_members(company_id, bucket) + count_pending_invitations(
        company_id,
        bucket,
    )


def used_seats(company_id) -> SeatCounts:
    return SeatCounts(
        manager=count_used(company_id, SeatBucket.MANAGER),
        tech=count_used(company_id, SeatBucket.TECH),
    )


@dataclass(frozen=True)
class BucketUsage:
    bucket: str
    purchased: int
    active: int
    pending: int

    @property
    def used(self) -> int:
        return self.active + self.pending

    @property
    def available(self) -> int:
        return max(0, self.purchased - self.used)

    def as_dict(self) -> dict:
        return {
            "purchased": self.purchased,
            "used": self.used,
            "active": self.active,
            "pending": self.pending,
            "available": self.available,
            "unit_price_cents": SEAT_PRICE_CENTS[self.bucket],
        }


def bucket_usage(company: Company, bucket: str) -> BucketUsage:
    return BucketUsage(
        bucket=bucket,
        purchased=company.purchased_seats(bucket),
        active=count_active_members(company.pk, bucket),
        pending=count_pending_invitations(company.pk, bucket),
    )
