from datetime import UTC
from datetime import datetime
from datetime import timedelta

import pytest

from maintenancehub.billing.constants import SeatBucket
from maintenancehub.billing.seats import SeatCounts
from maintenancehub.billing.seats import bucket_for_role
from maintenancehub.billing.seats import bucket_usage
from maintenancehub.billing.seats import count_used
from maintenancehub.billing.seats import used_seats
from maintenancehub.users.constants import InvitationStatus
from maintenancehub.users.constants import RoleCode
from maintenancehub.users.tests.factories import CompanyFactory
from maintenancehub.users.tests.factories import InvitationFactory
from maintenancehub.users.tests.factories import UserFactory


class TestBucketForRole:
    def test_admin_and_manager_share_manager_bucket(self):
        assert bucket_for_role(RoleCode.ADMIN) == SeatBucket.MANAGER
        assert bucket_for_role(RoleCode.MANAGER) == SeatBucket.MANAGER

    def test_tech_and_missing_role_use_tech_bucket(self):
        assert bucket_for_role(RoleCode.TECH) == SeatBucket.TECH
        assert bucket_for_role(None) == SeatBucket.TECH
        assert bucket_for_role("") == SeatBucket.TECH


class TestSeatCounts:
    def test_monthly_cost(self):
        # $100 per manager seat, $50 per tech seat
        assert SeatCounts(manager=2, tech=3).monthly_cost_cents == 35000

    def test_total_and_dict(self):
        counts = SeatCounts(manager=1, tech=4)
        assert counts.total == 5
        assert counts.as_dict() == {"manager": 1, "tech": 4}


@pytest.mark.django_db
class TestUsedSeats:
    def test_counts_active_members_and_pending_invitations(self):
        company = CompanyFactory()
        UserFactory(company=company, role=RoleCode.ADMIN)
        UserFactory(company=company, role=RoleCode.MANAGER)
        UserFactory(company=company, role=RoleCode.TECH)
        InvitationFactory(company=company, role=RoleCode.MANAGER)
        InvitationFactory(company=company, role=RoleCode.TECH)

        assert used_seats(company.pk) == SeatCounts(manager=3, tech=2)

    def test_ignores_inactive_members_and_closed_invitations(self):
        company = CompanyFactory()
        UserFactory(company=company, role=RoleCode.TECH, is_active=False)
        InvitationFactory(
            company=company,
            role=RoleCode.TECH,
            status=InvitationStatus.ACCEPTED,
        )
        InvitationFactory(
            company=company,
            role=RoleCode.TECH,
            status=InvitationStatus.EXPIRED,
            expires_at=datetime.now(tz=UTC) - timedelta(days=1),
        )

        assert count_used(company.pk, SeatBucket.TECH) == 0

    def test_other_companies_are_not_counted(self):
        company = CompanyFactory()
        UserFactory(role=RoleCode.TECH)

        assert count_used(company.pk, SeatBucket.TECH) == 0

    def test_bucket_usage_reports_availability(self):
        company = CompanyFactory(purchased_tech_seats=3)
        UserFactory(company=company, role=RoleCode.TECH)
        InvitationFactory(company=company, role=RoleCode.TECH)

        usage = bucket_usage(company, SeatBucket.TECH)

        assert usage.active == 1
        assert usage.pending == 1
        assert usage.available == 1
        assert usage.as_dict()["unit_price_cents"] == 5000
