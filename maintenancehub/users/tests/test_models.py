from datetime import UTC
from datetime import datetime
from datetime import timedelta

import pytest

from maintenancehub.billing.constants import SeatBucket
from maintenancehub.billing.constants import SubscriptionStatus
from maintenancehub.users.constants import PackageType
from maintenancehub.users.models import Company
from maintenancehub.users.models import Invitation

pytestmark = pytest.mark.django_db


def test_slug_from_name():
    company = Company.objects.create(name="Acme Plant 3")
    assert company.slug == "acme-plant-3"


def test_same_name_gets_a_numbered_slug():
    first = Company.objects.create(name="Acme Plant")
    second = Company.objects.create(name="Acme Plant")
    third = Company.objects.create(name="Acme Plant")

    assert first.slug == "acme-plant"
    assert second.slug == "acme-plant-2"
    assert third.slug == "acme-plant-3"


def test_name_without_slug_characters_still_gets_a_slug():
    first = Company.objects.create(name="!!!")
    second = Company.objects.create(name="!!!")

    assert first.slug
    assert second.slug
    assert first.slug != second.slug


def test_new_demo_company_expires_after_configured_days(settings):
    settings.DEMO_DURATION_DAYS = 30
    before = datetime.now(tz=UTC)

    company = Company.objects.create(name="Demo Co")

    assert company.demo_expires_at >= before + timedelta(days=30)
    assert company.has_active_access()


def test_paid_company_gets_no_demo():
    company = Company.objects.create(name="Paid Co", package_type=PackageType.PAID)
    assert company.demo_expires_at is None
    assert not company.has_active_access()


def test_active_subscription_grants_access():
    company = Company.objects.create(
        name="Sub Co",
        package_type=PackageType.PAID,
        stripe_subscription_id="sub_1",
        subscription_status=SubscriptionStatus.TRIALING,
    )
    assert company.has_active_subscription
    assert company.has_active_access()


def test_purchased_seats_and_items_per_bucket():
    company = Company(
        purchased_manager_seats=2,
        purchased_tech_seats=5,
        stripe_manager_item_id="si_m",
        stripe_tech_item_id="si_t",
    )
    assert company.purchased_seats(SeatBucket.MANAGER) == 2
    assert company.purchased_seats(SeatBucket.TECH) == 5
    assert company.item_id(SeatBucket.MANAGER) == "si_m"
    assert company.item_id(SeatBucket.TECH) == "si_t"


def test_invitation_default_expiry_is_a_week():
    expiry = Invitation.default_expiry()
    delta = expiry - datetime.now(tz=UTC)
    assert timedelta(days=6, hours=23) < delta <= timedelta(days=7)
