from datetime import UTC
from datetime import datetime
from datetime import timedelta

from django.http import HttpResponse
from django.test import RequestFactory
from django.test import TestCase

from maintenancehub.billing.constants import SubscriptionStatus
from maintenancehub.billing.middleware import PaymentRestrictionMiddleware
from maintenancehub.users.constants import PackageType
from maintenancehub.users.tests.factories import CompanyFactory
from maintenancehub.users.tests.factories import UserFactory


class PaymentRestrictionMiddlewareTests(TestCase):
    def setUp(self):
        self.factory = RequestFactory()
        self.middleware = PaymentRestrictionMiddleware(lambda request: HttpResponse("ok"))

    def call(self, path, user):
        request = self.factory.get(path)
        request.user = user
        return self.middleware(request)

    def test_active_company_passes(self):
        user = UserFactory(company=CompanyFactory(paid=True))

        self.assertEqual(self.call("/api/members/", user).status_code, 200)

    def test_payment_restricted_is_blocked(self):
        company = CompanyFactory(
            paid=True,
            payment_restricted=True,
            subscription_status=SubscriptionStatus.PAST_DUE,
        )

        response = self.call("/api/members/", UserFactory(company=company))

        self.assertEqual(response.status_code, 402)
        self.assertIn(b"PAYMENT_RESTRICTED", response.content)

    def test_expired_demo_is_blocked(self):
        company = CompanyFactory(
            package_type=PackageType.DEMO,
            demo_expires_at=datetime.now(tz=UTC) - timedelta(days=1),
        )

        response = self.call("/api/members/", UserFactory(company=company))

        self.assertEqual(response.status_code, 402)
        self.assertIn(b"TRIAL_EXPIRED", response.content)

    def test_billing_paths_stay_reachable(self):
        company = CompanyFactory(paid=True, payment_restricted=True)

        response = self.call("/api/billing/portal/", UserFactory(company=company))

        self.assertEqual(response.status_code, 200)

    def test_superuser_passes(self):
        company = CompanyFactory(paid=True, payment_restricted=True)
        user = UserFactory(company=company, is_superuser=True)

        self.assertEqual(self.call("/api/members/", user).status_code, 200)

    def test_non_api_paths_pass(self):
        company = CompanyFactory(paid=True, payment_restricted=True)

        self.assertEqual(self.call("/health/", UserFactory(company=company)).status_code, 200)
