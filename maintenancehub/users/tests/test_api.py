"""
Tests for the member and invitation API.
"""

from django.test import TestCase
from django.urls import reverse
from rest_framework.test import APIClient

from maintenancehub.billing.constants import SubscriptionStatus
from maintenancehub.users.constants import InvitationStatus
from maintenancehub.users.constants import RoleCode
from maintenancehub.users.models import Invitation
from maintenancehub.users.models import User
from maintenancehub.users.tests.factories import CompanyFactory
from maintenancehub.users.tests.factories import InvitationFactory
from maintenancehub.users.tests.factories import UserFactory


class MemberAPITests(TestCase):
    def setUp(self):
        self.company = CompanyFactory(
            paid=True,
            purchased_manager_seats=1,
            purchased_tech_seats=1,
        )
        self.admin = UserFactory(company=self.company, role=RoleCode.ADMIN)
        self.client = APIClient()
        self.client.force_authenticate(self.admin)

    def test_add_member(self):
        response = self.client.post(
            reverse("users:members"),
            {"email": "tech@example.com", "name": "Tech"},
            format="json",
        )

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["role"], RoleCode.TECH)
        self.assertTrue(User.objects.filter(email="tech@example.com").exists())

    def test_seat_exhausted_is_409_with_counts(self):
        response = self.client.post(
            reverse("users:members"),
            {"email": "mgr@example.com", "role": RoleCode.MANAGER},
            format="json",
        )

        self.assertEqual(response.status_code, 409)
        body = response.json()
        self.assertEqual(body["code"], "seat_limit_exceeded")
        self.assertEqual(body["used"], 1)
        self.assertEqual(body["purchased"], 1)
        self.assertEqual(body["bucket"], "manager")

    def test_invalid_role_is_400(self):
        response = self.client.post(
            reverse("users:members"),
            {"email": "x@example.com", "role": "owner"},
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "invalid_role")

    def test_invalid_email_is_400(self):
        response = self.client.post(
            reverse("users:members"),
            {"email": "not-an-email"},
            format="json",
        )

        self.assertEqual(response.status_code, 400)

    def test_list_members_open_to_members(self):
        tech = UserFactory(company=self.company, role=RoleCode.TECH)
        self.client.force_authenticate(tech)

        response = self.client.get(reverse("users:members"))

        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(response.json()), 2)

    def test_non_admin_cannot_add(self):
        tech = UserFactory(company=self.company, role=RoleCode.TECH)
        self.client.force_authenticate(tech)

        response = self.client.post(
            reverse("users:members"),
            {"email": "x@example.com"},
            format="json",
        )

        self.assertEqual(response.status_code, 403)

    def test_remove_member_frees_seat(self):
        tech = UserFactory(company=self.company, role=RoleCode.TECH)

        response = self.client.delete(reverse("users:member-detail", args=[tech.pk]))

        self.assertEqual(response.status_code, 204)
        tech.refresh_from_db()
        self.assertFalse(tech.is_active)

    def test_remove_member_of_other_company_is_404(self):
        stranger = UserFactory()

        response = self.client.delete(reverse("users:member-detail", args=[stranger.pk]))

        self.assertEqual(response.status_code, 404)

    def test_restricted_company_is_blocked(self):
        self.company.payment_restricted = True
        self.company.subscription_status = SubscriptionStatus.PAST_DUE
        self.company.save()
        # The middleware sees the session user, not the DRF one.
        self.client.force_login(self.admin)

        response = self.client.post(
            reverse("users:members"),
            {"email": "tech@example.com"},
            format="json",
        )

        self.assertEqual(response.status_code, 402)
        self.assertEqual(response.json()["code"], "PAYMENT_RESTRICTED")


class InvitationAPITests(TestCase):
    def setUp(self):
        self.company = CompanyFactory(paid=True, purchased_tech_seats=1)
        self.admin = UserFactory(company=self.company, role=RoleCode.ADMIN)
        self.client = APIClient()
        self.client.force_authenticate(self.admin)

    def test_create_invitation(self):
        response = self.client.post(
            reverse("users:invitations"),
            {"email": "new@example.com", "role": RoleCode.TECH},
            format="json",
        )

        self.assertEqual(response.status_code, 201)
        invitation = Invitation.objects.get()
        self.assertEqual(invitation.invited_by, self.admin)
        self.assertEqual(response.json()["token"], str(invitation.token))

    def test_invitation_holds_seat(self):
        InvitationFactory(company=self.company, role=RoleCode.TECH)

        response = self.client.post(
            reverse("users:invitations"),
            {"email": "new@example.com"},
            format="json",
        )

        self.assertEqual(response.status_code, 409)

    def test_accept_invitation(self):
        invitation = InvitationFactory(company=self.company, email="new@example.com")
        newcomer = UserFactory(username="new@example.com", company=None)
        self.client.force_authenticate(newcomer)

        response = self.client.post(
            reverse("users:invitation-accept", args=[invitation.token]),
        )

        self.assertEqual(response.status_code, 200)
        newcomer.refresh_from_db()
        self.assertEqual(newcomer.company, self.company)
        invitation.refresh_from_db()
        self.assertEqual(invitation.status, InvitationStatus.ACCEPTED)

    def test_accept_invitation_for_someone_else_is_404(self):
        invitation = InvitationFactory(company=self.company, email="new@example.com")
        self.client.force_authenticate(UserFactory(company=None))

        response = self.client.post(
            reverse("users:invitation-accept", args=[invitation.token]),
        )

        self.assertEqual(response.status_code, 404)
