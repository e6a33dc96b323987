"""
Tests for seat count changes and cost previews.

These tests cover:
- Seat rules (minimum manager seat, committed usage)
- Companies without a subscription (preview only)
- Proration behavior for increases and decreases
- Line item patches (update, create, delete)
- Declined cards and provider failures
- Splitting preview lines into proration and next cycle
"""

import stripe
from django.test import TestCase

from maintenancehub.billing.admission import AdmissionController
from maintenancehub.billing.constants import ProrationBehavior
from maintenancehub.billing.errors import PaymentFailedError
from maintenancehub.billing.errors import ProviderError
from maintenancehub.billing.errors import ValidationError
from maintenancehub.billing.provider import InvoicePreview
from maintenancehub.billing.seat_changes import RejectionCode
from maintenancehub.billing.seat_changes import SeatChangeOutcome
from maintenancehub.billing.seat_changes import SeatChangeService
from maintenancehub.billing.seat_changes import parse_seat_counts
from maintenancehub.billing.seats import SeatCounts
from maintenancehub.billing.tests.stripe_fakes import MANAGER_PRICE
from maintenancehub.billing.tests.stripe_fakes import PERIOD_END
from maintenancehub.billing.tests.stripe_fakes import TECH_PRICE
from maintenancehub.billing.tests.stripe_fakes import live_subscription
from maintenancehub.billing.tests.stripe_fakes import make_gateway
from maintenancehub.billing.tests.stripe_fakes import seed_catalog
from maintenancehub.users.constants import RoleCode
from maintenancehub.users.tests.factories import CompanyFactory
from maintenancehub.users.tests.factories import InvitationFactory
from maintenancehub.users.tests.factories import UserFactory


class ParseSeatCountsTests(TestCase):
    def test_accepts_ints_and_numeric_strings(self):
        self.assertEqual(
            parse_seat_counts({"manager_seats": "2", "tech_seats": 5}),
            SeatCounts(manager=2, tech=5),
        )

    def test_rejects_negative_missing_and_garbage(self):
        for data in [
            {"manager_seats": -1, "tech_seats": 0},
            {"manager_seats": 1},
            {"manager_seats": "two", "tech_seats": 0},
            {"manager_seats": True, "tech_seats": 0},
        ]:
            with self.assertRaises(ValidationError) as ctx:
                parse_seat_counts(data)
            self.assertEqual(ctx.exception.code, "invalid_seat_count")


class SeatRuleTests(TestCase):
    def setUp(self):
        seed_catalog()
        self.company = CompanyFactory(paid=True, purchased_manager_seats=2, purchased_tech_seats=2)
        self.gateway = make_gateway(live_subscription(manager=2, tech=2))
        self.service = SeatChangeService(self.gateway)

    def test_at_least_one_manager_seat(self):
        result = self.service.update_seats(self.company, SeatCounts(manager=0, tech=3))

        self.assertEqual(result.outcome, SeatChangeOutcome.REJECTED)
        self.assertEqual(result.code, RejectionCode.MIN_MANAGER_SEAT_REQUIRED)
        self.gateway.modify_subscription.assert_not_called()

    def test_cannot_go_below_members_and_pending_invitations(self):
        UserFactory(company=self.company, role=RoleCode.TECH)
        InvitationFactory(company=self.company, role=RoleCode.TECH)

        result = self.service.update_seats(self.company, SeatCounts(manager=2, tech=1))

        self.assertEqual(result.outcome, SeatChangeOutcome.REJECTED)
        self.assertEqual(result.code, RejectionCode.BELOW_COMMITTED_USAGE)
        self.assertEqual(result.min_required, {"manager": 0, "tech": 2})
        self.assertFalse(result.as_dict()["success"])
        self.gateway.modify_subscription.assert_not_called()

    def test_negative_counts_raise(self):
        with self.assertRaises(ValidationError):
            self.service.update_seats(self.company, SeatCounts(manager=1, tech=-1))


class UpdateSeatsTests(TestCase):
    def setUp(self):
        seed_catalog()
        self.company = CompanyFactory(
            paid=True,
            stripe_subscription_id="sub_test",
            stripe_manager_item_id="si_mgr",
            stripe_tech_item_id="si_tech",
            purchased_manager_seats=2,
            purchased_tech_seats=2,
        )
        self.gateway = make_gateway(live_subscription(manager=2, tech=2))
        self.service = SeatChangeService(self.gateway)

    def test_no_subscription_is_preview_only(self):
        company = CompanyFactory(purchased_manager_seats=1, purchased_tech_seats=0)

        result = self.service.update_seats(company, SeatCounts(manager=2, tech=4))

        self.assertEqual(result.outcome, SeatChangeOutcome.PREVIEW_ONLY)
        self.assertEqual(result.monthly_cost_cents, 40000)
        self.assertTrue(result.as_dict()["requires_checkout"])
        company.refresh_from_db()
        self.assertEqual(company.purchased_manager_seats, 1)
        self.gateway.modify_subscription.assert_not_called()

    def test_unchanged_counts_make_no_call(self):
        result = self.service.update_seats(self.company, SeatCounts(manager=2, tech=2))

        self.assertEqual(result.outcome, SeatChangeOutcome.APPLIED)
        self.gateway.retrieve_subscription.assert_not_called()

    def test_increase_invoices_immediately(self):
        self.gateway.modify_subscription.return_value = live_subscription(manager=3, tech=2)

        result = self.service.update_seats(self.company, SeatCounts(manager=3, tech=2))

        self.assertEqual(result.outcome, SeatChangeOutcome.APPLIED)
        self.assertEqual(result.proration_behavior, ProrationBehavior.ALWAYS_INVOICE)
        kwargs = self.gateway.modify_subscription.call_args.kwargs
        self.assertEqual(kwargs["proration_behavior"], ProrationBehavior.ALWAYS_INVOICE)
        self.assertEqual(
            kwargs["items"],
            [
                {"id": "si_mgr", "price": MANAGER_PRICE, "quantity": 3},
                {"id": "si_tech", "price": TECH_PRICE, "quantity": 2},
            ],
        )
        self.assertTrue(kwargs["idempotency_key"].startswith(f"seat-update-{self.company.pk}-"))
        self.company.refresh_from_db()
        self.assertEqual(self.company.purchased_manager_seats, 3)

    def test_decrease_has_no_proration(self):
        self.gateway.modify_subscription.return_value = live_subscription(manager=2, tech=0)

        result = self.service.update_seats(self.company, SeatCounts(manager=2, tech=0))

        self.assertEqual(result.proration_behavior, ProrationBehavior.NONE)
        kwargs = self.gateway.modify_subscription.call_args.kwargs
        self.assertIn({"id": "si_tech", "deleted": True}, kwargs["items"])
        self.company.refresh_from_db()
        self.assertEqual(self.company.purchased_tech_seats, 0)
        self.assertEqual(self.company.stripe_tech_item_id, "")

    def test_missing_item_is_created(self):
        self.company.stripe_tech_item_id = ""
        self.company.purchased_tech_seats = 0
        self.company.save()
        self.gateway.modify_subscription.return_value = live_subscription(
            manager=2,
            tech=1,
            tech_item="si_created",
        )

        self.service.update_seats(self.company, SeatCounts(manager=2, tech=1))

        kwargs = self.gateway.modify_subscription.call_args.kwargs
        self.assertIn({"price": TECH_PRICE, "quantity": 1}, kwargs["items"])
        self.company.refresh_from_db()
        self.assertEqual(self.company.stripe_tech_item_id, "si_created")

    def test_canceling_subscription_rejected(self):
        self.gateway.retrieve_subscription.return_value = live_subscription(
            manager=2,
            tech=2,
            cancel_at_period_end=True,
        )

        result = self.service.update_seats(self.company, SeatCounts(manager=3, tech=2))

        self.assertEqual(result.code, RejectionCode.SUBSCRIPTION_CANCELING)
        self.gateway.modify_subscription.assert_not_called()

    def test_declined_card_keeps_seats(self):
        self.gateway.modify_subscription.side_effect = stripe.CardError(
            "Your card was declined.",
            param=None,
            code="card_declined",
        )

        result = self.service.update_seats(self.company, SeatCounts(manager=4, tech=2))

        self.assertEqual(result.outcome, SeatChangeOutcome.PAYMENT_FAILED)
        self.assertEqual(result.code, RejectionCode.PAYMENT_FAILED)
        self.assertEqual(result.seats, SeatCounts(manager=2, tech=2))
        self.company.refresh_from_db()
        self.assertEqual(self.company.purchased_manager_seats, 2)
        error = result.to_error()
        self.assertIsInstance(error, PaymentFailedError)
        self.assertEqual(error.status_code, 402)
        self.assertEqual(error.code, "PAYMENT_FAILED")

    def test_other_stripe_errors_become_provider_error(self):
        self.gateway.retrieve_subscription.side_effect = stripe.APIConnectionError("down")

        with self.assertRaises(ProviderError):
            self.service.update_seats(self.company, SeatCounts(manager=3, tech=2))


class UsageGrowthDuringUpdateTests(TestCase):
    """Members admitted while Stripe is being called still count."""

    def setUp(self):
        seed_catalog()
        self.company = CompanyFactory(
            paid=True,
            stripe_subscription_id="sub_test",
            stripe_manager_item_id="si_mgr",
            stripe_tech_item_id="si_tech",
            purchased_manager_seats=3,
            purchased_tech_seats=1,
        )
        UserFactory(company=self.company, role=RoleCode.ADMIN)
        UserFactory(company=self.company, role=RoleCode.MANAGER)
        self.gateway = make_gateway(live_subscription(manager=3, tech=1))
        self.service = SeatChangeService(self.gateway)

    def test_invitation_admitted_mid_update_blocks_the_decrease(self):
        responses = [live_subscription(manager=2, tech=1), live_subscription(manager=3, tech=1)]
        admitted = []

        def modify(*args, **kwargs):
            if not admitted:
                admitted.append(
                    AdmissionController().create_invitation(
                        self.company.pk,
                        RoleCode.MANAGER,
                        email="late@example.com",
                    ),
                )
            return responses.pop(0)

        self.gateway.modify_subscription.side_effect = modify

        with self.assertLogs("maintenancehub.billing.seat_changes", level="WARNING"):
            result = self.service.update_seats(self.company, SeatCounts(manager=2, tech=1))

        self.assertTrue(admitted[0].granted)
        self.assertEqual(result.outcome, SeatChangeOutcome.REJECTED)
        self.assertEqual(result.code, RejectionCode.BELOW_COMMITTED_USAGE)
        self.assertEqual(result.min_required, {"manager": 3, "tech": 0})
        self.company.refresh_from_db()
        self.assertEqual(self.company.purchased_manager_seats, 3)

        # Stripe is put back to the previous counts, without proration
        self.assertEqual(self.gateway.modify_subscription.call_count, 2)
        kwargs = self.gateway.modify_subscription.call_args.kwargs
        self.assertEqual(kwargs["proration_behavior"], ProrationBehavior.NONE)
        self.assertEqual(
            kwargs["items"],
            [
                {"id": "si_mgr", "price": MANAGER_PRICE, "quantity": 3},
                {"id": "si_tech", "price": TECH_PRICE, "quantity": 1},
            ],
        )
        self.assertTrue(kwargs["idempotency_key"].startswith(f"seat-restore-{self.company.pk}-"))

    def test_decrease_that_still_fits_is_applied(self):
        self.gateway.modify_subscription.return_value = live_subscription(manager=2, tech=3)
        InvitationFactory(company=self.company, role=RoleCode.TECH)

        result = self.service.update_seats(self.company, SeatCounts(manager=2, tech=3))

        self.assertEqual(result.outcome, SeatChangeOutcome.APPLIED)
        self.assertEqual(self.gateway.modify_subscription.call_count, 1)
        self.company.refresh_from_db()
        self.assertEqual(self.company.purchased_manager_seats, 2)
        self.assertEqual(self.company.purchased_tech_seats, 3)


class PreviewCostTests(TestCase):
    def setUp(self):
        seed_catalog()
        self.company = CompanyFactory(
            paid=True,
            stripe_customer_id="cus_test",
            stripe_subscription_id="sub_test",
            stripe_manager_item_id="si_mgr",
            stripe_tech_item_id="",
            purchased_manager_seats=2,
            purchased_tech_seats=0,
        )
        self.gateway = make_gateway(live_subscription(manager=2))
        self.service = SeatChangeService(self.gateway)

    def preview_with_lines(self, lines):
        self.gateway.preview_invoice.return_value = InvoicePreview.model_validate(
            {
                "lines": {"data": lines},
                "subtotal": sum(line["amount"] for line in lines),
                "total": sum(line["amount"] for line in lines),
            },
        )

    def test_manager_two_to_three_mid_cycle(self):
        self.preview_with_lines(
            [
                {
                    "description": "Remaining time on 1 x Manager/Admin License",
                    "amount": 4500,
                    "period": {"start": PERIOD_END - 1000, "end": PERIOD_END},
                },
                {
                    "description": "3 x Manager/Admin License",
                    "amount": 30000,
                    "period": {"start": PERIOD_END, "end": PERIOD_END + 2_592_000},
                },
            ],
        )

        preview = self.service.preview_cost(self.company, SeatCounts(manager=3, tech=0))

        self.assertEqual(len(preview.proration_lines), 1)
        self.assertEqual(len(preview.next_cycle_lines), 1)
        self.assertEqual(preview.immediate_charge_cents, 4500)
        self.assertEqual(preview.new_monthly_total_cents, 30000)
        kwargs = self.gateway.preview_invoice.call_args.kwargs
        self.assertEqual(kwargs["proration_behavior"], ProrationBehavior.CREATE_PRORATIONS)
        self.gateway.modify_subscription.assert_not_called()

    def test_net_credit_is_not_charged(self):
        self.preview_with_lines(
            [
                {
                    "description": "Unused time",
                    "amount": -3000,
                    "parent": {
                        "type": "subscription_item_details",
                        "subscription_item_details": {"proration": True},
                    },
                },
            ],
        )

        preview = self.service.preview_cost(self.company, SeatCounts(manager=1, tech=0))

        self.assertEqual(preview.immediate_charge_cents, 0)
        self.assertEqual(preview.proration_total_cents, -3000)

    def test_without_subscription_returns_monthly_total_only(self):
        company = CompanyFactory()

        preview = self.service.preview_cost(company, SeatCounts(manager=1, tech=2))

        self.assertEqual(
            preview.as_dict(),
            {
                "immediate_charge_cents": 0,
                "new_monthly_total_cents": 20000,
                "proration_details": None,
            },
        )
        self.gateway.preview_invoice.assert_not_called()
