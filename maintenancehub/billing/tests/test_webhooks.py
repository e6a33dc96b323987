"""
Tests for Stripe webhook reconciliation.

These tests cover:
- checkout.session.completed linking the subscription
- invoice.paid / invoice.payment_failed
- customer.subscription.updated and .deleted
- Stale events for a replaced subscription
- Replays and the WebhookEvent log
"""

from unittest.mock import MagicMock

from django.test import TestCase

from maintenancehub.billing.constants import SubscriptionStatus
from maintenancehub.billing.constants import WebhookEventStatus
from maintenancehub.billing.models import WebhookEvent
from maintenancehub.billing.provider import decode_event
from maintenancehub.billing.tests.stripe_fakes import event_payload
from maintenancehub.billing.tests.stripe_fakes import invoice_payload
from maintenancehub.billing.tests.stripe_fakes import live_subscription
from maintenancehub.billing.tests.stripe_fakes import make_gateway
from maintenancehub.billing.tests.stripe_fakes import seed_catalog
from maintenancehub.billing.tests.stripe_fakes import subscription_payload
from maintenancehub.billing.webhooks import IGNORED
from maintenancehub.billing.webhooks import PROCESSED
from maintenancehub.billing.webhooks import WebhookReconciler
from maintenancehub.billing.webhooks import record_and_process
from maintenancehub.users.constants import PackageType
from maintenancehub.users.tests.factories import CompanyFactory


def checkout_payload(company_id, subscription="sub_test", customer="cus_test"):
    return event_payload(
        "checkout.session.completed",
        {
            "id": "cs_test",
            "object": "checkout.session",
            "customer": customer,
            "subscription": subscription,
            "client_reference_id": str(company_id),
            "payment_status": "paid",
            "status": "complete",
            "metadata": {"company_id": str(company_id), "manager_seats": "9"},
        },
    )


class CheckoutCompletedTests(TestCase):
    def setUp(self):
        seed_catalog()
        self.company = CompanyFactory(
            subscription_status=SubscriptionStatus.PENDING_PAYMENT,
            purchased_manager_seats=0,
            purchased_tech_seats=0,
        )
        self.gateway = make_gateway(live_subscription(manager=2, tech=5))
        self.reconciler = WebhookReconciler(self.gateway)

    def test_links_subscription_with_live_quantities(self):
        status = self.reconciler.handle(decode_event(checkout_payload(self.company.pk)))

        self.assertEqual(status, PROCESSED)
        self.company.refresh_from_db()
        self.assertEqual(self.company.stripe_subscription_id, "sub_test")
        self.assertEqual(self.company.stripe_customer_id, "cus_test")
        self.assertEqual(self.company.subscription_status, SubscriptionStatus.ACTIVE)
        # Quantities come from Stripe, not from the session metadata
        self.assertEqual(self.company.purchased_manager_seats, 2)
        self.assertEqual(self.company.purchased_tech_seats, 5)
        self.assertEqual(self.company.stripe_manager_item_id, "si_mgr")
        self.assertEqual(self.company.stripe_tech_item_id, "si_tech")
        self.assertTrue(self.company.is_live)
        self.assertEqual(self.company.package_type, PackageType.PAID)
        self.assertFalse(self.company.payment_restricted)

    def test_replay_leaves_same_state(self):
        payload = checkout_payload(self.company.pk)
        self.reconciler.handle(decode_event(payload))
        self.company.refresh_from_db()
        first = (
            self.company.purchased_manager_seats,
            self.company.purchased_tech_seats,
            self.company.subscription_status,
        )

        self.reconciler.handle(decode_event(payload))

        self.company.refresh_from_db()
        self.assertEqual(
            first,
            (
                self.company.purchased_manager_seats,
                self.company.purchased_tech_seats,
                self.company.subscription_status,
            ),
        )

    def test_falls_back_to_customer_lookup(self):
        self.company.stripe_customer_id = "cus_known"
        self.company.save()
        payload = checkout_payload("", customer="cus_known")

        status = self.reconciler.handle(decode_event(payload))

        self.assertEqual(status, PROCESSED)
        self.company.refresh_from_db()
        self.assertEqual(self.company.stripe_subscription_id, "sub_test")

    def test_unknown_company_ignored(self):
        status = self.reconciler.handle(
            decode_event(checkout_payload(999999, customer="cus_nobody")),
        )

        self.assertEqual(status, IGNORED)
        self.gateway.retrieve_subscription.assert_not_called()


class InvoiceEventTests(TestCase):
    def setUp(self):
        self.company = CompanyFactory(
            paid=True,
            stripe_subscription_id="sub_test",
            subscription_status=SubscriptionStatus.ACTIVE,
        )
        # Invoice events never need Stripe
        self.reconciler = WebhookReconciler(MagicMock())

    def test_payment_failed_restricts_immediately(self):
        payload = event_payload("invoice.payment_failed", invoice_payload("sub_test"))

        status = self.reconciler.handle(decode_event(payload))

        self.assertEqual(status, PROCESSED)
        self.company.refresh_from_db()
        self.assertEqual(self.company.subscription_status, SubscriptionStatus.PAST_DUE)
        self.assertTrue(self.company.payment_restricted)

    def test_invoice_paid_lifts_restriction(self):
        self.company.subscription_status = SubscriptionStatus.PAST_DUE
        self.company.payment_restricted = True
        self.company.save()
        payload = event_payload("invoice.paid", invoice_payload("sub_test"))

        self.reconciler.handle(decode_event(payload))

        self.company.refresh_from_db()
        self.assertEqual(self.company.subscription_status, SubscriptionStatus.ACTIVE)
        self.assertFalse(self.company.payment_restricted)

    def test_event_for_replaced_subscription_is_ignored(self):
        payload = event_payload("invoice.payment_failed", invoice_payload("sub_old"))

        status = self.reconciler.handle(decode_event(payload))

        self.assertEqual(status, IGNORED)
        self.company.refresh_from_db()
        self.assertEqual(self.company.subscription_status, SubscriptionStatus.ACTIVE)
        self.assertFalse(self.company.payment_restricted)


class SubscriptionUpdatedTests(TestCase):
    def setUp(self):
        seed_catalog()
        self.company = CompanyFactory(
            paid=True,
            stripe_subscription_id="sub_test",
            subscription_status=SubscriptionStatus.ACTIVE,
            purchased_manager_seats=1,
            purchased_tech_seats=1,
        )
        self.gateway = make_gateway()
        self.reconciler = WebhookReconciler(self.gateway)

    def handle(self, **live_kwargs):
        self.gateway.retrieve_subscription.return_value = live_subscription(**live_kwargs)
        payload = event_payload(
            "customer.subscription.updated",
            subscription_payload(**live_kwargs),
        )
        return self.reconciler.handle(decode_event(payload))

    def test_past_due_does_not_restrict(self):
        self.handle(status="past_due", manager=1, tech=1)

        self.company.refresh_from_db()
        self.assertEqual(self.company.subscription_status, SubscriptionStatus.PAST_DUE)
        self.assertFalse(self.company.payment_restricted)

    def test_past_due_keeps_existing_restriction(self):
        self.company.payment_restricted = True
        self.company.save()

        self.handle(status="past_due", manager=1, tech=1)

        self.company.refresh_from_db()
        self.assertTrue(self.company.payment_restricted)

    def test_quantities_changed_in_portal(self):
        self.handle(manager=3, tech=7)

        self.company.refresh_from_db()
        self.assertEqual(self.company.purchased_manager_seats, 3)
        self.assertEqual(self.company.purchased_tech_seats, 7)

    def test_live_state_wins_over_event_snapshot(self):
        self.gateway.retrieve_subscription.return_value = live_subscription(manager=4, tech=0)
        payload = event_payload(
            "customer.subscription.updated",
            subscription_payload(manager=1, tech=9),
        )

        self.reconciler.handle(decode_event(payload))

        self.company.refresh_from_db()
        self.assertEqual(self.company.purchased_manager_seats, 4)
        self.assertEqual(self.company.purchased_tech_seats, 0)

    def test_canceled_live_status_unlinks(self):
        self.handle(status="canceled", manager=1)

        self.company.refresh_from_db()
        self.assertEqual(self.company.stripe_subscription_id, "")
        self.assertEqual(self.company.subscription_status, SubscriptionStatus.CANCELED)

    def test_other_subscription_ignored(self):
        payload = event_payload(
            "customer.subscription.updated",
            subscription_payload("sub_other", manager=5),
        )

        status = self.reconciler.handle(decode_event(payload))

        self.assertEqual(status, IGNORED)
        self.gateway.retrieve_subscription.assert_not_called()


class SubscriptionDeletedTests(TestCase):
    def setUp(self):
        self.company = CompanyFactory(
            paid=True,
            stripe_subscription_id="sub_test",
            purchased_manager_seats=2,
            purchased_tech_seats=4,
        )
        self.reconciler = WebhookReconciler(MagicMock())

    def test_zeroes_seats_and_reverts_to_demo(self):
        payload = event_payload(
            "customer.subscription.deleted",
            subscription_payload(status="canceled"),
        )

        status = self.reconciler.handle(decode_event(payload))

        self.assertEqual(status, PROCESSED)
        self.company.refresh_from_db()
        self.assertEqual(self.company.stripe_subscription_id, "")
        self.assertEqual(self.company.stripe_manager_item_id, "")
        self.assertEqual(self.company.purchased_manager_seats, 0)
        self.assertEqual(self.company.purchased_tech_seats, 0)
        self.assertEqual(self.company.subscription_status, SubscriptionStatus.CANCELED)
        self.assertTrue(self.company.payment_restricted)
        self.assertFalse(self.company.is_live)
        self.assertEqual(self.company.package_type, PackageType.DEMO)
        self.assertFalse(self.company.has_active_access())

    def test_deleting_an_old_subscription_keeps_the_new_one(self):
        payload = event_payload(
            "customer.subscription.deleted",
            subscription_payload("sub_old", status="canceled"),
        )

        self.assertEqual(self.reconciler.handle(decode_event(payload)), IGNORED)
        self.company.refresh_from_db()
        self.assertEqual(self.company.purchased_tech_seats, 4)


class RecordAndProcessTests(TestCase):
    def setUp(self):
        self.company = CompanyFactory(paid=True, stripe_subscription_id="sub_test")

    def test_records_processed_event(self):
        payload = event_payload("invoice.payment_failed", invoice_payload("sub_test"))

        record = record_and_process(payload, WebhookReconciler(MagicMock()))

        self.assertEqual(record.status, WebhookEventStatus.PROCESSED)
        self.assertIsNotNone(record.processed_at)
        self.assertEqual(record.event_type, "invoice.payment_failed")
        self.company.refresh_from_db()
        self.assertEqual(self.company.subscription_status, SubscriptionStatus.PAST_DUE)
        self.assertTrue(self.company.payment_restricted)

    def test_redelivery_is_not_rerun(self):
        payload = event_payload("invoice.paid", invoice_payload("sub_test"))
        record_and_process(payload, WebhookReconciler(MagicMock()))
        reconciler = MagicMock()

        record = record_and_process(payload, reconciler)

        reconciler.handle.assert_not_called()
        self.assertEqual(record.status, WebhookEventStatus.PROCESSED)
        self.assertEqual(WebhookEvent.objects.count(), 1)

    def test_handler_failure_is_recorded_not_raised(self):
        reconciler = MagicMock()
        reconciler.handle.side_effect = RuntimeError("boom")
        payload = event_payload("invoice.paid", invoice_payload("sub_test"))

        with self.assertLogs("maintenancehub.billing.webhooks", level="ERROR"):
            record = record_and_process(payload, reconciler)

        self.assertEqual(record.status, WebhookEventStatus.FAILED)
        self.assertEqual(record.error, "boom")

    def test_failed_event_is_retried_on_redelivery(self):
        payload = event_payload("invoice.paid", invoice_payload("sub_test"))
        failing = MagicMock()
        failing.handle.side_effect = RuntimeError("boom")
        with self.assertLogs("maintenancehub.billing.webhooks", level="ERROR"):
            record_and_process(payload, failing)

        record = record_and_process(payload, WebhookReconciler(MagicMock()))

        self.assertEqual(record.status, WebhookEventStatus.PROCESSED)
        self.assertEqual(record.error, "")

    def test_unhandled_type_is_ignored(self):
        record = record_and_process(
            event_payload("customer.created", {"id": "cus_1"}),
            WebhookReconciler(MagicMock()),
        )
        self.assertEqual(record.status, WebhookEventStatus.IGNORED)
