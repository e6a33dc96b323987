"""
Billing API views.

Views in this module:
- CheckoutView: Start a Stripe Checkout for the first seat purchase
- SubscriptionStatusView: Live subscription status
- SeatSummaryView / SeatBreakdownView: Seat usage and cost
- SeatPreviewView / SeatUpdateView: Preview and apply seat count changes
- SyncSubscriptionView: Catch up with Stripe after checkout
- CustomerPortalView: Stripe Customer Portal URL
- DemoStatusView: Demo expiry information
- StripeWebhookView: Signed Stripe events

Business-rule failures come back from the services as typed results and are
rendered here. BillingError exceptions are turned into
``{"detail": ..., "code": ...}`` responses with the error's HTTP status.
"""

from __future__ import annotations

import logging

import stripe
from django.conf import settings
from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from maintenancehub.billing.errors import BillingError
from maintenancehub.billing.provider import verify_event
from maintenancehub.billing.seat_changes import SeatChangeOutcome
from maintenancehub.billing.seat_changes import SeatChangeService
from maintenancehub.billing.seat_changes import parse_seat_counts
from maintenancehub.billing.services import BillingService
from maintenancehub.billing.webhooks import record_and_process
from maintenancehub.users.scoping import resolve_company

logger = logging.getLogger(__name__)

SEAT_CHANGE_STATUS = {
    SeatChangeOutcome.APPLIED: status.HTTP_200_OK,
    SeatChangeOutcome.PREVIEW_ONLY: status.HTTP_200_OK,
    SeatChangeOutcome.REJECTED: status.HTTP_400_BAD_REQUEST,
}


def canonical_base_url(request) -> str:
    """CUSTOM_DOMAIN when configured, else the caller's origin."""
    if settings.CUSTOM_DOMAIN:
        return f"https://{settings.CUSTOM_DOMAIN}"
    origin = request.headers.get("Origin")
    if origin:
        return origin.rstrip("/")
    return request.build_absolute_uri("/").rstrip("/")


class BillingAPIView(APIView):
    """Authenticated billing endpoint that renders BillingError responses."""

    permission_classes = [IsAuthenticated]
    billing_admin_required = False

    def get_company(self, request):
        company_id = request.query_params.get("company_id")
        if company_id is None and request.method == "POST":
            company_id = request.data.get("company_id")
        return resolve_company(
            request.user,
            company_id,
            billing_admin=self.billing_admin_required,
        )

    def handle_exception(self, exc):
        if isinstance(exc, BillingError):
            return Response(exc.as_dict(), status=exc.status_code)
        return super().handle_exception(exc)


class CheckoutView(BillingAPIView):
    billing_admin_required = True

    def post(self, request):
        company = self.get_company(request)
        seats = parse_seat_counts(
            {
                "manager_seats": request.data.get("manager_seats", 1),
                "tech_seats": request.data.get("tech_seats", 0),
            },
        )
        url = BillingService().create_checkout_session(
            company,
            request.user,
            seats,
            base_url=canonical_base_url(request),
            success_path=request.data.get("success_url"),
            cancel_path=request.data.get("cancel_url"),
        )
        return Response({"url": url})


class SubscriptionStatusView(BillingAPIView):
    def get(self, request):
        company = self.get_company(request)
        return Response(BillingService().get_subscription_status(company))


class SeatSummaryView(BillingAPIView):
    def get(self, request):
        company = self.get_company(request)
        return Response(BillingService().get_seat_summary(company))


class SeatBreakdownView(BillingAPIView):
    def get(self, request):
        company = self.get_company(request)
        return Response(BillingService().get_seat_breakdown(company))


class SeatPreviewView(BillingAPIView):
    billing_admin_required = True

    def post(self, request):
        company = self.get_company(request)
        desired = parse_seat_counts(request.data)
        preview = SeatChangeService().preview_cost(company, desired)
        return Response(preview.as_dict())


class SeatUpdateView(BillingAPIView):
    """
    Change purchased seat counts.

    Without an active subscription nothing is changed and the response asks
    for checkout. A declined card answers 402 with code PAYMENT_FAILED so the
    client can send the admin to the billing portal.
    """

    billing_admin_required = True

    def post(self, request):
        company = self.get_company(request)
        desired = parse_seat_counts(request.data)
        result = SeatChangeService().update_seats(company, desired)
        if result.outcome == SeatChangeOutcome.PAYMENT_FAILED:
            raise result.to_error()
        return Response(result.as_dict(), status=SEAT_CHANGE_STATUS[result.outcome])


class SyncSubscriptionView(BillingAPIView):
    def post(self, request):
        company = self.get_company(request)
        result = BillingService().sync_subscription(
            company,
            session_id=request.data.get("session_id") or None,
        )
        return Response(result)


class CustomerPortalView(BillingAPIView):
    billing_admin_required = True

    def post(self, request):
        company = self.get_company(request)
        url = BillingService().get_customer_portal_url(
            company,
            return_url=f"{canonical_base_url(request)}/billing",
        )
        return Response({"url": url})


class DemoStatusView(BillingAPIView):
    def get(self, request):
        company = self.get_company(request)
        return Response(BillingService().demo_status(company))


class StripeWebhookView(APIView):
    """
    Receive Stripe webhook events.

    The signature is checked against the raw request body before anything
    else looks at the event. Once verified, the event is logged and the
    endpoint answers 200 even if reconciliation fails, so Stripe does not
    retry events we already hold. Only a missing or invalid signature gets a
    4xx.
    """

    authentication_classes = []
    permission_classes = []

    def post(self, request):
        secret = settings.STRIPE_WEBHOOK_SECRET
        if not secret:
            logger.error("Stripe webhook received but STRIPE_WEBHOOK_SECRET is not set")
            return Response(
                {"detail": "Webhooks are not configured."},
                status=status.HTTP_503_SERVICE_UNAVAILABLE,
            )

        signature = request.headers.get("Stripe-Signature")
        if not signature:
            return Response(
                {"detail": "Missing Stripe-Signature header."},
                status=status.HTTP_400_BAD_REQUEST,
            )

        try:
            payload = verify_event(request.body, signature, secret)
        except ValueError:
            logger.warning("Stripe webhook with unparsable payload")
            return Response(
                {"detail": "Invalid payload."},
                status=status.HTTP_400_BAD_REQUEST,
            )
        except stripe.SignatureVerificationError:
            logger.warning("Stripe webhook signature verification failed")
            return Response(
                {"detail": "Invalid signature."},
                status=status.HTTP_400_BAD_REQUEST,
            )

        record = record_and_process(payload)
        return Response({"received": True, "status": record.status})
