"""
URL configuration for the billing API.

Routes (mounted under /api/billing/):
- checkout/           - Start Stripe Checkout (POST)
- status/             - Subscription status (GET)
- seat-summary/       - Seats in use and monthly cost (GET)
- seats/              - Seat breakdown per bucket (GET)
- seats/preview/      - Preview a seat change (POST)
- seats/update/       - Apply a seat change (POST)
- sync/               - Sync subscription after checkout (POST)
- portal/             - Stripe Customer Portal URL (POST)
- demo-status/        - Demo expiry information (GET)
- webhooks/stripe/    - Stripe webhook endpoint (POST)
"""

from django.urls import path

from maintenancehub.billing.views import CheckoutView
from maintenancehub.billing.views import CustomerPortalView
from maintenancehub.billing.views import DemoStatusView
from maintenancehub.billing.views import SeatBreakdownView
from maintenancehub.billing.views import SeatPreviewView
from maintenancehub.billing.views import SeatSummaryView
from maintenancehub.billing.views import SeatUpdateView
from maintenancehub.billing.views import StripeWebhookView
from maintenancehub.billing.views import SubscriptionStatusView
from maintenancehub.billing.views import SyncSubscriptionView

app_name = "billing"

urlpatterns = [
    path("checkout/", CheckoutView.as_view(), name="checkout"),
    path("status/", SubscriptionStatusView.as_view(), name="status"),
    path("seat-summary/", SeatSummaryView.as_view(), name="seat-summary"),
    path("seats/", SeatBreakdownView.as_view(), name="seats"),
    path("seats/preview/", SeatPreviewView.as_view(), name="seats-preview"),
    path("seats/update/", SeatUpdateView.as_view(), name="seats-update"),
    path("sync/", SyncSubscriptionView.as_view(), name="sync"),
    path("portal/", CustomerPortalView.as_view(), name="portal"),
    path("demo-status/", DemoStatusView.as_view(), name="demo-status"),
    path("webhooks/stripe/", StripeWebhookView.as_view(), name="stripe-webhook"),
]
