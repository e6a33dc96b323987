"""
Django admin configuration for billing models.

Provides admin interfaces for:
- BillingConfig: Inspect cached Stripe catalog ids
- WebhookEvent: Inspect received Stripe events and failures
"""

from django.contrib import admin

from maintenancehub.billing.models import BillingConfig
from maintenancehub.billing.models import WebhookEvent


@admin.register(BillingConfig)
class BillingConfigAdmin(admin.ModelAdmin):
    """Admin for cached catalog ids. Values are written by Stripe, not edited."""

    list_display = ["key", "value", "created"]
    search_fields = ["key", "value"]
    readonly_fields = ["key", "value", "created", "modified"]


@admin.register(WebhookEvent)
class WebhookEventAdmin(admin.ModelAdmin):
    """Admin for the Stripe event log."""

    list_display = ["event_id", "event_type", "status", "created", "processed_at"]
    list_filter = ["status", "event_type"]
    search_fields = ["event_id"]
    readonly_fields = [
        "event_id",
        "event_type",
        "payload",
        "status",
        "error",
        "processed_at",
        "created",
        "modified",
    ]

    fieldsets = [
        (None, {"fields": ["event_id", "event_type", "status"]}),
        ("Processing", {"fields": ["error", "processed_at"]}),
        ("Payload", {"fields": ["payload"], "classes": ["collapse"]}),
        ("Timestamps", {"fields": ["created", "modified"]}),
    ]
