"""
Billing models for MaintenanceHub seat licensing.

The seat ledger itself lives on Company (see users.models). This module holds
the supporting tables:

- BillingConfig: persisted key/value store for Stripe catalog ids
- WebhookEvent: durable log of every verified Stripe event
"""

from django.db import models
from model_utils.models import TimeStampedModel

from maintenancehub.billing.constants import WebhookEventStatus


class BillingConfig(TimeStampedModel):
    """
    Generic string key/value store for billing configuration.

    Holds the Stripe product id and one price id per seat bucket. Rows are
    written once by PriceCatalogCache and never recreated.

    Usage:
        BillingConfig.get_value(CatalogKey.TECH_PRICE)
    """

    key = models.CharField(max_length=100, unique=True)
    value = models.CharField(max_length=255)

    class Meta:
        verbose_name = "billing config entry"
        verbose_name_plural = "billing config"

    def __str__(self):
        return f"{self.key}={self.value}"

    @classmethod
    def get_value(cls, key: str) -> str | None:
        return cls.objects.filter(key=key).values_list("value", flat=True).first()


class WebhookEvent(TimeStampedModel):
    """
    A Stripe event that passed signature verification.

    The row is written before any handler runs, so the endpoint can
    acknowledge the event even if reconciliation fails. ``event_id`` is
    unique, which lets redelivered events be recognised.
    """

    event_id = models.CharField(max_length=255, unique=True)
    event_type = models.CharField(max_length=100, db_index=True)
    payload = models.JSONField(default=dict)
    status = models.CharField(
        max_length=16,
        choices=WebhookEventStatus.choices,
        default=WebhookEventStatus.RECEIVED,
    )
    error = models.TextField(blank=True)
    processed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created"]

    def __str__(self):
        return f"{self.event_type} ({self.event_id})"
