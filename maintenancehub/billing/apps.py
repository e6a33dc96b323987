from django.apps import AppConfig


class BillingConfig(AppConfig):
    """
    Django app configuration for the billing app.

    Handles seat admission, Stripe subscription sync and webhook
    reconciliation.
    """

    default_auto_field = "django.db.models.BigAutoField"
    name = "maintenancehub.billing"
    label = "billing"
