"""
Billing exceptions.

Every error carries a human readable ``detail``, a machine readable ``code``
and the HTTP status the API layer answers with. Views catch ``BillingError``
and render ``{"detail": ..., "code": ...}`` with ``status_code``.

Frequent business-rule failures (seat exhaustion, missing access) are first
returned as typed results by the admission and seat change services. They are
only turned into these exceptions at the API edge via ``to_error()``.
"""

from __future__ import annotations


class BillingError(Exception):
    """Base exception for billing-related errors."""

    status_code = 400

    def __init__(self, detail: str, code: str = "billing_error"):
        self.detail = detail
        self.code = code
        super().__init__(detail)

    def as_dict(self) -> dict:
        return {"detail": self.detail, "code": self.code}


class ConfigurationError(BillingError):
    """Raised when billing is not configured (missing Stripe keys)."""

    status_code = 503

    def __init__(
        self,
        detail: str = "Billing is not configured. Please contact support.",
    ):
        super().__init__(detail, code="billing_not_configured")


class ValidationError(BillingError):
    """Raised for malformed seat counts, roles or requests."""

    status_code = 400

    def __init__(self, detail: str, code: str = "invalid"):
        super().__init__(detail, code=code)


class NotFoundError(BillingError):
    status_code = 404

    def __init__(self, detail: str = "Not found.", code: str = "not_found"):
        super().__init__(detail, code=code)


class AuthorizationError(BillingError):
    """Raised for cross-tenant access or a non-admin billing change."""

    status_code = 403

    def __init__(
        self,
        detail: str = "You do not have permission to manage billing.",
    ):
        super().__init__(detail, code="forbidden")


class SeatExhaustedError(BillingError):
    """Raised when no seat is left in the member's bucket."""

    status_code = 409

    def __init__(
        self,
        detail: str = "No seats available.",
        used: int = 0,
        purchased: int = 0,
        bucket: str = "",
    ):
        self.used = used
        self.purchased = purchased
        self.bucket = bucket
        super().__init__(detail, code="seat_limit_exceeded")

    def as_dict(self) -> dict:
        data = super().as_dict()
        data.update(
            {"used": self.used, "purchased": self.purchased, "bucket": self.bucket},
        )
        return data


class NoActiveAccessError(BillingError):
    """Raised when the company has neither a subscription nor a valid demo."""

    status_code = 402

    def __init__(
        self,
        detail: str = (
            "Your company has no active subscription. "
            "Please subscribe to continue."
        ),
    ):
        super().__init__(detail, code="no_active_access")


class PaymentRequiredError(BillingError):
    """Raised when checkout has not been completed yet."""

    status_code = 402

    def __init__(
        self,
        detail: str = "Payment has not been completed yet.",
    ):
        super().__init__(detail, code="payment_required")


class PaymentFailedError(BillingError):
    """Raised when the card was declined on a seat update."""

    status_code = 402

    def __init__(
        self,
        detail: str = "Your card was declined. Please update your payment method.",
    ):
        super().__init__(detail, code="PAYMENT_FAILED")


class ProviderError(BillingError):
    """Opaque Stripe failure. Safe to retry later."""

    status_code = 503

    def __init__(
        self,
        detail: str = "The billing provider is unavailable. Please try again.",
    ):
        super().__init__(detail, code="provider_error")


class ProviderDriftError(ProviderError):
    """Raised when a stale subscription item survived one recovery attempt."""

    status_code = 502

    def __init__(
        self,
        detail: str = (
            "Your subscription is out of sync with the billing provider. "
            "Please try again shortly."
        ),
    ):
        super().__init__(detail)
        self.code = "provider_drift"
