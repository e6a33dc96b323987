"""
Billing middleware for access enforcement.

This middleware checks the company's billing state on each API request and
blocks companies without active access (expired demo, ended subscription)
or with a payment restriction (failed invoice, deleted subscription).
"""

from __future__ import annotations

import logging
from http import HTTPStatus
from typing import TYPE_CHECKING

from django.http import JsonResponse

from maintenancehub.users.constants import PackageType

if TYPE_CHECKING:
    from django.http import HttpRequest
    from django.http import HttpResponse

    from maintenancehub.users.models import Company

logger = logging.getLogger(__name__)


class PaymentRestrictionMiddleware:
    """
    Return 402 for API requests of companies that may not use the product.

    Billing, authentication and admin paths stay reachable so an admin can
    always pay or fix their payment method.

    This middleware should be added after AuthenticationMiddleware.
    """

    # Paths that don't require active access
    EXEMPT_PATH_PREFIXES = [
        "/api/billing/",
        "/api/auth/",
        "/admin/",
        "/static/",
        "/webhooks/",
    ]

    ERROR_MESSAGES = {
        "TRIAL_EXPIRED": "Your demo has expired. Please subscribe to continue.",
        "PAYMENT_RESTRICTED": (
            "Your account is restricted because of a payment problem. "
            "Please update your payment method."
        ),
        "NO_ACTIVE_ACCESS": (
            "Your company has no active subscription. Please subscribe to continue."
        ),
    }

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request: HttpRequest) -> HttpResponse:
        if not request.path.startswith("/api/") or self._is_exempt_path(request.path):
            return self.get_response(request)

        user = getattr(request, "user", None)
        if user is None or not user.is_authenticated or user.is_superuser:
            return self.get_response(request)

        company = getattr(user, "company", None)
        if company is None:
            return self.get_response(request)

        code = self.block_code(company)
        if code:
            logger.info("Blocked %s for company=%s: %s", request.path, company.pk, code)
            return JsonResponse(
                {
                    "detail": self.ERROR_MESSAGES[code],
                    "code": code,
                    "status": company.subscription_status,
                },
                status=HTTPStatus.PAYMENT_REQUIRED,
            )
        return self.get_response(request)

    def block_code(self, company: Company) -> str | None:
        if company.payment_restricted:
            return "PAYMENT_RESTRICTED"
        if company.has_active_access():
            return None
        if company.package_type == PackageType.DEMO:
            return "TRIAL_EXPIRED"
        return "NO_ACTIVE_ACCESS"

    def _is_exempt_path(self, path: str) -> bool:
        return any(path.startswith(prefix) for prefix in self.EXEMPT_PATH_PREFIXES)
