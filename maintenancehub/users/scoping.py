from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from maintenancehub.billing.errors import AuthorizationError
from maintenancehub.billing.errors import NotFoundError
from maintenancehub.billing.errors import ValidationError
from maintenancehub.users.constants import BILLING_ADMIN_ROLES
from maintenancehub.users.models import Company

if TYPE_CHECKING:
    from maintenancehub.users.models import User

logger = logging.getLogger(__name__)


def resolve_company(
    user: User,
    requested_company_id=None,
    *,
    billing_admin: bool = False,
) -> Company:
    """
    Return the company a request acts on.

    Members always act on their own company. Superusers may name any company
    through ``requested_company_id``. With ``billing_admin`` the user must
    also hold a billing admin role.

    Raises:
        ValidationError: The user belongs to no company.
        AuthorizationError: Cross-tenant request or missing admin role.
        NotFoundError: The requested company does not exist.
    """
    if requested_company_id not in (None, ""):
        company_id = _coerce_int(requested_company_id)
        if company_id is None:
            raise ValidationError("Invalid company id.", code="invalid_company")
        if not user.is_superuser and company_id != user.company_id:
            logger.warning(
                "User %s tried to act on company %s (own company %s)",
                user.pk,
                company_id,
                user.company_id,
            )
            raise AuthorizationError("You can only manage your own company.")
    else:
        company_id = user.company_id

    if company_id is None:
        raise ValidationError("You must be part of a company.", code="no_company")

    if billing_admin and not user.is_superuser and user.role not in BILLING_ADMIN_ROLES:
        raise AuthorizationError

    company = Company.objects.filter(pk=company_id).first()
    if company is None:
        raise NotFoundError("Company not found.", code="company_not_found")
    return company


def _coerce_int(value) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
