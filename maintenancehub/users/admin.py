from django.contrib import admin
from django.contrib.auth import admin as auth_admin
from django.utils.translation import gettext_lazy as _

from maintenancehub.users.models import Company
from maintenancehub.users.models import Invitation
from maintenancehub.users.models import User


@admin.register(User)
class UserAdmin(auth_admin.UserAdmin):
    fieldsets = (
        (None, {"fields": ("username", "password")}),
        (_("Personal info"), {"fields": ("name", "email")}),
        (_("Company"), {"fields": ("company", "role")}),
        (
            _("Permissions"),
            {
                "fields": (
                    "is_active",
                    "is_staff",
                    "is_superuser",
                    "groups",
                    "user_permissions",
                ),
            },
        ),
        (_("Important dates"), {"fields": ("last_login", "date_joined")}),
    )
    list_display = ["username", "name", "company", "role", "is_active"]
    list_filter = ["role", "is_active", "is_superuser"]
    search_fields = ["name", "username", "email"]


@admin.register(Company)
class CompanyAdmin(admin.ModelAdmin):
    list_display = [
        "name",
        "package_type",
        "subscription_status",
        "purchased_manager_seats",
        "purchased_tech_seats",
        "payment_restricted",
    ]
    list_filter = ["package_type", "subscription_status", "payment_restricted"]
    search_fields = ["name", "slug", "stripe_customer_id", "stripe_subscription_id"]
    prepopulated_fields = {"slug": ("name",)}
    fieldsets = (
        (None, {"fields": ("name", "slug", "package_type", "demo_expires_at", "is_live")}),
        (
            _("Seats"),
            {"fields": ("purchased_manager_seats", "purchased_tech_seats")},
        ),
        (
            _("Stripe"),
            {
                "fields": (
                    "stripe_customer_id",
                    "stripe_subscription_id",
                    "stripe_manager_item_id",
                    "stripe_tech_item_id",
                    "subscription_status",
                    "payment_restricted",
                ),
            },
        ),
    )


@admin.register(Invitation)
class InvitationAdmin(admin.ModelAdmin):
    list_display = ["email", "company", "role", "status", "expires_at"]
    list_filter = ["status", "role"]
    search_fields = ["email", "company__name"]
    readonly_fields = ["token"]
