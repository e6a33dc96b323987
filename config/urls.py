from django.conf import settings
from django.contrib import admin
from django.urls import include
from django.urls import path
from rest_framework.authtoken.views import obtain_auth_token

urlpatterns = [
    # Admin URLs...
    path(settings.ADMIN_URL, admin.site.urls),
    # API URLs...
    path("api/auth/token/", obtain_auth_token, name="obtain_auth_token"),
    path("api/billing/", include("maintenancehub.billing.urls", namespace="billing")),
    path("api/", include("maintenancehub.users.urls", namespace="users")),
]
