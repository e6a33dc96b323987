from django.urls import path

from maintenancehub.users.api.views import AcceptInvitationView
from maintenancehub.users.api.views import InvitationListView
from maintenancehub.users.api.views import MemberDetailView
from maintenancehub.users.api.views import MemberListView

app_name = "users"

urlpatterns = [
    path("members/", MemberListView.as_view(), name="members"),
    path("members/<int:pk>/", MemberDetailView.as_view(), name="member-detail"),
    path("invitations/", InvitationListView.as_view(), name="invitations"),
    path(
        "invitations/<uuid:token>/accept/",
        AcceptInvitationView.as_view(),
        name="invitation-accept",
    ),
]
