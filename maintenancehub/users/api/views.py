"""
Member and invitation API.

Every write that makes someone occupy a seat goes through
AdmissionController, which checks and reserves the seat under the company
row lock. Seat exhaustion answers 409 with the current counts, a lapsed
company answers 402.
"""

from rest_framework import status
from rest_framework.exceptions import ValidationError as DRFValidationError
from rest_framework.response import Response

from maintenancehub.billing.admission import AdmissionController
from maintenancehub.billing.errors import NotFoundError
from maintenancehub.billing.errors import ValidationError
from maintenancehub.billing.views import BillingAPIView
from maintenancehub.users.models import Invitation
from maintenancehub.users.models import User

from .serializers import AddMemberSerializer
from .serializers import InvitationSerializer
from .serializers import MemberSerializer


class CompanyAPIView(BillingAPIView):
    def validated_input(self, request) -> dict:
        serializer = AddMemberSerializer(data=request.data)
        try:
            serializer.is_valid(raise_exception=True)
        except DRFValidationError as e:
            raise ValidationError(_first_error(e.detail)) from e
        return serializer.validated_data


class MemberListView(CompanyAPIView):
    """GET lists active members. POST adds a member if a seat is free."""

    def get_company(self, request):
        # Reading is open to every member, adding needs an admin.
        self.billing_admin_required = request.method == "POST"
        return super().get_company(request)

    def get(self, request):
        company = self.get_company(request)
        members = company.members.filter(is_active=True).order_by("pk")
        return Response(MemberSerializer(members, many=True).data)

    def post(self, request):
        company = self.get_company(request)
        data = self.validated_input(request)
        result = AdmissionController().add_member(
            company.pk,
            data["role"],
            email=data["email"],
            name=data["name"],
        )
        if not result.granted:
            raise result.to_error()
        return Response(
            MemberSerializer(result.value).data,
            status=status.HTTP_201_CREATED,
        )


class MemberDetailView(CompanyAPIView):
    billing_admin_required = True

    def delete(self, request, pk):
        company = self.get_company(request)
        member = User.objects.filter(pk=pk, company=company).first()
        if member is None:
            raise NotFoundError("Member not found.", code="member_not_found")
        AdmissionController().remove_member(member, acting_user=request.user)
        return Response(status=status.HTTP_204_NO_CONTENT)


class InvitationListView(CompanyAPIView):
    billing_admin_required = True

    def get(self, request):
        company = self.get_company(request)
        invitations = company.invitations.all()
        return Response(InvitationSerializer(invitations, many=True).data)

    def post(self, request):
        company = self.get_company(request)
        data = self.validated_input(request)
        result = AdmissionController().create_invitation(
            company.pk,
            data["role"],
            email=data["email"],
            invited_by=request.user,
        )
        if not result.granted:
            raise result.to_error()
        return Response(
            InvitationSerializer(result.value).data,
            status=status.HTTP_201_CREATED,
        )


class AcceptInvitationView(BillingAPIView):
    """Join the inviting company as the signed-in user."""

    def post(self, request, token):
        invitation = Invitation.objects.filter(token=token).first()
        if invitation is None:
            raise NotFoundError("Invitation not found.", code="invitation_not_found")
        if invitation.email.lower() != (request.user.email or "").lower():
            raise NotFoundError("Invitation not found.", code="invitation_not_found")
        user = AdmissionController().accept_invitation(invitation, request.user)
        return Response(MemberSerializer(user).data)


def _first_error(detail) -> str:
    if isinstance(detail, dict):
        field, errors = next(iter(detail.items()))
        return f"{field}: {_first_error(errors)}"
    if isinstance(detail, list) and detail:
        return _first_error(detail[0])
    return str(detail)
