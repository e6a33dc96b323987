from rest_framework import serializers

from maintenancehub.users.constants import RoleCode
from maintenancehub.users.models import Invitation
from maintenancehub.users.models import User


class MemberSerializer(serializers.ModelSerializer):
    class Meta:
        model = User
        fields = ["id", "username", "email", "name", "role", "is_active"]


class InvitationSerializer(serializers.ModelSerializer):
    company_id = serializers.IntegerField(read_only=True)

    class Meta:
        model = Invitation
        fields = ["id", "company_id", "email", "role", "status", "expires_at", "token"]


class AddMemberSerializer(serializers.Serializer):
    """
    Input for adding a member or inviting one.

    Role is optional and defaults to tech. Unknown roles are rejected by the
    admission controller with code ``invalid_role``.
    """

    email = serializers.EmailField()
    name = serializers.CharField(required=False, allow_blank=True, default="")
    role = serializers.CharField(required=False, allow_blank=True, default=RoleCode.TECH)
