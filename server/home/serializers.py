from rest_framework import serializers

from .models import User


class UserSerializer(serializers.ModelSerializer):
    name = serializers.CharField(read_only=True)

    class Meta:
        model = User
        fields = [
            "id",
            "uid",
            "username",
            "email",
            "first_name",
            "last_name",
            "name",
            "role",
            "org_id",
            "approval_limit",
        ]
        read_only_fields = fields


class UserAdminSerializer(serializers.ModelSerializer):
    class Meta:
        model = User
        fields = [
            "id",
            "uid",
            "username",
            "email",
            "first_name",
            "last_name",
            "role",
            "org_id",
            "approval_limit",
        ]
        read_only_fields = ["id", "uid", "username"]


class DebugRoleSerializer(serializers.Serializer):
    role = serializers.ChoiceField(choices=User.Roles.choices, allow_null=True)
