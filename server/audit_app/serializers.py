from __future__ import annotations

from django.contrib.auth import get_user_model
from rest_framework import serializers

from home.serializers import UserSerializer

from .models import (
    AuditFinding,
    AuditorResponse,
    AuditPackageStatus,
    CardholderResponse,
    Notification,
)

User = get_user_model()


class CardholderResponseSerializer(serializers.ModelSerializer):
    cardholder = UserSerializer(read_only=True)

    class Meta:
        model = CardholderResponse
        fields = [
            "id",
            "response_type",
            "response_text",
            "supporting_documents",
            "status",
            "auditor_feedback",
            "cardholder",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class AuditorResponseSerializer(serializers.ModelSerializer):
    auditor = UserSerializer(read_only=True)

    class Meta:
        model = AuditorResponse
        fields = ["id", "response_type", "response_text", "status", "auditor", "created_at"]
        read_only_fields = fields


class AuditFindingSerializer(serializers.ModelSerializer):
    cardholder = UserSerializer(read_only=True)
    auditor = UserSerializer(read_only=True)
    cardholder_response = CardholderResponseSerializer(read_only=True)
    auditor_response = AuditorResponseSerializer(read_only=True)

    class Meta:
        model = AuditFinding
        fields = [
            "id",
            "package_id",
            "request_id",
            "cardholder",
            "auditor",
            "finding_type",
            "category",
            "title",
            "description",
            "recommendation",
            "severity",
            "status",
            "due_date",
            "resolution_notes",
            "cardholder_response",
            "auditor_response",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class AuditFindingWriteSerializer(serializers.ModelSerializer):
    cardholder = serializers.SlugRelatedField(
        slug_field="uid", queryset=User.objects.all()
    )

    class Meta:
        model = AuditFinding
        fields = [
            "id",
            "package_id",
            "request_id",
            "cardholder",
            "finding_type",
            "category",
            "title",
            "description",
            "recommendation",
            "severity",
            "due_date",
        ]

    def validate_cardholder(self, value):
        if value.role != User.Roles.CARDHOLDER:
            raise serializers.ValidationError("Findings can only be raised against cardholders.")
        return value

    def validate(self, attrs):
        if self.instance:
            if self.instance.is_terminal:
                raise serializers.ValidationError("Cannot modify a resolved finding.")
            package_id = attrs.get("package_id", self.instance.package_id)
            if package_id != self.instance.package_id:
                raise serializers.ValidationError(
                    {"package_id": "A finding cannot be moved to another package."}
                )
        return attrs

    def to_representation(self, instance):
        return AuditFindingSerializer(instance, context=self.context).data


class CardholderResponseActionSerializer(serializers.Serializer):
    response_type = serializers.ChoiceField(choices=CardholderResponse.ResponseType.choices)
    response_text = serializers.CharField(required=False, allow_blank=True, max_length=2000)
    supporting_documents = serializers.ListField(
        child=serializers.CharField(max_length=255), required=False, default=list
    )


class AuditorResponseActionSerializer(serializers.Serializer):
    response_type = serializers.ChoiceField(choices=AuditorResponse.ResponseType.choices)
    response_text = serializers.CharField(required=False, allow_blank=True, max_length=2000)


class AuditPackageStatusSerializer(serializers.ModelSerializer):
    cardholder = UserSerializer(read_only=True)

    class Meta:
        model = AuditPackageStatus
        fields = [
            "package_id",
            "request_id",
            "cardholder",
            "overall_status",
            "audit_score",
            "total_findings",
            "critical_findings",
            "open_findings",
            "resolved_findings",
            "response_due_date",
            "audit_completed_at",
            "last_updated",
        ]
        read_only_fields = fields


class NotificationSerializer(serializers.ModelSerializer):
    related_package_id = serializers.CharField(
        source="related_finding.package_id", read_only=True, default=None
    )

    class Meta:
        model = Notification
        fields = ["id", "message", "timestamp", "is_read", "related_finding", "related_package_id"]
        read_only_fields = fields
