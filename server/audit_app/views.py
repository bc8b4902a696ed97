import logging

from django.contrib.auth import get_user_model
from rest_framework import mixins, permissions, status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import PermissionDenied, ValidationError
from rest_framework.response import Response

from home.permissions import IsAuditorOrAdmin, IsCardholderOrAdmin
from home.roles import is_admin, is_auditor

from .models import AuditFinding, AuditPackageStatus, Notification
from .serializers import (
    AuditFindingSerializer,
    AuditFindingWriteSerializer,
    AuditorResponseActionSerializer,
    AuditPackageStatusSerializer,
    CardholderResponseActionSerializer,
    NotificationSerializer,
)
from .services.aggregation import compliance_metrics
from .services.lifecycle import InvalidTransition
from .throttles import ResponseThrottle

User = get_user_model()
logger = logging.getLogger(__name__)


class AuditFindingViewSet(
    mixins.CreateModelMixin,
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    mixins.UpdateModelMixin,
    viewsets.GenericViewSet,
):
    queryset = AuditFinding.objects.select_related("cardholder", "auditor").all()
    permission_classes = [permissions.IsAuthenticated]

    def get_permissions(self):
        if self.action in {"create", "update", "partial_update", "review"}:
            return [permissions.IsAuthenticated(), IsAuditorOrAdmin()]
        if self.action == "respond":
            return [permissions.IsAuthenticated(), IsCardholderOrAdmin()]
        return super().get_permissions()

    def get_queryset(self):
        # Visibility follows the persisted role, never a debug override.
        user = self.request.user
        qs = super().get_queryset()
        package_id = self.request.query_params.get("package")
        if package_id:
            qs = qs.filter(package_id=package_id)
        status_filter = self.request.query_params.get("status")
        if status_filter:
            qs = qs.filter(status=status_filter.lower())
        if is_auditor(user):
            return qs
        if user.role == User.Roles.CARDHOLDER:
            return qs.filter(cardholder=user)
        return qs.none()

    def get_serializer_class(self):
        if self.action in {"create", "update", "partial_update"}:
            return AuditFindingWriteSerializer
        return AuditFindingSerializer

    def perform_create(self, serializer):
        finding = serializer.save(auditor=self.request.user)
        logger.info(
            f"Finding {finding.id} ({finding.severity}) raised on package {finding.package_id} by {self.request.user.username}"
        )

    @action(detail=True, methods=["post"], throttle_classes=[ResponseThrottle])
    def respond(self, request, pk=None):
        finding = self.get_object()
        if finding.cardholder_id != request.user.id and not is_admin(request.user):
            raise PermissionDenied("Only the cardholder named on the finding can respond.")
        serializer = CardholderResponseActionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            finding.submit_cardholder_response(
                request.user,
                serializer.validated_data["response_type"],
                serializer.validated_data.get("response_text", ""),
                serializer.validated_data.get("supporting_documents"),
            )
        except InvalidTransition as e:
            logger.info(f"Rejected cardholder response on finding {pk}: {e}")
            raise ValidationError(str(e))
        output = AuditFindingSerializer(finding, context=self.get_serializer_context())
        return Response(output.data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=["post"], throttle_classes=[ResponseThrottle])
    def review(self, request, pk=None):
        finding = self.get_object()
        serializer = AuditorResponseActionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            finding.submit_auditor_response(
                request.user,
                serializer.validated_data["response_type"],
                serializer.validated_data.get("response_text", ""),
            )
        except InvalidTransition as e:
            logger.info(f"Rejected auditor response on finding {pk}: {e}")
            raise ValidationError(str(e))
        logger.info(
            f"Finding {finding.id} reviewed by {request.user.username}: {serializer.validated_data['response_type']} -> {finding.status}"
        )
        output = AuditFindingSerializer(finding, context=self.get_serializer_context())
        return Response(output.data, status=status.HTTP_201_CREATED)


class AuditPackageStatusViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = AuditPackageStatus.objects.select_related("cardholder").all()
    serializer_class = AuditPackageStatusSerializer
    permission_classes = [permissions.IsAuthenticated]
    lookup_field = "package_id"

    def get_permissions(self):
        if self.action in {"recompute", "metrics"}:
            return [permissions.IsAuthenticated(), IsAuditorOrAdmin()]
        return super().get_permissions()

    def get_queryset(self):
        user = self.request.user
        qs = super().get_queryset()
        status_filter = self.request.query_params.get("status")
        if status_filter:
            qs = qs.filter(overall_status=status_filter.lower())
        if is_auditor(user):
            return qs
        if user.role == User.Roles.CARDHOLDER:
            return qs.filter(cardholder=user)
        return qs.none()

    @action(detail=True, methods=["post"])
    def recompute(self, request, package_id=None):
        package_status = self.get_object()
        package_status = AuditPackageStatus.refresh_for_package(package_status.package_id)
        return Response(self.get_serializer(package_status).data)

    @action(detail=False, methods=["get"])
    def metrics(self, request):
        return Response(compliance_metrics(self.get_queryset()))


class NotificationViewSet(viewsets.ReadOnlyModelViewSet):
    serializer_class = NotificationSerializer
    permission_classes = [permissions.IsAuthenticated]

    def get_queryset(self):
        return Notification.objects.select_related("user", "related_finding").filter(
            user=self.request.user
        ).order_by("-timestamp")

    @action(detail=True, methods=["patch"])
    def mark_read(self, request, pk=None):
        """Mark a single notification as read."""
        notification = self.get_object()
        notification.is_read = True
        notification.save(update_fields=["is_read"])
        return Response({"status": "marked as read"})

    @action(detail=False, methods=["patch"])
    def mark_all_read(self, request):
        """Mark all notifications as read."""
        count = self.get_queryset().filter(is_read=False).update(is_read=True)
        return Response({"status": "all marked as read", "count": count})
