from django.urls import include, path
from rest_framework import routers

from .views import AuditFindingViewSet, AuditPackageStatusViewSet, NotificationViewSet

router = routers.DefaultRouter()
router.register(r"findings", AuditFindingViewSet, basename="audit-finding")
router.register(r"package-statuses", AuditPackageStatusViewSet, basename="package-status")
router.register(r"notifications", NotificationViewSet, basename="notification")

urlpatterns = [
    path("", include(router.urls)),
]
