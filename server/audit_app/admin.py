from django.contrib import admin

from .models import AuditFinding, AuditorResponse, AuditPackageStatus, CardholderResponse, Notification


class CardholderResponseInline(admin.TabularInline):
    model = CardholderResponse
    extra = 0


class AuditorResponseInline(admin.TabularInline):
    model = AuditorResponse
    extra = 0


@admin.register(AuditFinding)
class AuditFindingAdmin(admin.ModelAdmin):
    list_display = ("title", "package_id", "severity", "status", "cardholder", "auditor", "due_date")
    list_filter = ("status", "severity", "category")
    search_fields = ("title", "package_id", "request_id", "cardholder__username")
    inlines = [CardholderResponseInline, AuditorResponseInline]


@admin.register(AuditPackageStatus)
class AuditPackageStatusAdmin(admin.ModelAdmin):
    list_display = ("package_id", "overall_status", "audit_score", "open_findings", "resolved_findings")
    list_filter = ("overall_status",)
    search_fields = ("package_id", "request_id")


@admin.register(Notification)
class NotificationAdmin(admin.ModelAdmin):
    list_display = ("user", "message", "timestamp", "is_read")
    list_filter = ("is_read",)
