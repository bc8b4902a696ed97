import uuid
from dataclasses import asdict
from datetime import timedelta

from django.conf import settings
from django.db import models, transaction
from django.utils import timezone

from .services.aggregation import summarize_findings
from .services.lifecycle import (
    accepts_cardholder_response,
    auditor_transition,
    cardholder_transition,
)


def default_due_date():
    return timezone.localdate() + timedelta(days=getattr(settings, "AUDIT_RESPONSE_DAYS", 14))


class AuditFinding(models.Model):
    class FindingType(models.TextChoices):
        CRITICAL = "critical", "Critical"
        WARNING = "warning", "Warning"
        INFO = "info", "Info"

    class Category(models.TextChoices):
        DOCUMENTATION = "documentation", "Documentation"
        COMPLIANCE = "compliance", "Compliance"
        PROCEDURAL = "procedural", "Procedural"
        FINANCIAL = "financial", "Financial"

    class Severity(models.TextChoices):
        LOW = "low", "Low"
        MEDIUM = "medium", "Medium"
        HIGH = "high", "High"
        CRITICAL = "critical", "Critical"

    class Status(models.TextChoices):
        OPEN = "open", "Open"
        ACKNOWLEDGED = "acknowledged", "Acknowledged"
        IN_PROGRESS = "in_progress", "In progress"
        RESOLVED = "resolved", "Resolved"
        DISPUTED = "disputed", "Disputed"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    package_id = models.CharField(max_length=64, db_index=True)
    request_id = models.CharField(max_length=64, blank=True)
    cardholder = models.ForeignKey(
        settings.AUTH_USER_MODEL, related_name="audit_findings", on_delete=models.CASCADE
    )
    auditor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        related_name="issued_findings",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
    )
    finding_type = models.CharField(
        max_length=16, choices=FindingType.choices, default=FindingType.WARNING
    )
    category = models.CharField(max_length=16, choices=Category.choices)
    title = models.CharField(max_length=255)
    description = models.TextField(blank=True)
    recommendation = models.TextField(blank=True)
    severity = models.CharField(max_length=16, choices=Severity.choices, default=Severity.MEDIUM)
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.OPEN)
    due_date = models.DateField(null=True, blank=True, default=default_due_date)
    resolution_notes = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self):
        return f"{self.title} ({self.status})"

    @property
    def is_terminal(self):
        return self.status == self.Status.RESOLVED

    @property
    def accepts_cardholder_response(self):
        return accepts_cardholder_response(self.status)

    @property
    def cardholder_response(self):
        return self.cardholder_responses.order_by("-created_at", "-id").first()

    @property
    def auditor_response(self):
        return self.auditor_responses.order_by("-created_at", "-id").first()

    @property
    def pending_cardholder_response(self):
        return self.cardholder_responses.filter(
            status=CardholderResponse.Status.PENDING_REVIEW
        ).order_by("-created_at", "-id").first()

    @transaction.atomic
    def submit_cardholder_response(self, cardholder, response_type, text="", supporting_documents=None):
        new_status = cardholder_transition(self.status, response_type)
        # A fresh response supersedes anything still waiting for review.
        self.cardholder_responses.filter(
            status=CardholderResponse.Status.PENDING_REVIEW
        ).update(status=CardholderResponse.Status.NEEDS_REVISION, updated_at=timezone.now())
        response = CardholderResponse.objects.create(
            finding=self,
            cardholder=cardholder,
            response_type=response_type,
            response_text=text,
            supporting_documents=supporting_documents or [],
        )
        self.status = new_status
        self.save(update_fields=["status", "updated_at"])

        from .notifications import notify_cardholder_responded
        notify_cardholder_responded(self, response)
        return response

    @transaction.atomic
    def submit_auditor_response(self, auditor, response_type, text=""):
        pending = self.pending_cardholder_response
        decision = auditor_transition(
            self.status, response_type, pending.response_type if pending else None
        )
        response = AuditorResponse.objects.create(
            finding=self,
            auditor=auditor,
            response_type=response_type,
            response_text=text,
            status=decision.auditor_response_status,
        )
        if pending and decision.cardholder_response_status:
            pending.status = decision.cardholder_response_status
            pending.auditor_feedback = text
            pending.save(update_fields=["status", "auditor_feedback", "updated_at"])

        update_fields = ["status", "updated_at"]
        self.status = decision.finding_status
        if decision.extend_due_date:
            base = max(self.due_date or timezone.localdate(), timezone.localdate())
            self.due_date = base + timedelta(days=getattr(settings, "AUDIT_EXTENSION_DAYS", 7))
            update_fields.append("due_date")
        if self.status == self.Status.RESOLVED:
            self.resolution_notes = text or (pending.response_text if pending else "")
            update_fields.append("resolution_notes")
        self.save(update_fields=update_fields)

        from .notifications import notify_auditor_responded
        notify_auditor_responded(self, response)
        return response


class CardholderResponse(models.Model):
    class ResponseType(models.TextChoices):
        ACKNOWLEDGE = "acknowledge", "Acknowledge"
        DISPUTE = "dispute", "Dispute"
        RESOLVE = "resolve", "Resolve"
        REQUEST_EXTENSION = "request_extension", "Request extension"

    class Status(models.TextChoices):
        PENDING_REVIEW = "pending_review", "Pending review"
        ACCEPTED = "accepted", "Accepted"
        REJECTED = "rejected", "Rejected"
        NEEDS_REVISION = "needs_revision", "Needs revision"

    finding = models.ForeignKey(
        AuditFinding, related_name="cardholder_responses", on_delete=models.CASCADE
    )
    cardholder = models.ForeignKey(
        settings.AUTH_USER_MODEL, related_name="finding_responses", on_delete=models.CASCADE
    )
    response_type = models.CharField(max_length=24, choices=ResponseType.choices)
    response_text = models.TextField(blank=True)
    supporting_documents = models.JSONField(default=list, blank=True)
    status = models.CharField(
        max_length=16, choices=Status.choices, default=Status.PENDING_REVIEW
    )
    auditor_feedback = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self):
        return f"{self.finding_id} - {self.response_type} ({self.status})"


class AuditorResponse(models.Model):
    class ResponseType(models.TextChoices):
        ACCEPT = "accept", "Accept"
        REJECT = "reject", "Reject"
        REQUEST_MORE_INFO = "request_more_info", "Request more info"
        ESCALATE = "escalate", "Escalate"

    class Status(models.TextChoices):
        FINAL = "final", "Final"
        PENDING_CARDHOLDER_RESPONSE = "pending_cardholder_response", "Pending cardholder response"

    finding = models.ForeignKey(
        AuditFinding, related_name="auditor_responses", on_delete=models.CASCADE
    )
    auditor = models.ForeignKey(
        settings.AUTH_USER_MODEL, related_name="finding_reviews", on_delete=models.CASCADE
    )
    response_type = models.CharField(max_length=24, choices=ResponseType.choices)
    response_text = models.TextField(blank=True)
    status = models.CharField(max_length=32, choices=Status.choices, default=Status.FINAL)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self):
        return f"{self.finding_id} - {self.response_type}"


class AuditPackageStatus(models.Model):
    class OverallStatus(models.TextChoices):
        PENDING_AUDIT = "pending_audit", "Pending audit"
        UNDER_REVIEW = "under_review", "Under review"
        FINDINGS_ISSUED = "findings_issued", "Findings issued"
        CARDHOLDER_RESPONSE = "cardholder_response", "Cardholder response"
        RESOLVED = "resolved", "Resolved"
        DISPUTED = "disputed", "Disputed"

    package_id = models.CharField(max_length=64, unique=True)
    request_id = models.CharField(max_length=64, blank=True)
    cardholder = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        related_name="audit_packages",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
    )
    overall_status = models.CharField(
        max_length=24, choices=OverallStatus.choices, default=OverallStatus.PENDING_AUDIT
    )
    audit_score = models.PositiveSmallIntegerField(default=100)
    total_findings = models.PositiveIntegerField(default=0)
    critical_findings = models.PositiveIntegerField(default=0)
    open_findings = models.PositiveIntegerField(default=0)
    resolved_findings = models.PositiveIntegerField(default=0)
    response_due_date = models.DateField(null=True, blank=True)
    audit_completed_at = models.DateTimeField(null=True, blank=True)
    last_updated = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-last_updated"]
        verbose_name_plural = "audit package statuses"

    def __str__(self):
        return f"{self.package_id} ({self.overall_status})"

    @classmethod
    def refresh_for_package(cls, package_id):
        """Recompute the aggregate for ``package_id`` from its findings."""
        findings = AuditFinding.objects.filter(package_id=package_id).order_by("created_at")
        summary = summarize_findings(findings)
        package_status, _ = cls.objects.get_or_create(package_id=package_id)
        for attr, value in asdict(summary).items():
            setattr(package_status, attr, value)
        first = findings.first()
        if first is not None:
            package_status.request_id = first.request_id
            package_status.cardholder_id = first.cardholder_id
        if summary.overall_status == cls.OverallStatus.RESOLVED:
            package_status.audit_completed_at = package_status.audit_completed_at or timezone.now()
        else:
            package_status.audit_completed_at = None
        package_status.save()
        return package_status


class Notification(models.Model):
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL, related_name="notifications", on_delete=models.CASCADE
    )
    message = models.TextField()
    timestamp = models.DateTimeField(auto_now_add=True)
    is_read = models.BooleanField(default=False)
    related_finding = models.ForeignKey(
        AuditFinding, related_name="notifications", on_delete=models.CASCADE, null=True, blank=True
    )

    class Meta:
        ordering = ["-timestamp"]

    def __str__(self):
        return f"Notification for {self.user.username}: {self.message[:50]}"
