import uuid

import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models

import audit_app.models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="AuditFinding",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("package_id", models.CharField(db_index=True, max_length=64)),
                ("request_id", models.CharField(blank=True, max_length=64)),
                (
                    "finding_type",
                    models.CharField(
                        choices=[("critical", "Critical"), ("warning", "Warning"), ("info", "Info")],
                        default="warning",
                        max_length=16,
                    ),
                ),
                (
                    "category",
                    models.CharField(
                        choices=[
                            ("documentation", "Documentation"),
                            ("compliance", "Compliance"),
                            ("procedural", "Procedural"),
                            ("financial", "Financial"),
                        ],
                        max_length=16,
                    ),
                ),
                ("title", models.CharField(max_length=255)),
                ("description", models.TextField(blank=True)),
                ("recommendation", models.TextField(blank=True)),
                (
                    "severity",
                    models.CharField(
                        choices=[("low", "Low"), ("medium", "Medium"), ("high", "High"), ("critical", "Critical")],
                        default="medium",
                        max_length=16,
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("open", "Open"),
                            ("acknowledged", "Acknowledged"),
                            ("in_progress", "In progress"),
                            ("resolved", "Resolved"),
                            ("disputed", "Disputed"),
                        ],
                        default="open",
                        max_length=16,
                    ),
                ),
                ("due_date", models.DateField(blank=True, default=audit_app.models.default_due_date, null=True)),
                ("resolution_notes", models.TextField(blank=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "auditor",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="issued_findings",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "cardholder",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="audit_findings",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
            },
        ),
        migrations.CreateModel(
            name="AuditPackageStatus",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("package_id", models.CharField(max_length=64, unique=True)),
                ("request_id", models.CharField(blank=True, max_length=64)),
                (
                    "overall_status",
                    models.CharField(
                        choices=[
                            ("pending_audit", "Pending audit"),
                            ("under_review", "Under review"),
                            ("findings_issued", "Findings issued"),
                            ("cardholder_response", "Cardholder response"),
                            ("resolved", "Resolved"),
                            ("disputed", "Disputed"),
                        ],
                        default="pending_audit",
                        max_length=24,
                    ),
                ),
                ("audit_score", models.PositiveSmallIntegerField(default=100)),
                ("total_findings", models.PositiveIntegerField(default=0)),
                ("critical_findings", models.PositiveIntegerField(default=0)),
                ("open_findings", models.PositiveIntegerField(default=0)),
                ("resolved_findings", models.PositiveIntegerField(default=0)),
                ("response_due_date", models.DateField(blank=True, null=True)),
                ("audit_completed_at", models.DateTimeField(blank=True, null=True)),
                ("last_updated", models.DateTimeField(auto_now=True)),
                (
                    "cardholder",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="audit_packages",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name_plural": "audit package statuses",
                "ordering": ["-last_updated"],
            },
        ),
        migrations.CreateModel(
            name="AuditorResponse",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "response_type",
                    models.CharField(
                        choices=[
                            ("accept", "Accept"),
                            ("reject", "Reject"),
                            ("request_more_info", "Request more info"),
                            ("escalate", "Escalate"),
                        ],
                        max_length=24,
                    ),
                ),
                ("response_text", models.TextField(blank=True)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("final", "Final"),
                            ("pending_cardholder_response", "Pending cardholder response"),
                        ],
                        default="final",
                        max_length=32,
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "auditor",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="finding_reviews",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "finding",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="auditor_responses",
                        to="audit_app.auditfinding",
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
            },
        ),
        migrations.CreateModel(
            name="CardholderResponse",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "response_type",
                    models.CharField(
                        choices=[
                            ("acknowledge", "Acknowledge"),
                            ("dispute", "Dispute"),
                            ("resolve", "Resolve"),
                            ("request_extension", "Request extension"),
                        ],
                        max_length=24,
                    ),
                ),
                ("response_text", models.TextField(blank=True)),
                ("supporting_documents", models.JSONField(blank=True, default=list)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending_review", "Pending review"),
                            ("accepted", "Accepted"),
                            ("rejected", "Rejected"),
                            ("needs_revision", "Needs revision"),
                        ],
                        default="pending_review",
                        max_length=16,
                    ),
                ),
                ("auditor_feedback", models.TextField(blank=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "cardholder",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="finding_responses",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "finding",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="cardholder_responses",
                        to="audit_app.auditfinding",
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
            },
        ),
        migrations.CreateModel(
            name="Notification",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("message", models.TextField()),
                ("timestamp", models.DateTimeField(auto_now_add=True)),
                ("is_read", models.BooleanField(default=False)),
                (
                    "related_finding",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="notifications",
                        to="audit_app.auditfinding",
                    ),
                ),
                (
                    "user",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="notifications",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["-timestamp"],
            },
        ),
    ]
