"""In-process live feeds over audit records.

Each helper returns a ``Subscription``; whoever subscribes must call it (or
use it as a context manager) when the consuming view or user goes away.
"""
from django.db.models.signals import post_save

from home.subscriptions import subscribe

from .models import AuditFinding, AuditPackageStatus, Notification


def subscribe_to_findings(package_id, callback):
    return subscribe(
        post_save,
        callback,
        sender=AuditFinding,
        predicate=lambda finding: finding.package_id == package_id,
    )


def subscribe_to_package_status(package_id, callback):
    return subscribe(
        post_save,
        callback,
        sender=AuditPackageStatus,
        predicate=lambda status: status.package_id == package_id,
    )


def subscribe_to_notifications(user, callback):
    return subscribe(
        post_save,
        callback,
        sender=Notification,
        predicate=lambda notification: notification.user_id == user.id,
    )
