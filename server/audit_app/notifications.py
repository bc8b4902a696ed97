import logging

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer

logger = logging.getLogger(__name__)


def user_group(user_id):
    return f"user_{user_id}"


def package_group(package_id):
    return f"package_{package_id}"


def _group_send(group, message):
    """Push ``message`` to a channel group. Delivery failures are logged only."""
    try:
        channel_layer = get_channel_layer()
        if channel_layer:
            async_to_sync(channel_layer.group_send)(group, message)
            logger.info(f"WebSocket message sent to {group}")
    except Exception as e:
        logger.error(f"Failed to send WebSocket message to {group}: {e}")


def send_websocket_notification(user_id, notification_data):
    """Send a notification via WebSocket to a specific user."""
    _group_send(
        user_group(user_id),
        {"type": "notification_message", "notification": notification_data},
    )


def send_package_status_update(package_status):
    """Push a package aggregate to everyone watching the package."""
    _group_send(
        package_group(package_status.package_id),
        {
            "type": "package_status_message",
            "package_status": {
                "package_id": package_status.package_id,
                "overall_status": package_status.overall_status,
                "audit_score": package_status.audit_score,
                "total_findings": package_status.total_findings,
                "critical_findings": package_status.critical_findings,
                "open_findings": package_status.open_findings,
                "resolved_findings": package_status.resolved_findings,
                "response_due_date": (
                    package_status.response_due_date.isoformat()
                    if package_status.response_due_date
                    else None
                ),
            },
        },
    )


def _notification_payload(notification):
    finding = notification.related_finding
    return {
        "id": notification.id,
        "message": notification.message,
        "timestamp": notification.timestamp.isoformat(),
        "is_read": notification.is_read,
        "related_finding_id": str(finding.id) if finding else None,
        "related_package_id": finding.package_id if finding else None,
    }


def create_notification_for_user(user, message, finding=None):
    """Create an in-app notification for a user and send via WebSocket."""
    from .models import Notification

    notification = Notification.objects.create(
        user=user,
        message=message,
        related_finding=finding,
    )
    send_websocket_notification(user.id, _notification_payload(notification))
    return notification


def create_notifications_for_role(role, message, finding=None, exclude_user=None):
    """Create in-app notifications for all active users with a specific role."""
    from home.models import User

    users = User.objects.filter(role=role, is_active=True)
    if exclude_user:
        users = users.exclude(id=exclude_user.id)

    notifications = [create_notification_for_user(user, message, finding) for user in users]
    logger.info(f"Created {len(notifications)} notifications for role {role}")
    return notifications


def notify_finding_created(finding):
    """Tell the cardholder a finding was raised against their package."""
    due = f" Response due {finding.due_date.isoformat()}." if finding.due_date else ""
    message = (
        f"New {finding.severity} audit finding '{finding.title}' on package {finding.package_id}.{due}"
    )
    create_notification_for_user(finding.cardholder, message, finding)


def notify_cardholder_responded(finding, response):
    """Tell the auditor who raised the finding that the cardholder answered."""
    cardholder_name = response.cardholder.name
    message = (
        f"{cardholder_name} responded to finding '{finding.title}' "
        f"({response.get_response_type_display().lower()})."
    )
    if finding.auditor:
        create_notification_for_user(finding.auditor, message, finding)
    else:
        from home.models import User
        create_notifications_for_role(User.Roles.AUDITOR, message, finding)


def notify_auditor_responded(finding, response):
    """Tell the cardholder how the auditor settled their response."""
    from home.models import User

    auditor_name = response.auditor.name
    message = (
        f"{auditor_name} reviewed finding '{finding.title}': "
        f"{response.get_response_type_display().lower()}. Status is now {finding.get_status_display().lower()}."
    )
    create_notification_for_user(finding.cardholder, message, finding)

    if response.response_type == response.ResponseType.ESCALATE:
        create_notifications_for_role(
            User.Roles.ADMIN,
            f"Finding '{finding.title}' on package {finding.package_id} was escalated by {auditor_name}.",
            finding,
            exclude_user=response.auditor,
        )
