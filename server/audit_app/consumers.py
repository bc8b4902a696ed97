import json
import logging
from urllib.parse import parse_qs

from channels.db import database_sync_to_async
from channels.generic.websocket import AsyncWebsocketConsumer
from rest_framework_simplejwt.exceptions import InvalidToken, TokenError
from rest_framework_simplejwt.tokens import AccessToken

from home.identity import identity_adapter, identity_from_claims
from home.roles import is_auditor

from .notifications import package_group, user_group

logger = logging.getLogger(__name__)


class NotificationConsumer(AsyncWebsocketConsumer):
    """WebSocket stream of notifications and watched package statuses."""

    async def connect(self):
        self.user = None
        self.groups_joined = set()

        query = parse_qs(self.scope.get("query_string", b"").decode())
        token = (query.get("token") or [None])[0]
        if not token:
            logger.warning("WebSocket connection rejected: No token provided")
            await self.close()
            return

        self.user = await self.get_user_from_token(token)
        if not self.user or not self.user.is_active:
            logger.warning("WebSocket connection rejected: Invalid token")
            self.user = None
            await self.close()
            return

        await self.join(user_group(self.user.id))
        await self.accept()
        logger.info(f"WebSocket connected for user {self.user.username} (role: {self.user.role})")

    async def disconnect(self, close_code):
        for group in list(self.groups_joined):
            await self.leave(group)
        logger.info(f"WebSocket disconnected for user {self.user.username if self.user else 'unknown'}")

    async def receive(self, text_data=None, bytes_data=None):
        try:
            data = json.loads(text_data or "")
        except json.JSONDecodeError:
            logger.error("Invalid JSON received in WebSocket")
            return
        if not isinstance(data, dict):
            logger.error(f"Unexpected WebSocket payload: {type(data).__name__}")
            return

        message_type = data.get("type")
        if message_type == "ping":
            await self.send(text_data=json.dumps({"type": "pong"}))
        elif message_type == "mark_read":
            notification_id = data.get("notification_id")
            if notification_id:
                await self.mark_notification_read(notification_id)
        elif message_type == "watch_package":
            package_id = data.get("package_id")
            if isinstance(package_id, str) and package_id and await self.can_watch_package(package_id):
                await self.join(package_group(package_id))
                await self.send(text_data=json.dumps({"type": "watching", "package_id": package_id}))
            else:
                await self.send(text_data=json.dumps({"type": "error", "detail": "Package not available"}))
        elif message_type == "unwatch_package":
            package_id = data.get("package_id")
            if package_id:
                await self.leave(package_group(package_id))

    async def join(self, group):
        await self.channel_layer.group_add(group, self.channel_name)
        self.groups_joined.add(group)

    async def leave(self, group):
        if group in self.groups_joined:
            await self.channel_layer.group_discard(group, self.channel_name)
            self.groups_joined.discard(group)

    async def notification_message(self, event):
        await self.send(text_data=json.dumps({
            "type": "notification",
            "notification": event["notification"],
        }))

    async def package_status_message(self, event):
        await self.send(text_data=json.dumps({
            "type": "package_status",
            "package_status": event["package_status"],
        }))

    @database_sync_to_async
    def get_user_from_token(self, token):
        """Validate the JWT and resolve (or provision) its user."""
        try:
            access_token = AccessToken(token)
            return identity_adapter.handle_auth_state_change(identity_from_claims(access_token))
        except (InvalidToken, TokenError, KeyError) as e:
            logger.error(f"Token validation failed: {e}")
            return None

    @database_sync_to_async
    def can_watch_package(self, package_id):
        from .models import AuditPackageStatus

        if is_auditor(self.user):
            return True
        return AuditPackageStatus.objects.filter(package_id=package_id, cardholder=self.user).exists()

    @database_sync_to_async
    def mark_notification_read(self, notification_id):
        from .models import Notification

        try:
            updated = Notification.objects.filter(id=notification_id, user=self.user).update(is_read=True)
        except (TypeError, ValueError):
            logger.error(f"Invalid notification id received: {notification_id!r}")
            return
        if not updated:
            logger.info(f"Notification {notification_id} not found for user {self.user.username}")
