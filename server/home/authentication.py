import logging

from django.utils.translation import gettext_lazy as _
from rest_framework_simplejwt.authentication import JWTAuthentication
from rest_framework_simplejwt.exceptions import AuthenticationFailed, InvalidToken

from .identity import identity_adapter, identity_from_claims

logger = logging.getLogger(__name__)


class ProvisioningJWTAuthentication(JWTAuthentication):
    """JWT authentication that provisions a user record for unseen identities."""

    def get_user(self, validated_token):
        try:
            identity = identity_from_claims(validated_token)
        except KeyError:
            raise InvalidToken(_("Token contained no recognizable user identification"))

        user = identity_adapter.handle_auth_state_change(identity)
        if user is None:
            raise AuthenticationFailed(_("User not found"), code="user_not_found")
        if not user.is_active:
            logger.info(f"Rejected token for inactive user {user.username}")
            raise AuthenticationFailed(_("User is inactive"), code="user_inactive")
        return user
