"""Per-session auth context carrying the debug role override.

The override lives in the session's storage (the Django session for web
requests) and nowhere else: it is never written to the user record and DRF
permission classes never look at it.
"""
import logging

from django.conf import settings

from .identity import AuthState
from .roles import authorize, get_effective_user, parse_role

logger = logging.getLogger(__name__)

DEBUG_ROLE_KEY = "debug_role"
DEBUG_ROLE_OWNER_KEY = "debug_role_owner"


def debug_role_switching_enabled():
    return getattr(settings, "DEBUG_ROLE_SWITCHING_ENABLED", settings.DEBUG)


class AuthSession:
    def __init__(self, storage=None):
        self._storage = storage if storage is not None else {}
        self.user = None
        self.loading = True
        self.error = None

    @property
    def debug_role(self):
        return self._storage.get(DEBUG_ROLE_KEY)

    @property
    def original_user(self):
        return self.user

    @property
    def effective_user(self):
        return get_effective_user(self.user, self.debug_role)

    def on_auth_state_change(self, state: AuthState):
        current_uid = state.user.uid if state.user is not None else None
        if not state.loading and self._storage.get(DEBUG_ROLE_OWNER_KEY) != current_uid:
            self.clear_debug_role()
        self.user = state.user
        self.loading = state.loading
        self.error = state.error

    def switch_role(self, role):
        if role is None:
            self.clear_debug_role()
            return
        role = parse_role(role)
        if self.user is None:
            raise ValueError("Cannot switch role without an authenticated user")
        self._storage[DEBUG_ROLE_KEY] = role.value
        self._storage[DEBUG_ROLE_OWNER_KEY] = self.user.uid
        logger.info(f"Debug role for {self.user.username} set to {role.value} (actual: {self.user.role})")

    def clear_debug_role(self):
        if self._storage.get(DEBUG_ROLE_KEY) is not None:
            logger.info("Debug role cleared")
        self._storage.pop(DEBUG_ROLE_KEY, None)
        self._storage.pop(DEBUG_ROLE_OWNER_KEY, None)

    def authorize(self, required_roles, require_all=False):
        return authorize(
            self.effective_user, required_roles, require_all=require_all, loading=self.loading
        )


def get_auth_session(request):
    """Build (once per request) the auth session for an authenticated request."""
    session = getattr(request, "_auth_session", None)
    if session is not None:
        return session
    user = request.user if request.user and request.user.is_authenticated else None
    session = AuthSession(request.session)
    session.on_auth_state_change(AuthState(user=user, loading=False))
    request._auth_session = session
    return session
