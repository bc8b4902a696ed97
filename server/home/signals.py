from django.contrib.auth.signals import user_logged_in, user_logged_out
from django.dispatch import receiver

from .identity import identity_adapter, identity_for_user
from .session import AuthSession


def _clear_debug_role(request):
    session = getattr(request, "session", None)
    if session is not None:
        AuthSession(session).clear_debug_role()


@receiver(user_logged_in)
def forward_login(sender, request, user, **kwargs):
    _clear_debug_role(request)
    identity_adapter.handle_auth_state_change(identity_for_user(user))


@receiver(user_logged_out)
def forward_logout(sender, request, user, **kwargs):
    _clear_debug_role(request)
    identity_adapter.handle_auth_state_change(None)
