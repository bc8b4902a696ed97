"""Adapter between the identity provider and local user records."""
from __future__ import annotations

import logging
from dataclasses import dataclass

from django.conf import settings
from django.db import DatabaseError, transaction
from django.dispatch import Signal

from .models import User
from .subscriptions import Subscription

logger = logging.getLogger(__name__)

LOAD_ERROR = "user not found/loading error"

# Sent with ``state=AuthState`` whenever the adapter observes a change.
auth_state_changed = Signal()


@dataclass(frozen=True)
class AuthIdentity:
    uid: str
    email: str = ""
    name: str = ""


@dataclass(frozen=True)
class AuthState:
    user: User | None = None
    loading: bool = True
    error: str | None = None


def identity_from_claims(claims) -> AuthIdentity:
    uid_claim = getattr(settings, "SIMPLE_JWT", {}).get("USER_ID_CLAIM", "user_id")
    return AuthIdentity(
        uid=str(claims[uid_claim]),
        email=claims.get("email", "") or "",
        name=claims.get("name", "") or "",
    )


def identity_for_user(user) -> AuthIdentity:
    return AuthIdentity(uid=user.uid, email=user.email, name=user.name)


class UserStore:
    """Reads and writes user records keyed by the provider's uid."""

    EDITABLE_FIELDS = {"first_name", "last_name", "email", "role", "org_id", "approval_limit"}

    def get_user_by_id(self, uid):
        return User.objects.filter(uid=uid).first()

    def create_user(self, uid, data):
        data = dict(data)
        role = data.pop("role", User.Roles.REQUESTER)
        username = data.pop("username", None) or data.get("email") or uid
        user = User(uid=uid, username=username, role=User.Roles(role), **data)
        user.set_unusable_password()
        user.save()
        logger.info(f"Provisioned user {user.username} (uid: {uid}, role: {user.role})")
        return user

    def update_user(self, uid, patch):
        user = User.objects.get(uid=uid)
        unknown = set(patch) - self.EDITABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields not editable: {', '.join(sorted(unknown))}")
        if "role" in patch:
            patch = {**patch, "role": User.Roles(patch["role"])}
        for attr, value in patch.items():
            setattr(user, attr, value)
        user.save(update_fields=list(patch))
        logger.info(f"Updated user {user.username}: {sorted(patch)}")
        return user


class IdentityAdapter:
    def __init__(self, store=None, default_role=None):
        self.store = store or UserStore()
        self._default_role = default_role

    @property
    def default_role(self):
        return self._default_role or getattr(settings, "DEFAULT_USER_ROLE", User.Roles.REQUESTER)

    def subscribe_auth_state(self, callback) -> Subscription:
        def receiver(sender, state, **kwargs):
            callback(state)

        return Subscription(auth_state_changed, receiver)

    def publish(self, state: AuthState):
        auth_state_changed.send(sender=self.__class__, state=state)

    def resolve_identity(self, identity: AuthIdentity):
        """Return the user for ``identity``, creating the record on first sight."""
        with transaction.atomic():
            user = self.store.get_user_by_id(identity.uid)
            if user is not None:
                return user
            first_name, _, last_name = identity.name.partition(" ")
            return self.store.create_user(
                identity.uid,
                {
                    "email": identity.email,
                    "first_name": first_name,
                    "last_name": last_name,
                    "role": self.default_role,
                },
            )

    def handle_auth_state_change(self, identity: AuthIdentity | None):
        if identity is None:
            self.publish(AuthState(user=None, loading=False))
            return None
        self.publish(AuthState(user=None, loading=True))
        try:
            user = self.resolve_identity(identity)
        except (DatabaseError, ValueError) as e:
            logger.exception(f"Failed to load user for uid {identity.uid}: {e}")
            self.publish(AuthState(user=None, loading=False, error=LOAD_ERROR))
            return None
        self.publish(AuthState(user=user, loading=False))
        return user


identity_adapter = IdentityAdapter()
