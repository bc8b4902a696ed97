"""Role resolution and role-guard predicates.

Everything here is a pure function over objects exposing ``role`` (and, for
some helpers, ``org_id`` / ``approval_limit``). Nothing in this module reads
or writes the database.
"""
from __future__ import annotations

import copy
from decimal import Decimal
from typing import Iterable

from .models import User

Roles = User.Roles

ROLE_HIERARCHY: dict[str, int] = {
    Roles.REQUESTER: 1,
    Roles.APPROVER: 2,
    Roles.CARDHOLDER: 2,
    Roles.AUDITOR: 3,
    Roles.ADMIN: 4,
}


def parse_role(value) -> Roles:
    """Coerce ``value`` to a role, raising ``ValueError`` for unknown values."""
    try:
        return Roles(value)
    except ValueError:
        raise ValueError(f"Unknown role: {value!r}") from None


def get_effective_user(user, debug_role=None):
    """Return the user as the UI should see it.

    Without an override the user is returned untouched. With one, a copy is
    returned whose role is replaced; that copy refuses to be saved.
    """
    if user is None or debug_role is None:
        return user
    effective = copy.copy(user)
    effective.role = parse_role(debug_role)
    effective._role_overridden = True
    return effective


def _is_present(user) -> bool:
    if user is None:
        return False
    return getattr(user, "is_authenticated", True)


def authorize(user, required_roles: Iterable, require_all: bool = False, loading: bool = False) -> bool:
    if loading or not _is_present(user):
        return False
    required = list(required_roles)
    if require_all:
        return all(user.role == role for role in required)
    return user.role in required


def is_admin(user, loading=False) -> bool:
    return authorize(user, [Roles.ADMIN], loading=loading)


def is_approver(user, loading=False) -> bool:
    return authorize(user, [Roles.APPROVER, Roles.ADMIN], loading=loading)


def is_cardholder(user, loading=False) -> bool:
    return authorize(user, [Roles.CARDHOLDER, Roles.ADMIN], loading=loading)


def is_auditor(user, loading=False) -> bool:
    return authorize(user, [Roles.AUDITOR, Roles.ADMIN], loading=loading)


def is_requester(user, loading=False) -> bool:
    """Any authenticated user may raise requests."""
    return authorize(user, Roles.values, loading=loading)


def has_role_level(user, required_role) -> bool:
    if not _is_present(user):
        return False
    return ROLE_HIERARCHY.get(user.role, 0) >= ROLE_HIERARCHY[parse_role(required_role)]


def belongs_to_org(user, org_id: str) -> bool:
    if not _is_present(user):
        return False
    return bool(org_id) and user.org_id == org_id


def can_approve_amount(user, amount) -> bool:
    if is_admin(user):
        return True
    if not is_approver(user) or not user.approval_limit:
        return False
    return Decimal(str(amount)) <= Decimal(user.approval_limit)


def needs_role_assignment(user) -> bool:
    """Freshly provisioned accounts have no org and the default role."""
    if not _is_present(user):
        return False
    return not user.org_id or user.role == Roles.REQUESTER
