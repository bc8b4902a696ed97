from rest_framework import permissions

from .models import User
from .roles import authorize


class RolePermission(permissions.BasePermission):
    """Gate on the persisted role of ``request.user``.

    Debug role overrides never reach this check.
    """

    allowed_roles: list[str] = []

    def has_permission(self, request, view):
        if not request.user or not request.user.is_authenticated:
            return False
        if not self.allowed_roles:
            return True
        return authorize(request.user, self.allowed_roles)


class IsAdmin(RolePermission):
    allowed_roles = [User.Roles.ADMIN]


class IsApproverOrAdmin(RolePermission):
    allowed_roles = [User.Roles.APPROVER, User.Roles.ADMIN]


class IsCardholderOrAdmin(RolePermission):
    allowed_roles = [User.Roles.CARDHOLDER, User.Roles.ADMIN]


class IsAuditorOrAdmin(RolePermission):
    allowed_roles = [User.Roles.AUDITOR, User.Roles.ADMIN]
