from __future__ import annotations

from typing import Any

from rest_framework import permissions

from .exceptions import ForbiddenError


def is_admin(user) -> bool:
    return bool(user and user.is_authenticated and getattr(user, "is_admin", False))


def require_admin(user) -> None:
    if not is_admin(user):
        raise ForbiddenError("Admin access is required.")


def require_owner_or_admin(user, owner_id: Any) -> None:
    if is_admin(user):
        return
    if user and user.is_authenticated and str(user.pk) == str(owner_id):
        return
    raise ForbiddenError("You do not have access to this resource.")


class IsAdminRole(permissions.BasePermission):
    message = "Admin access is required."

    def has_permission(self, request, view) -> bool:
        return is_admin(request.user)
