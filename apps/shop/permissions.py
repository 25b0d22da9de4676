from rest_framework.permissions import BasePermission

from .errors import AuthorizationError


class IsShopAdmin(BasePermission):
    """Admin API guard; answers 401 for both anonymous and non-admin sessions."""

    def has_permission(self, request, view):
        user = request.user
        if not (user and user.is_authenticated and getattr(user, "is_shop_admin", False)):
            raise AuthorizationError()
        return True
