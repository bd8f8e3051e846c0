from rest_framework.permissions import SAFE_METHODS, BasePermission


class IsAdminRole(BasePermission):
    message = 'Administrator role required.'

    def has_permission(self, request, view):
        return bool(getattr(request.user, 'is_admin', False))


class ReadOnlyOrAdmin(IsAdminRole):
    """Anyone may browse; only administrators may change."""

    def has_permission(self, request, view):
        if request.method in SAFE_METHODS:
            return True
        return super().has_permission(request, view)
