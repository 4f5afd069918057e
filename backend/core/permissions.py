from rest_framework.permissions import SAFE_METHODS, BasePermission


def is_admin(user) -> bool:
    return bool(user and user.is_authenticated and getattr(user, "is_admin", False))


def is_staff_member(user) -> bool:
    """Admins and support agents."""
    return bool(user and user.is_authenticated and getattr(user, "is_staff_member", False))


class IsAdminRole(BasePermission):
    """
    Allows access only to users with the admin role.
    """

    def has_permission(self, request, view):
        return is_admin(getattr(request, "user", None))


class IsAdminOrSupport(BasePermission):
    """
    Allows access to admins and support agents.
    """

    def has_permission(self, request, view):
        return is_staff_member(getattr(request, "user", None))


class IsAdminOrReadOnly(BasePermission):
    """Public reads, admin writes."""

    def has_permission(self, request, view):
        if request.method in SAFE_METHODS:
            return True
        return is_admin(getattr(request, "user", None))


class IsOwnerOrStaff(BasePermission):
    """
    Object-level access for the record's user or staff.
    """

    owner_field = "user_id"

    def has_object_permission(self, request, view, obj):
        user = request.user
        if is_staff_member(user):
            return True
        return getattr(obj, self.owner_field, None) == getattr(user, "id", None)
