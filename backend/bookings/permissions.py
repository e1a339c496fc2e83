from rest_framework.permissions import BasePermission


class IsCustomer(BasePermission):
    """
    Allows access only to users with role == 'user'.
    Keeps role check logic centralized.
    """
    message = "Only customers can access this endpoint"

    def has_permission(self, request, view):
        user = getattr(request, "user", None)
        if not user or not user.is_authenticated:
            return False
        return getattr(user, "role", None) == "user"


class IsDriver(BasePermission):
    message = "Only drivers can access this endpoint"

    def has_permission(self, request, view):
        user = getattr(request, "user", None)
        if not user or not user.is_authenticated:
            return False
        return getattr(user, "role", None) == "driver"
