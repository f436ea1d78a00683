from rest_framework.permissions import BasePermission

# ------------------------------------------------------------
# Helpers: role checks based on Django staff flags and the
# academy profile role.
# ------------------------------------------------------------


def _profile(user):
    if not user or not user.is_authenticated:
        return None
    return getattr(user, "profile", None)


def is_platform_admin(user) -> bool:
    """Returns True for Django staff and profiles with the admin role."""
    if not user or not user.is_authenticated:
        return False
    if user.is_staff or user.is_superuser:
        return True
    profile = _profile(user)
    return bool(profile and profile.role == profile.Role.ADMIN)


def is_super_admin(user) -> bool:
    if not user or not user.is_authenticated:
        return False
    if user.is_superuser:
        return True
    profile = _profile(user)
    return bool(profile and profile.is_super_admin)


def is_verified_instructor(user) -> bool:
    profile = _profile(user)
    return bool(profile and profile.is_instructor and profile.instructor_verified)


class IsPlatformAdmin(BasePermission):
    """Admin endpoints: staff users or profiles with the admin role."""

    message = "Admin access required"

    def has_permission(self, request, view):
        return is_platform_admin(request.user)


class IsVerifiedInstructor(BasePermission):
    message = "Only verified instructors can create courses"

    def has_permission(self, request, view):
        return is_verified_instructor(request.user)
