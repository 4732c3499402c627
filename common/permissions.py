import hmac
import logging

from django.conf import settings
from rest_framework.permissions import BasePermission

from core.models import User

logger = logging.getLogger("security.authorization")

STAFF_AND_ADMIN = {User.Role.STAFF, User.Role.ADMIN}
ADMIN_ONLY = {User.Role.ADMIN}

ROLE_CAPABILITY_MATRIX = {
    "billing.access": STAFF_AND_ADMIN,
    "catalog.view": STAFF_AND_ADMIN,
    "catalog.manage": ADMIN_ONLY,
    "customers.view": STAFF_AND_ADMIN,
    "customers.create": STAFF_AND_ADMIN,
    "customers.manage": ADMIN_ONLY,
    "invoices.view": STAFF_AND_ADMIN,
    "payments.record": STAFF_AND_ADMIN,
    "reports.view": STAFF_AND_ADMIN,
    "reports.export": ADMIN_ONLY,
    "settings.view": STAFF_AND_ADMIN,
    "settings.manage": ADMIN_ONLY,
    "device.read": STAFF_AND_ADMIN,
    "device.manage": ADMIN_ONLY,
    "sync.access": STAFF_AND_ADMIN,
    "user.manage": ADMIN_ONLY,
    "audit.view": ADMIN_ONLY,
}


def get_user_role(user):
    if not user or not user.is_authenticated:
        return None
    if user.is_superuser:
        return User.Role.ADMIN
    role = getattr(user, "role", None)
    if role:
        return role
    return User.Role.STAFF


def user_has_capability(user, capability):
    if not user or not user.is_authenticated:
        return False
    if user.is_superuser:
        return True
    allowed_roles = ROLE_CAPABILITY_MATRIX.get(capability)
    if not allowed_roles:
        return False
    return get_user_role(user) in allowed_roles


class RoleCapabilityPermission(BasePermission):
    """Permission class that validates role capability by action/method and logs denied attempts."""

    message = "You do not have permission to perform this action."

    def has_permission(self, request, view):
        capability_map = getattr(view, "permission_action_map", {})
        action_key = getattr(view, "action", None) or request.method.lower()
        capability = capability_map.get(action_key)
        if capability is None:
            return True

        allowed = user_has_capability(request.user, capability)
        if not allowed:
            logger.warning(
                "permission_denied capability=%s user=%s role=%s method=%s path=%s view=%s action=%s",
                capability,
                getattr(request.user, "username", "anonymous"),
                get_user_role(request.user),
                request.method,
                request.path,
                view.__class__.__name__,
                action_key,
            )
        return allowed


class ExportApiKeyOrCapability(BasePermission):
    """Admit machine consumers presenting the configured `X-API-Key`, otherwise require `reports.export`."""

    message = "A valid API key or an admin session is required."

    def has_permission(self, request, view):
        configured_key = getattr(settings, "POS_EXPORT_API_KEY", "")
        presented_key = request.headers.get("X-API-Key")
        if configured_key and presented_key:
            if hmac.compare_digest(presented_key, configured_key):
                return True
            logger.warning("export_api_key_rejected path=%s", request.path)
            return False
        return user_has_capability(request.user, "reports.export")
