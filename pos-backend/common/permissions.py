# common/permissions.py
from rest_framework import permissions

from common.api_mixins import resolve_request_tenant
from common.roles import PROGRAM_ADMIN_ROLES
from tenants.models import TenantUser


def user_role_for_tenant(user, tenant):
    if not (user and tenant):
        return None
    return (
        TenantUser.objects.filter(user=user, tenant=tenant, is_active=True)
        .values_list("role", flat=True)
        .first()
    )


class IsOwnerOrAdmin(permissions.BasePermission):
    """
    Read access for any tenant member; writes only for OWNER or ADMIN of the request tenant.
    """
    def has_permission(self, request, view):
        tenant = resolve_request_tenant(request)
        if not (request.user and request.user.is_authenticated and tenant):
            return False
        if request.user.is_superuser:
            return True
        role = user_role_for_tenant(request.user, tenant)
        if request.method in permissions.SAFE_METHODS:
            return role is not None
        return role in PROGRAM_ADMIN_ROLES
