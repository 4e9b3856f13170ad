from rest_framework.permissions import BasePermission

from common.exceptions import ValidationError
from tenants.models import Tenant


def resolve_request_tenant(request):
    """
    Tenant set by TenantContextMiddleware, falling back to the JWT claims.
    """
    t = getattr(request, "tenant", None)
    if t:
        return t
    payload = getattr(request, "auth", None)
    # dict in tests, simplejwt AccessToken in production; both expose .get()
    tenant_id = payload.get("tenant_id") if hasattr(payload, "get") else None
    if tenant_id:
        return Tenant.objects.filter(id=tenant_id, is_active=True).first()
    return None


class IsInTenant(BasePermission):
    def has_permission(self, request, view):
        u = getattr(request, "user", None)
        if not (u and u.is_authenticated):
            return False
        t = resolve_request_tenant(request)
        if u.is_superuser or t is None:
            return True
        return u.tenant_memberships.filter(tenant=t, is_active=True).exists()


class RoleRequired(BasePermission):
    """
    View can define:
      permission_roles = { "POST": [TenantRole.ADMIN, ...], "PUT": [TenantRole.OWNER] }
    If method not in dict -> allowed (subject to IsInTenant).
    """
    message = "Your role does not allow this operation."

    def has_permission(self, request, view):
        if request.user.is_superuser:
            return True
        roles_map = getattr(view, "permission_roles", {})
        needed = roles_map.get(request.method, [])
        if not needed:
            return True
        tenant = resolve_request_tenant(request)
        membership = request.user.tenant_memberships.filter(tenant=tenant, is_active=True).first()
        return bool(membership and membership.role in needed)


class TenantScopedMixin:
    """
    Resolves the request tenant and filters querysets by it.
    Models must have a direct FK named by `tenant_field`.
    """
    tenant_field = "tenant"

    def get_tenant(self):
        tenant = resolve_request_tenant(self.request)
        if tenant is None:
            raise ValidationError({"detail": "No tenant in context."})
        return tenant

    def get_queryset(self):
        qs = super().get_queryset()
        return qs.filter(**{self.tenant_field: self.get_tenant()})
