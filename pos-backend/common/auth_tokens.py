# common/auth_tokens.py
from rest_framework import exceptions
from rest_framework_simplejwt.serializers import TokenObtainPairSerializer

from tenants.models import Tenant, TenantUser


def _resolve_membership(user, tenant_code):
    """
    Membership the new session is bound to: the one for `tenant_code` when
    given, otherwise the user's first active membership.
    """
    if tenant_code:
        tenant = Tenant.objects.filter(code=tenant_code, is_active=True).first()
        if not tenant:
            raise exceptions.AuthenticationFailed("Invalid tenant")
        membership = TenantUser.objects.filter(user=user, tenant=tenant, is_active=True).first()
        if not membership:
            raise exceptions.AuthenticationFailed("User is not a member of this tenant")
        return membership

    membership = (
        user.tenant_memberships.filter(is_active=True, tenant__is_active=True)
        .select_related("tenant")
        .order_by("id")
        .first()
    )
    if not membership:
        raise exceptions.AuthenticationFailed("User has no active tenant memberships")
    return membership


class TenantAwareTokenObtainPairSerializer(TokenObtainPairSerializer):
    """
    Accepts username, password, and optional tenant_code.
    Embeds tenant + role claims in the issued tokens.
    """

    def validate(self, attrs):
        data = super().validate(attrs)

        request = self.context.get("request")
        tenant_code = request.data.get("tenant_code") if request is not None else None
        membership = _resolve_membership(self.user, tenant_code)
        tenant = membership.tenant

        refresh = self.get_token(self.user)
        refresh["tenant_id"] = tenant.id
        refresh["tenant_code"] = tenant.code
        refresh["role"] = membership.role

        data["refresh"] = str(refresh)
        data["access"] = str(refresh.access_token)
        data["tenant"] = {"id": tenant.id, "code": tenant.code, "name": tenant.name}
        data["role"] = membership.role
        data["user"] = {"id": self.user.id, "username": self.user.get_username(), "email": self.user.email}
        return data
