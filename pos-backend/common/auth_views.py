# common/auth_views.py
from rest_framework_simplejwt.views import TokenObtainPairView

from .auth_tokens import TenantAwareTokenObtainPairSerializer


class TenantAwareTokenObtainPairView(TokenObtainPairView):
    """
    POST /api/v1/auth/token/ {username, password, tenant_code?}
    """
    serializer_class = TenantAwareTokenObtainPairSerializer
