from django.contrib.auth import get_user_model
from django.test import TestCase
from rest_framework.test import APIRequestFactory

from common.auth_views import TenantAwareTokenObtainPairView
from tenants.models import Tenant, TenantUser


class TenantTokenTests(TestCase):
    def setUp(self):
        self.factory = APIRequestFactory()
        self.acme = Tenant.objects.create(name="Acme", code="acme")
        self.beta = Tenant.objects.create(name="Beta", code="beta")
        self.user = get_user_model().objects.create_user(username="cashier", password="test-pass")
        TenantUser.objects.create(tenant=self.acme, user=self.user, role="cashier")
        TenantUser.objects.create(tenant=self.beta, user=self.user, role="manager")

    def _obtain(self, **extra):
        payload = {"username": "cashier", "password": "test-pass"}
        payload.update(extra)
        request = self.factory.post("/api/v1/auth/token/", payload, format="json")
        return TenantAwareTokenObtainPairView.as_view()(request)

    def test_first_membership_is_used_by_default(self):
        response = self._obtain()
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["tenant"]["code"], "acme")
        self.assertEqual(response.data["role"], "cashier")
        self.assertIn("access", response.data)

    def test_tenant_code_selects_membership(self):
        response = self._obtain(tenant_code="beta")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["tenant"]["id"], self.beta.id)
        self.assertEqual(response.data["role"], "manager")

    def test_unknown_tenant_or_non_member_is_rejected(self):
        self.assertEqual(self._obtain(tenant_code="nope").status_code, 401)

        Tenant.objects.create(name="Gamma", code="gamma")
        self.assertEqual(self._obtain(tenant_code="gamma").status_code, 401)

    def test_inactive_membership_is_skipped(self):
        TenantUser.objects.filter(tenant=self.acme).update(is_active=False)
        response = self._obtain()
        self.assertEqual(response.data["tenant"]["code"], "beta")
