from decimal import Decimal

from django.contrib.auth import get_user_model
from django.test import TestCase
from rest_framework.test import APIRequestFactory, force_authenticate

from clients.models import Client, ClientStatus
from clients.services import (
    client_stats,
    delete_client,
    document_exists,
    filter_clients,
    save_client,
)
from clients.views import (
    ClientDetailView,
    ClientExportView,
    ClientListCreateView,
    ClientSearchView,
    ClientStatsView,
    ClientValidateDocumentView,
)
from common.exceptions import ValidationError
from tenants.models import Tenant, TenantUser


def make_client(tenant, document="1001", first_name="Juan", last_name="Pérez", **extra):
    data = {
        "first_name": first_name,
        "last_name": last_name,
        "document_type": "cedula",
        "document": document,
        "phone": "+57 300 123 4567",
    }
    data.update(extra)
    return save_client(tenant, data)


class ClientServiceTests(TestCase):
    def setUp(self):
        self.tenant = Tenant.objects.create(name="Acme", code="acme")
        self.other_tenant = Tenant.objects.create(name="Other", code="other")

    def test_full_name_is_composed(self):
        client = make_client(self.tenant)
        self.assertEqual(client.name, "Juan Pérez")
        self.assertEqual(client.points, 0)
        self.assertEqual(client.total_purchases, 0)
        self.assertEqual(client.total_spent, Decimal("0"))

    def test_duplicate_document_rejected_on_create(self):
        make_client(self.tenant, document="1001")
        with self.assertRaises(ValidationError):
            make_client(self.tenant, document="1001", first_name="Ana")
        self.assertEqual(Client.objects.filter(tenant=self.tenant).count(), 1)

    def test_same_document_allowed_for_other_type_or_tenant(self):
        make_client(self.tenant, document="1001")
        make_client(self.tenant, document="1001", document_type="nit")
        make_client(self.other_tenant, document="1001")
        self.assertEqual(Client.objects.filter(document="1001").count(), 3)

    def test_edit_keeps_own_document_and_id(self):
        client = make_client(self.tenant, document="1001")
        updated = save_client(self.tenant, {"document": "1001", "city": "Medellín"}, instance=client)
        self.assertEqual(updated.pk, client.pk)
        self.assertEqual(updated.city, "Medellín")

    def test_edit_to_another_clients_document_rejected(self):
        make_client(self.tenant, document="1001")
        other = make_client(self.tenant, document="2002", first_name="Ana")
        with self.assertRaises(ValidationError):
            save_client(self.tenant, {"document": "1001"}, instance=other)

    def test_soft_delete_hides_client_and_frees_document(self):
        client = make_client(self.tenant, document="1001")
        delete_client(client)
        self.assertFalse(Client.objects.filter(pk=client.pk).exists())
        self.assertTrue(Client.all_objects.filter(pk=client.pk, deleted_at__isnull=False).exists())
        self.assertFalse(document_exists(self.tenant, "cedula", "1001"))
        make_client(self.tenant, document="1001")

    def test_filters(self):
        make_client(self.tenant, document="1001", email="juan@example.com", city="Bogotá")
        make_client(self.tenant, document="2002", first_name="Ana", status=ClientStatus.BLOCKED)
        qs = Client.objects.filter(tenant=self.tenant)
        self.assertEqual(filter_clients(qs, {"has_email": "true"}).count(), 1)
        self.assertEqual(filter_clients(qs, {"has_email": "false"}).count(), 1)
        self.assertEqual(filter_clients(qs, {"status": "blocked"}).count(), 1)
        self.assertEqual(filter_clients(qs, {"city": "bogotá"}).count(), 1)
        self.assertEqual(filter_clients(qs, {"search": "ana"}).count(), 1)
        self.assertEqual(filter_clients(qs, {"min_spent": "1"}).count(), 0)
        with self.assertRaises(ValidationError):
            filter_clients(qs, {"min_purchases": "many"})

    def test_stats(self):
        make_client(self.tenant, document="1001")
        make_client(self.tenant, document="2002", first_name="Ana", status=ClientStatus.INACTIVE)
        stats = client_stats(self.tenant)
        self.assertEqual(stats["total_clients"], 2)
        self.assertEqual(stats["active_clients"], 1)
        self.assertEqual(stats["new_clients_this_month"], 2)
        self.assertEqual(stats["total_points_issued"], 0)
        self.assertEqual(stats["top_spending_clients"], [])


class ClientApiTests(TestCase):
    def setUp(self):
        self.factory = APIRequestFactory()
        self.tenant = Tenant.objects.create(name="Acme", code="acme")
        self.user = get_user_model().objects.create_user(username="manager", password="test-pass")
        self.cashier = get_user_model().objects.create_user(username="cashier", password="test-pass")
        TenantUser.objects.create(tenant=self.tenant, user=self.user, role="manager")
        TenantUser.objects.create(tenant=self.tenant, user=self.cashier, role="cashier")

    def _request(self, method, path, data=None, user=None):
        if method == "get":
            request = self.factory.get(path, data or {})
        else:
            request = getattr(self.factory, method)(path, data or {}, format="json")
        force_authenticate(request, user=user or self.user)
        request.tenant = self.tenant
        return request

    def test_create_client(self):
        payload = {
            "name": "Juan",
            "last_name": "Pérez",
            "document_type": "cedula",
            "document_number": "1020304050",
            "phone": "+57 (300) 123-4567",
            "email": "juan@example.com",
        }
        response = ClientListCreateView.as_view()(self._request("post", "/api/v1/clients", payload))
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data["name"], "Juan Pérez")
        self.assertEqual(response.data["document"], "1020304050")
        self.assertEqual(response.data["points"], 0)
        self.assertIn("message", response.data)
        client = Client.objects.get(pk=response.data["id"])
        self.assertEqual(client.created_by, self.user)

    def test_create_rejects_invalid_fields(self):
        payload = {
            "name": "J",
            "last_name": "Pérez",
            "document_type": "licencia",
            "document_number": "10 20",
            "phone": "call me",
            "email": "not-an-email",
        }
        response = ClientListCreateView.as_view()(self._request("post", "/api/v1/clients", payload))
        self.assertEqual(response.status_code, 400)
        for field in ("name", "document_type", "document_number", "phone", "email"):
            self.assertIn(field, response.data)
        self.assertIn("message", response.data)
        self.assertFalse(Client.objects.exists())

    def test_create_duplicate_document(self):
        make_client(self.tenant, document="1001")
        payload = {
            "name": "Ana",
            "last_name": "Gómez",
            "document_type": "cedula",
            "document": "1001",
            "phone": "3001234567",
        }
        response = ClientListCreateView.as_view()(self._request("post", "/api/v1/clients", payload))
        self.assertEqual(response.status_code, 400)
        self.assertIn("document", response.data)

    def test_list_is_paginated_and_tenant_scoped(self):
        for i in range(3):
            make_client(self.tenant, document=f"100{i}")
        make_client(Tenant.objects.create(name="Other", code="other"), document="9999")

        response = ClientListCreateView.as_view()(
            self._request("get", "/api/v1/clients", {"page": 1, "limit": 2})
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(response.data["data"]), 2)
        self.assertEqual(response.data["pagination"]["total"], 3)
        self.assertEqual(response.data["pagination"]["totalPages"], 2)
        self.assertTrue(response.data["pagination"]["hasNext"])

    def test_patch_updates_name(self):
        client = make_client(self.tenant)
        response = ClientDetailView.as_view()(
            self._request("patch", f"/api/v1/clients/{client.pk}", {"last_name": "Rodríguez"}),
            pk=client.pk,
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["name"], "Juan Rodríguez")

    def test_unknown_client_is_404(self):
        response = ClientDetailView.as_view()(self._request("get", "/api/v1/clients/999"), pk=999)
        self.assertEqual(response.status_code, 404)

    def test_delete_requires_manager_role(self):
        client = make_client(self.tenant)
        response = ClientDetailView.as_view()(
            self._request("delete", f"/api/v1/clients/{client.pk}", user=self.cashier), pk=client.pk
        )
        self.assertEqual(response.status_code, 403)

        response = ClientDetailView.as_view()(
            self._request("delete", f"/api/v1/clients/{client.pk}"), pk=client.pk
        )
        self.assertEqual(response.status_code, 200)
        self.assertFalse(Client.objects.filter(pk=client.pk).exists())

    def test_validate_document(self):
        make_client(self.tenant, document="1001")
        view = ClientValidateDocumentView.as_view()

        response = view(self._request("post", "/x", {"document_type": "cedula", "document_number": "1001"}))
        self.assertEqual(response.data, {"isValid": False, "exists": True})

        response = view(self._request("post", "/x", {"document_type": "cedula", "document_number": "2002"}))
        self.assertEqual(response.data, {"isValid": True, "exists": False})

        response = view(self._request("post", "/x", {"document_type": "cedula", "document_number": "20 02"}))
        self.assertEqual(response.data, {"isValid": False, "exists": False})

    def test_search_and_stats(self):
        make_client(self.tenant, document="1001")
        make_client(self.tenant, document="2002", first_name="Ana", last_name="Gómez")

        response = ClientSearchView.as_view()(self._request("get", "/x", {"search": "gómez"}))
        self.assertEqual([row["document"] for row in response.data], ["2002"])

        response = ClientStatsView.as_view()(self._request("get", "/x"))
        self.assertEqual(response.data["total_clients"], 2)

    def test_top_spenders_carry_last_name_and_document_number(self):
        from loyalty.services import record_purchase

        client = make_client(self.tenant, document="1001")
        record_purchase(client, Decimal("25000"), "cash")
        response = ClientStatsView.as_view()(self._request("get", "/x"))
        top = response.data["top_spending_clients"][0]["client"]
        self.assertEqual(top["last_name"], "Pérez")
        self.assertEqual(top["document_number"], "1001")

    def test_out_of_range_ids(self):
        make_client(self.tenant, document="1001")
        response = ClientValidateDocumentView.as_view()(self._request(
            "post", "/x", {"document_type": "cedula", "document_number": "1001", "exclude_id": 10**20}
        ))
        self.assertEqual(response.status_code, 400)

        response = ClientDetailView.as_view()(self._request("get", "/x"), pk=10**20)
        self.assertEqual(response.status_code, 404)

    def test_export_csv(self):
        make_client(self.tenant, document="1001")
        response = ClientExportView.as_view()(self._request("get", "/api/v1/clients/export"))
        self.assertEqual(response.status_code, 200)
        lines = response.content.decode("utf-8").strip().splitlines()
        self.assertTrue(lines[0].startswith("id,name,document_type,document"))
        self.assertEqual(len(lines), 2)
        self.assertIn("Juan Pérez", lines[1])
