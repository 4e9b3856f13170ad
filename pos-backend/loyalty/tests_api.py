from decimal import Decimal
from unittest import mock

from django.contrib.auth import get_user_model
from django.db import DatabaseError
from django.test import TestCase
from rest_framework.test import APIRequestFactory, force_authenticate

from clients.models import ClientPurchase
from clients.services import save_client
from loyalty import services
from loyalty.models import PointsTransaction
from loyalty.views import (
    ClientBalanceView,
    ClientDocumentSearchView,
    ClientPointsAdjustView,
    ClientPointsHistoryView,
    ClientPurchasesView,
    PointsConfigView,
    PointsExpireView,
    PointsExportView,
    PointsRedeemView,
    PointsReportView,
    PointsStatsView,
    PointsTransactionListView,
)
from tenants.models import Tenant, TenantUser


class LoyaltyApiTestBase(TestCase):
    def setUp(self):
        self.factory = APIRequestFactory()
        self.tenant = Tenant.objects.create(name="Acme", code="acme")
        User = get_user_model()
        self.owner = User.objects.create_user(username="owner", password="test-pass")
        self.manager = User.objects.create_user(username="manager", password="test-pass")
        self.cashier = User.objects.create_user(username="cashier", password="test-pass")
        TenantUser.objects.create(tenant=self.tenant, user=self.owner, role="owner")
        TenantUser.objects.create(tenant=self.tenant, user=self.manager, role="manager")
        TenantUser.objects.create(tenant=self.tenant, user=self.cashier, role="cashier")

        self.client_obj = save_client(self.tenant, {
            "first_name": "Juan",
            "last_name": "Pérez",
            "document_type": "cedula",
            "document": "1001",
            "phone": "3001234567",
        })

    def _request(self, method, path, data=None, user=None, headers=None):
        extra = headers or {}
        if method == "get":
            request = self.factory.get(path, data or {}, **extra)
        else:
            request = getattr(self.factory, method)(path, data or {}, format="json", **extra)
        force_authenticate(request, user=user or self.manager)
        request.tenant = self.tenant
        return request


class PointsAdjustApiTests(LoyaltyApiTestBase):
    def _adjust(self, data, user=None, headers=None):
        request = self._request("post", "/x", data, user=user, headers=headers)
        return ClientPointsAdjustView.as_view()(request, pk=self.client_obj.pk)

    def test_add_with_direction(self):
        services.adjust_points(self.client_obj, 500, "Opening balance")
        response = self._adjust({"points": 100, "direction": "add", "description": "Birthday bonus"})
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data["points"], 100)
        self.assertEqual(response.data["type"], "adjustment")
        self.assertTrue(response.data["is_credit"])
        self.assertEqual(response.data["balance"], 600)
        self.assertIn("message", response.data)

    def test_signed_wire_form(self):
        services.adjust_points(self.client_obj, 50, "Opening balance")
        response = self._adjust({"points": -50, "description": "Manual correction"})
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data["balance"], 0)
        self.assertFalse(response.data["is_credit"])

    def test_subtract_over_balance_is_400_with_message(self):
        services.adjust_points(self.client_obj, 50, "Opening balance")
        response = self._adjust({"points": 51, "direction": "subtract", "description": "Manual correction"})
        self.assertEqual(response.status_code, 400)
        self.assertIn("Insufficient points", response.data["message"])
        self.client_obj.refresh_from_db()
        self.assertEqual(self.client_obj.points, 50)

    def test_invalid_payloads(self):
        response = self._adjust({"points": 10, "direction": "add", "description": "abc"})
        self.assertEqual(response.status_code, 400)
        self.assertIn("description", response.data)

        response = self._adjust({"points": 0, "direction": "add", "description": "Manual correction"})
        self.assertEqual(response.status_code, 400)

        response = self._adjust({"points": 0, "description": "Manual correction"})
        self.assertEqual(response.status_code, 400)

        response = self._adjust({"points": 5, "direction": "sideways", "description": "Manual correction"})
        self.assertEqual(response.status_code, 400)
        self.assertFalse(PointsTransaction.objects.exists())

    def test_cashier_cannot_adjust(self):
        response = self._adjust(
            {"points": 10, "direction": "add", "description": "Manual correction"}, user=self.cashier
        )
        self.assertEqual(response.status_code, 403)

    def test_unknown_client_is_404(self):
        request = self._request("post", "/x", {"points": 10, "description": "Manual correction"})
        response = ClientPointsAdjustView.as_view()(request, pk=9999)
        self.assertEqual(response.status_code, 404)
        self.assertIn("message", response.data)

    def test_idempotency_key_header(self):
        payload = {"points": 10, "direction": "add", "description": "Promo credit"}
        headers = {"HTTP_IDEMPOTENCY_KEY": "adj-42"}
        first = self._adjust(payload, headers=headers)
        second = self._adjust(payload, headers=headers)
        self.assertEqual(first.status_code, 201)
        self.assertEqual(second.status_code, 200)
        self.assertTrue(second.data["replayed"])
        self.assertEqual(first.data["id"], second.data["id"])
        self.client_obj.refresh_from_db()
        self.assertEqual(self.client_obj.points, 10)

    def test_out_of_range_points_is_400(self):
        response = self._adjust({"points": 10**20, "direction": "add", "description": "Huge adjustment"})
        self.assertEqual(response.status_code, 400)
        self.assertIn("points", response.data)

        response = self._adjust({"points": -(10**20), "description": "Huge adjustment"})
        self.assertEqual(response.status_code, 400)
        self.assertFalse(PointsTransaction.objects.exists())

    def test_database_failure_is_409_and_writes_nothing(self):
        services.adjust_points(self.client_obj, 50, "Opening balance")
        with mock.patch.object(PointsTransaction.objects, "create", side_effect=DatabaseError("gone")):
            with self.assertLogs("loyalty.services", level="ERROR"):
                response = self._adjust({"points": 10, "direction": "add", "description": "Birthday bonus"})
        self.assertEqual(response.status_code, 409)
        self.assertIn("message", response.data)
        self.client_obj.refresh_from_db()
        self.assertEqual(self.client_obj.points, 50)
        self.assertEqual(PointsTransaction.objects.count(), 1)


class PurchaseApiTests(LoyaltyApiTestBase):
    def _post(self, data):
        request = self._request("post", "/x", data)
        return ClientPurchasesView.as_view()(request, pk=self.client_obj.pk)

    def test_record_purchase(self):
        response = self._post({"total": "4500.00", "payment_method": "cash", "items_count": 2, "sale_id": "POS-1"})
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data["purchase"]["points_earned"], 4)
        self.assertEqual(response.data["purchase"]["sale_id"], "POS-1")
        self.assertEqual(len(response.data["transactions"]), 1)
        self.assertEqual(response.data["client"]["points"], 4)
        self.assertEqual(response.data["client"]["total_purchases"], 1)
        self.assertIn("message", response.data)

        replay = self._post({"total": "4500.00", "payment_method": "cash", "sale_id": "POS-1"})
        self.assertEqual(replay.status_code, 200)
        self.assertTrue(replay.data["replayed"])
        self.assertEqual(ClientPurchase.objects.count(), 1)

    def test_invalid_purchase(self):
        self.assertEqual(self._post({"total": "-1", "payment_method": "cash"}).status_code, 400)
        self.assertEqual(self._post({"total": "100", "payment_method": "barter"}).status_code, 400)
        self.assertEqual(self._post({"total": "100", "payment_method": "points"}).status_code, 400)
        response = self._post({"total": "100", "payment_method": "mixed", "points_redeemed": 5})
        self.assertEqual(response.status_code, 400)
        self.assertIn("Insufficient points", response.data["message"])
        self.assertFalse(ClientPurchase.objects.exists())

    def test_generated_sale_id_prefix_is_reserved(self):
        response = self._post({"total": "2000", "payment_method": "cash", "sale_id": "ACME-SALE-000002"})
        self.assertEqual(response.status_code, 400)
        self.assertIn("sale_id", response.data)

        response = self._post({"total": "3000", "payment_method": "cash"})
        self.assertEqual(response.status_code, 201)
        self.assertTrue(response.data["purchase"]["sale_id"].startswith("ACME-SALE-"))

    def test_out_of_range_values_are_400(self):
        self.assertEqual(self._post({"total": "1e20", "payment_method": "cash"}).status_code, 400)
        self.assertEqual(
            self._post({"total": "100", "payment_method": "mixed", "points_redeemed": 10**20}).status_code, 400
        )
        self.assertEqual(
            self._post({"total": "100", "payment_method": "cash", "items_count": 10**20}).status_code, 400
        )
        self.assertFalse(ClientPurchase.objects.exists())

    def test_database_failure_is_409_and_writes_nothing(self):
        services.adjust_points(self.client_obj, 50, "Opening balance")
        with mock.patch(
            "loyalty.services.update_client_after_purchase", side_effect=DatabaseError("gone")
        ):
            with self.assertLogs("loyalty.services", level="ERROR"):
                response = self._post({"total": "5000", "payment_method": "mixed", "points_redeemed": 10})
        self.assertEqual(response.status_code, 409)
        self.client_obj.refresh_from_db()
        self.assertEqual(self.client_obj.points, 50)
        self.assertEqual(self.client_obj.total_purchases, 0)
        self.assertEqual(PointsTransaction.objects.count(), 1)
        self.assertFalse(ClientPurchase.objects.exists())

    def test_histories_are_paginated(self):
        for i in range(3):
            services.record_purchase(self.client_obj, Decimal("2000"), "cash", sale_id=f"S-{i}")

        response = ClientPurchasesView.as_view()(
            self._request("get", "/x", {"page": 1, "limit": 2}), pk=self.client_obj.pk
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(response.data["data"]), 2)
        self.assertEqual(response.data["pagination"]["total"], 3)
        self.assertEqual(response.data["data"][0]["sale_id"], "S-2")

        response = ClientPointsHistoryView.as_view()(
            self._request("get", "/x", {"page": 2, "limit": 2}), pk=self.client_obj.pk
        )
        self.assertEqual(response.data["pagination"]["total"], 3)
        self.assertEqual(len(response.data["data"]), 1)
        self.assertTrue(response.data["pagination"]["hasPrev"])


class PointsProgramApiTests(LoyaltyApiTestBase):
    def test_config_read_and_update(self):
        response = PointsConfigView.as_view()(self._request("get", "/x", user=self.cashier))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(Decimal(response.data["earn_rate"]), Decimal("1000"))

        response = PointsConfigView.as_view()(
            self._request("patch", "/x", {"earn_rate": "500"}, user=self.manager)
        )
        self.assertEqual(response.status_code, 403)

        response = PointsConfigView.as_view()(
            self._request("patch", "/x", {"earn_rate": "500", "points_expiry_days": 180}, user=self.owner)
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["points_expiry_days"], 180)
        self.assertIn("message", response.data)
        self.assertEqual(services.calculate_points_for_purchase(
            Decimal("4500"), services.get_points_config(self.tenant)), 9)

    def test_config_validation(self):
        response = PointsConfigView.as_view()(
            self._request("patch", "/x", {"earn_rate": "0", "points_expiry_days": 0}, user=self.owner)
        )
        self.assertEqual(response.status_code, 400)
        self.assertIn("earn_rate", response.data)
        self.assertIn("points_expiry_days", response.data)

    def test_redeem_and_expire_endpoints(self):
        services.adjust_points(self.client_obj, 100, "Opening balance")

        response = PointsRedeemView.as_view()(self._request(
            "post", "/x", {"client_id": self.client_obj.pk, "points": 30}, user=self.cashier
        ))
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data["type"], "used")
        self.assertEqual(response.data["balance"], 70)

        response = PointsExpireView.as_view()(self._request(
            "post", "/x", {"client_id": self.client_obj.pk, "points": 5}, user=self.cashier
        ))
        self.assertEqual(response.status_code, 403)

        response = PointsExpireView.as_view()(self._request(
            "post", "/x", {"client_id": self.client_obj.pk, "points": 5, "reason": "Annual cleanup"}
        ))
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data["balance"], 65)

        response = PointsRedeemView.as_view()(self._request(
            "post", "/x", {"client_id": self.client_obj.pk, "points": 66}
        ))
        self.assertEqual(response.status_code, 400)

    def test_balance_and_document_search(self):
        services.adjust_points(self.client_obj, 12, "Opening balance")
        response = ClientBalanceView.as_view()(self._request("get", "/x"), pk=self.client_obj.pk)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["current_points"], 12)
        self.assertEqual(response.data["points_to_expire"], 0)

        response = ClientDocumentSearchView.as_view()(self._request("post", "/x", {"document": "1001"}))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["id"], self.client_obj.pk)

        response = ClientDocumentSearchView.as_view()(self._request("post", "/x", {"document": "0000"}))
        self.assertEqual(response.status_code, 404)

    def test_transactions_stats_report_and_export(self):
        services.record_purchase(self.client_obj, Decimal("5000"), "cash", sale_id="S-1")
        services.redeem_points(self.client_obj, 2)

        response = PointsTransactionListView.as_view()(self._request("get", "/x", {"type": "earned"}))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["pagination"]["total"], 1)
        self.assertEqual(response.data["data"][0]["sale_id"], "S-1")

        response = PointsTransactionListView.as_view()(self._request("get", "/x", {"date_from": "01/01/2024"}))
        self.assertEqual(response.status_code, 400)

        response = PointsStatsView.as_view()(self._request("get", "/x"))
        self.assertEqual(response.data["total_points_issued"], 5)
        self.assertEqual(response.data["total_points_redeemed"], 2)
        self.assertEqual(response.data["top_earners"][0]["client"]["id"], self.client_obj.pk)
        self.assertEqual(response.data["top_earners"][0]["client"]["last_name"], "Pérez")
        self.assertEqual(response.data["top_earners"][0]["client"]["document_number"], "1001")

        response = PointsReportView.as_view()(self._request("get", "/x"))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["totals"]["net"], 3)

        response = PointsExportView.as_view()(self._request("get", "/x"))
        self.assertEqual(response.status_code, 200)
        lines = response.content.decode("utf-8").strip().splitlines()
        self.assertEqual(len(lines), 3)
        self.assertTrue(lines[0].startswith("id,created_at,client_id"))
