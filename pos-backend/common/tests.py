from decimal import Decimal

from django.contrib.auth import get_user_model
from django.test import RequestFactory, SimpleTestCase, TestCase
from rest_framework import exceptions
from rest_framework.request import Request
from rest_framework.test import APIRequestFactory

from common.exceptions import (
    NotFoundError,
    OperationFailedError,
    ValidationError,
    api_exception_handler,
    first_error_message,
)
from common.export import csv_response, export_to_csv
from common.middleware import TenantContextMiddleware
from common.pagination import build_page, page_params
from common.validators import check_field_rules
from tenants.models import Tenant


class ExceptionHandlerTests(SimpleTestCase):
    def test_validation_error_gets_flat_message(self):
        response = api_exception_handler(
            ValidationError({"description": ["Too short."]}), {"view": None}
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data["description"], ["Too short."])
        self.assertEqual(response.data["message"], "description: Too short.")

    def test_not_found_and_operation_failed_status(self):
        response = api_exception_handler(NotFoundError("Client 7 not found."), {})
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.data["message"], "Client 7 not found.")

        response = api_exception_handler(OperationFailedError(), {})
        self.assertEqual(response.status_code, 409)
        self.assertIn("No changes were applied", response.data["message"])

    def test_list_payload_is_wrapped(self):
        response = api_exception_handler(exceptions.ValidationError(["Bad sale."]), {})
        self.assertEqual(response.data["message"], "Bad sale.")
        self.assertEqual(response.data["detail"], ["Bad sale."])

    def test_non_api_exception_is_left_to_django(self):
        self.assertIsNone(api_exception_handler(RuntimeError("boom"), {}))

    def test_first_error_message_prefers_detail(self):
        self.assertEqual(first_error_message({"detail": "Nope"}), "Nope")
        self.assertEqual(first_error_message({"non_field_errors": ["Bad"]}), "Bad")
        self.assertEqual(first_error_message([]), "")


class FieldRulesTests(SimpleTestCase):
    rules = {
        "name": {"required": True, "min_length": 2},
        "phone": {"required": True, "pattern": r"\+?[0-9\s\-()]+", "message": "Bad phone."},
        "kind": {"choices": ["a", "b"]},
    }

    def test_valid_data(self):
        self.assertEqual(check_field_rules({"name": "Ana", "phone": "+57 (300) 123-4567"}, self.rules), {})

    def test_required_min_length_pattern_and_choices(self):
        errors = check_field_rules({"name": " J ", "phone": "abc", "kind": "z"}, self.rules)
        self.assertIn("name", errors)
        self.assertEqual(errors["phone"], ["Bad phone."])
        self.assertIn("kind", errors)

        errors = check_field_rules({}, self.rules)
        self.assertEqual(set(errors), {"name", "phone"})

    def test_partial_skips_absent_required_fields(self):
        self.assertEqual(check_field_rules({"name": "Ana"}, self.rules, partial=True), {})
        errors = check_field_rules({"phone": ""}, self.rules, partial=True)
        self.assertEqual(list(errors), ["phone"])


class PaginationTests(SimpleTestCase):
    def _request(self, params):
        return Request(APIRequestFactory().get("/x", params))

    def test_build_page_shape(self):
        page = build_page([1, 2], page=2, limit=2, total=5)
        self.assertEqual(page["data"], [1, 2])
        self.assertEqual(
            page["pagination"],
            {"page": 2, "limit": 2, "total": 5, "totalPages": 3, "hasNext": True, "hasPrev": True},
        )

    def test_empty_page(self):
        page = build_page([], page=1, limit=10, total=0)
        self.assertEqual(page["pagination"]["totalPages"], 0)
        self.assertFalse(page["pagination"]["hasNext"])
        self.assertFalse(page["pagination"]["hasPrev"])

    def test_page_params(self):
        self.assertEqual(page_params(self._request({})), (1, 10))
        self.assertEqual(page_params(self._request({"page": "3", "limit": "500"})), (3, 100))
        self.assertEqual(page_params(self._request({"page_size": "25"})), (1, 25))
        with self.assertRaises(ValidationError):
            page_params(self._request({"page": "0"}))
        with self.assertRaises(ValidationError):
            page_params(self._request({"limit": "ten"}))


class ExportTests(TestCase):
    def test_csv_formats_values_and_keeps_header_when_empty(self):
        content = export_to_csv(
            [{"id": 1, "total": Decimal("4500.00"), "email": None}],
            fieldnames=["id", "total", "email"],
        )
        lines = content.strip().splitlines()
        self.assertEqual(lines[0], "id,total,email")
        self.assertEqual(lines[1], "1,4500.00,")

        self.assertEqual(export_to_csv([], fieldnames=["id"]).strip(), "id")
        self.assertEqual(export_to_csv([]), "")

    def test_csv_response_filename(self):
        tenant = Tenant.objects.create(name="Acme", code="acme")
        response = csv_response("id\n", tenant, "clients")
        self.assertEqual(response["Content-Type"], "text/csv; charset=utf-8")
        self.assertIn('filename="acme_clients_', response["Content-Disposition"])


class TenantContextMiddlewareTests(TestCase):
    def setUp(self):
        self.factory = RequestFactory()
        self.middleware = TenantContextMiddleware(lambda request: "passed")

    def test_whitelisted_paths_skip_auth(self):
        request = self.factory.post("/api/v1/auth/token/")
        self.assertEqual(self.middleware(request), "passed")
        self.assertIsNone(request.tenant)

    def test_missing_token_is_rejected(self):
        response = self.middleware(self.factory.get("/api/v1/clients"))
        self.assertEqual(response.status_code, 401)

    def test_media_paths_are_not_whitelisted(self):
        response = self.middleware(self.factory.get("/media/logo.png"))
        self.assertEqual(response.status_code, 401)
        self.assertFalse(hasattr(Tenant, "currency_code"))

    def test_preflight_allows_idempotency_header(self):
        response = self.middleware(self.factory.options("/api/v1/clients", HTTP_ORIGIN="http://pos.local"))
        self.assertEqual(response.status_code, 200)
        self.assertIn("Idempotency-Key", response["Access-Control-Allow-Headers"])

    def test_member_token_sets_tenant(self):
        from rest_framework_simplejwt.tokens import AccessToken
        from tenants.models import TenantUser

        tenant = Tenant.objects.create(name="Acme", code="acme")
        user = get_user_model().objects.create_user(username="cashier", password="test-pass")
        TenantUser.objects.create(tenant=tenant, user=user, role="cashier")
        token = AccessToken.for_user(user)
        token["tenant_id"] = tenant.id

        request = self.factory.get("/api/v1/clients", HTTP_AUTHORIZATION=f"Bearer {token}")
        self.assertEqual(self.middleware(request), "passed")
        self.assertEqual(request.tenant, tenant)

        outsider = get_user_model().objects.create_user(username="outsider", password="test-pass")
        token = AccessToken.for_user(outsider)
        token["tenant_id"] = tenant.id
        request = self.factory.get("/api/v1/clients", HTTP_AUTHORIZATION=f"Bearer {token}")
        self.assertEqual(self.middleware(request).status_code, 403)
