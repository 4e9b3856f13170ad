from datetime import timedelta
from io import StringIO

from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import TestCase
from django.utils import timezone

from clients.models import Client
from clients.services import save_client
from loyalty import services
from loyalty.models import PointsTransaction
from tenants.models import Tenant


class CommandTestBase(TestCase):
    def setUp(self):
        self.tenant = Tenant.objects.create(name="Acme", code="acme")
        self.client_obj = save_client(self.tenant, {
            "first_name": "Juan",
            "last_name": "Pérez",
            "document_type": "cedula",
            "document": "1001",
            "phone": "3001234567",
        })

    def run_command(self, *args):
        out = StringIO()
        call_command(*args, stdout=out)
        return out.getvalue()


class LoyaltyCheckCommandTests(CommandTestBase):
    def test_no_clients(self):
        Client.all_objects.all().delete()
        output = self.run_command("loyalty_check")
        self.assertIn("No clients found", output)

    def test_clean_ledger(self):
        services.adjust_points(self.client_obj, 20, "Opening balance")
        services.redeem_points(self.client_obj, 5)
        output = self.run_command("loyalty_check", "--by-type", "--tenant", str(self.tenant.pk))
        self.assertIn("Mismatches: 0", output)
        self.assertIn("LEDGER BREAKDOWN BY TYPE", output)
        self.assertIn("(clean)", output)

    def test_mismatch_raises(self):
        services.adjust_points(self.client_obj, 20, "Opening balance")
        Client.objects.filter(pk=self.client_obj.pk).update(points=25)
        with self.assertRaises(CommandError) as ctx:
            self.run_command("loyalty_check", "--verbose")
        self.assertEqual(ctx.exception.returncode, 1)

    def test_unknown_tenant(self):
        with self.assertRaises(CommandError):
            self.run_command("loyalty_check", "--tenant", "9999")


class ExpirePointsCommandTests(CommandTestBase):
    def setUp(self):
        super().setUp()
        result = services.adjust_points(self.client_obj, 10, "Opening balance")
        PointsTransaction.objects.filter(pk=result.transaction.pk).update(
            created_at=timezone.now() - timedelta(days=400)
        )

    def test_dry_run_writes_nothing(self):
        output = self.run_command("expire_points", "--dry-run")
        self.assertIn("[dry-run] 1 clients, 10 points would expire", output)
        self.assertFalse(PointsTransaction.objects.filter(type=PointsTransaction.EXPIRED).exists())

    def test_expires_due_points(self):
        output = self.run_command("expire_points", "--tenant", str(self.tenant.pk))
        self.assertIn("1 clients, 10 points expired", output)
        self.client_obj.refresh_from_db()
        self.assertEqual(self.client_obj.points, 0)

        output = self.run_command("expire_points")
        self.assertIn("0 clients, 0 points expired", output)
        self.assertIn("(clean)", self.run_command("loyalty_check"))
