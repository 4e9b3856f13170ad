from datetime import timedelta
from decimal import Decimal
from unittest import mock

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import DatabaseError
from django.db.models import Sum
from django.test import TestCase, override_settings
from django.utils import timezone

from clients.models import MAX_POINTS, Client, ClientPurchase, ClientStatus
from clients.services import save_client
from common.exceptions import NotFoundError, OperationFailedError, ValidationError
from loyalty import services
from loyalty.models import PointsConfig, PointsTransaction
from tenants.models import Tenant


class LedgerTestMixin:
    def setUp(self):
        self.tenant = Tenant.objects.create(name="Acme", code="acme")
        self.client_obj = self.make_client("1001")

    def make_client(self, document, **extra):
        data = {
            "first_name": "Juan",
            "last_name": "Pérez",
            "document_type": "cedula",
            "document": document,
            "phone": "3001234567",
        }
        data.update(extra)
        return save_client(self.tenant, data)

    def give_points(self, client, points, days_ago=0):
        result = services.adjust_points(client, points, "Opening balance")
        if days_ago:
            PointsTransaction.objects.filter(pk=result.transaction.pk).update(
                created_at=timezone.now() - timedelta(days=days_ago)
            )
        client.refresh_from_db()
        return result.transaction

    def assertReconciled(self, client):
        client.refresh_from_db()
        total = PointsTransaction.objects.filter(client=client).aggregate(t=Sum("points"))["t"] or 0
        self.assertEqual(total, client.points)
        self.assertGreaterEqual(client.points, 0)


class PointsCalculationTests(LedgerTestMixin, TestCase):
    def test_floor_of_total_over_earn_rate(self):
        config = services.get_points_config(self.tenant)
        self.assertEqual(config.earn_rate, Decimal("1000"))
        self.assertEqual(services.calculate_points_for_purchase(Decimal("4500"), config, "cash"), 4)
        self.assertEqual(services.calculate_points_for_purchase(Decimal("999"), config, "cash"), 0)
        self.assertEqual(services.calculate_points_for_purchase(Decimal("1999.99"), config, "card"), 1)
        self.assertEqual(services.calculate_points_for_purchase(Decimal("4500"), config, "points"), 0)

    def test_min_purchase_cap_and_inactive(self):
        config = services.get_points_config(self.tenant)
        config.min_purchase_for_points = Decimal("5000")
        config.max_points_per_transaction = 10
        config.save()
        self.assertEqual(services.calculate_points_for_purchase(Decimal("4999"), config), 0)
        self.assertEqual(services.calculate_points_for_purchase(Decimal("50000"), config), 10)

        config.is_active = False
        self.assertEqual(services.calculate_points_for_purchase(Decimal("50000"), config), 0)

    def test_points_value(self):
        config = services.get_points_config(self.tenant)
        config.point_value = Decimal("10.50")
        self.assertEqual(services.calculate_points_value(3, config), Decimal("31.50"))

    @override_settings(LOYALTY={"EARN_RATE": 500, "EXPIRY_DAYS": 90})
    def test_config_defaults_come_from_settings(self):
        tenant = Tenant.objects.create(name="Beta", code="beta")
        config = PointsConfig.for_tenant(tenant)
        self.assertEqual(config.earn_rate, Decimal("500"))
        self.assertEqual(config.points_expiry_days, 90)
        self.assertEqual(PointsConfig.for_tenant(tenant).pk, config.pk)


class AdjustPointsTests(LedgerTestMixin, TestCase):
    def test_add_100_on_500(self):
        self.give_points(self.client_obj, 500)
        result = services.adjust_points(self.client_obj, 100, "Birthday bonus")
        self.assertEqual(result.client.points, 600)
        self.assertEqual(result.transaction.type, PointsTransaction.ADJUSTMENT)
        self.assertEqual(result.transaction.points, 100)
        self.assertEqual(result.transaction.balance_after, 600)
        self.assertTrue(result.transaction.is_credit)
        self.assertEqual(PointsTransaction.objects.filter(client=self.client_obj).count(), 2)
        self.assertReconciled(self.client_obj)

    def test_subtract_entire_balance_allowed(self):
        self.give_points(self.client_obj, 50)
        result = services.adjust_points(self.client_obj, -50, "Manual correction")
        self.assertEqual(result.client.points, 0)
        self.assertFalse(result.transaction.is_credit)
        self.assertReconciled(self.client_obj)

    def test_subtract_more_than_balance_rejected(self):
        self.give_points(self.client_obj, 50)
        with self.assertRaises(ValidationError):
            services.adjust_points(self.client_obj, -51, "Manual correction")
        self.client_obj.refresh_from_db()
        self.assertEqual(self.client_obj.points, 50)
        self.assertEqual(PointsTransaction.objects.filter(client=self.client_obj).count(), 1)

    def test_zero_delta_and_short_description_rejected(self):
        with self.assertRaises(ValidationError):
            services.adjust_points(self.client_obj, 0, "Manual correction")
        with self.assertRaises(ValidationError):
            services.adjust_points(self.client_obj, 10, "  ab  ")
        self.assertFalse(PointsTransaction.objects.exists())

    def test_idempotency_key_replays_first_result(self):
        first = services.adjust_points(self.client_obj, 25, "Promo credit", idempotency_key="k-1")
        second = services.adjust_points(self.client_obj, 25, "Promo credit", idempotency_key="k-1")
        self.assertFalse(first.replayed)
        self.assertTrue(second.replayed)
        self.assertEqual(first.transaction.pk, second.transaction.pk)
        self.client_obj.refresh_from_db()
        self.assertEqual(self.client_obj.points, 25)

        other = self.make_client("2002")
        with self.assertRaises(ValidationError):
            services.adjust_points(other, 25, "Promo credit", idempotency_key="k-1")

    def test_deleted_client_not_found(self):
        self.client_obj.soft_delete()
        with self.assertRaises(NotFoundError):
            services.adjust_points(self.client_obj, 10, "Late bonus")

    def test_transactions_are_immutable(self):
        tx = self.give_points(self.client_obj, 10)
        tx.description = "Rewritten history"
        with self.assertRaises(DjangoValidationError):
            tx.save()


class RecordPurchaseTests(LedgerTestMixin, TestCase):
    def test_purchase_accrues_floor_points(self):
        result = services.record_purchase(self.client_obj, Decimal("4500"), "cash", items_count=3)
        self.assertEqual(result.purchase.points_earned, 4)
        self.assertEqual(result.purchase.points_used, 0)
        self.assertEqual(result.purchase.sale_id, f"ACME-SALE-{result.purchase.pk:06d}")
        self.assertEqual([t.type for t in result.transactions], [PointsTransaction.EARNED])
        self.assertEqual(result.transactions[0].sale_id, result.purchase.sale_id)

        client = Client.objects.get(pk=self.client_obj.pk)
        self.assertEqual(client.points, 4)
        self.assertEqual(client.total_purchases, 1)
        self.assertEqual(client.total_spent, Decimal("4500.00"))
        self.assertIsNotNone(client.last_purchase)

    def test_small_purchase_earns_nothing_but_is_recorded(self):
        result = services.record_purchase(self.client_obj, Decimal("999"), "card")
        self.assertEqual(result.purchase.points_earned, 0)
        self.assertEqual(result.transactions, [])
        self.client_obj.refresh_from_db()
        self.assertEqual(self.client_obj.points, 0)
        self.assertEqual(self.client_obj.total_purchases, 1)
        self.assertEqual(ClientPurchase.objects.count(), 1)

    def test_redemption_and_accrual_in_one_sale(self):
        self.give_points(self.client_obj, 500)
        result = services.record_purchase(
            self.client_obj, Decimal("2000"), "mixed", points_redeemed=100, sale_id="POS-77"
        )
        self.assertEqual([t.type for t in result.transactions], [PointsTransaction.USED, PointsTransaction.EARNED])
        self.assertEqual([t.points for t in result.transactions], [-100, 2])
        self.assertEqual([t.balance_after for t in result.transactions], [400, 402])
        self.assertTrue(all(t.sale_id == "POS-77" for t in result.transactions))
        self.assertEqual(result.client.points, 402)
        self.assertReconciled(self.client_obj)

    def test_redeeming_more_than_balance_writes_nothing(self):
        self.give_points(self.client_obj, 50)
        with self.assertRaises(ValidationError):
            services.record_purchase(self.client_obj, Decimal("5000"), "mixed", points_redeemed=51)
        self.client_obj.refresh_from_db()
        self.assertEqual(self.client_obj.points, 50)
        self.assertEqual(self.client_obj.total_purchases, 0)
        self.assertFalse(ClientPurchase.objects.exists())

    def test_paid_with_points(self):
        with self.assertRaises(ValidationError):
            services.record_purchase(self.client_obj, Decimal("3000"), "points")

        self.give_points(self.client_obj, 3000)
        result = services.record_purchase(self.client_obj, Decimal("3000"), "points", points_redeemed=3000)
        self.assertEqual(result.purchase.points_earned, 0)
        self.assertEqual(result.client.points, 0)

    def test_replayed_sale_does_not_double_accrue(self):
        first = services.record_purchase(self.client_obj, Decimal("4500"), "cash", sale_id="POS-1")
        second = services.record_purchase(self.client_obj, Decimal("4500"), "cash", sale_id="POS-1")
        self.assertTrue(second.replayed)
        self.assertEqual(first.purchase.pk, second.purchase.pk)
        self.assertEqual(len(second.transactions), 1)
        self.client_obj.refresh_from_db()
        self.assertEqual(self.client_obj.points, 4)
        self.assertEqual(self.client_obj.total_purchases, 1)

        other = self.make_client("2002")
        with self.assertRaises(ValidationError):
            services.record_purchase(other, Decimal("4500"), "cash", sale_id="POS-1")

    def test_blocked_client_cannot_redeem(self):
        self.give_points(self.client_obj, 100)
        Client.objects.filter(pk=self.client_obj.pk).update(status=ClientStatus.BLOCKED)
        with self.assertRaises(ValidationError):
            services.record_purchase(self.client_obj, Decimal("1000"), "mixed", points_redeemed=10)
        with self.assertRaises(ValidationError):
            services.redeem_points(self.client_obj, 10)
        result = services.record_purchase(self.client_obj, Decimal("1000"), "cash")
        self.assertEqual(result.client.points, 101)

    def test_inactive_program_records_purchase_without_points(self):
        config = services.get_points_config(self.tenant)
        config.is_active = False
        config.save()
        result = services.record_purchase(self.client_obj, Decimal("10000"), "cash")
        self.assertEqual(result.purchase.points_earned, 0)
        self.assertEqual(result.client.total_purchases, 1)

    def test_purchase_rows_are_immutable(self):
        result = services.record_purchase(self.client_obj, Decimal("1000"), "cash")
        with self.assertRaises(DjangoValidationError):
            result.purchase.save()

    def test_supplied_sale_id_cannot_use_generated_prefix(self):
        with self.assertRaises(ValidationError):
            services.record_purchase(self.client_obj, Decimal("2000"), "cash", sale_id="ACME-SALE-000002")
        with self.assertRaises(ValidationError):
            services.record_purchase(self.client_obj, Decimal("2000"), "cash", sale_id="acme-sale-7")
        self.assertFalse(ClientPurchase.objects.exists())

        supplied = services.record_purchase(self.client_obj, Decimal("2000"), "cash", sale_id="POS-SALE-000002")
        generated = services.record_purchase(self.client_obj, Decimal("3000"), "cash")
        self.assertEqual(generated.purchase.sale_id, f"ACME-SALE-{generated.purchase.pk:06d}")
        self.assertNotEqual(supplied.purchase.sale_id, generated.purchase.sale_id)
        self.client_obj.refresh_from_db()
        self.assertEqual(self.client_obj.points, 5)

    def test_generated_sale_id_replays(self):
        first = services.record_purchase(self.client_obj, Decimal("4500"), "cash")
        again = services.record_purchase(self.client_obj, Decimal("4500"), "cash", sale_id=first.purchase.sale_id)
        self.assertTrue(again.replayed)
        self.assertEqual(again.purchase.pk, first.purchase.pk)
        self.assertEqual(ClientPurchase.objects.count(), 1)


class LedgerLimitTests(LedgerTestMixin, TestCase):
    def test_out_of_range_points_rejected(self):
        with self.assertRaises(ValidationError):
            services.adjust_points(self.client_obj, 10**20, "Huge adjustment")
        with self.assertRaises(ValidationError):
            services.redeem_points(self.client_obj, 10**20)
        with self.assertRaises(ValidationError):
            services.record_purchase(self.client_obj, Decimal("1000"), "mixed", points_redeemed=10**20)
        with self.assertRaises(ValidationError):
            services.record_purchase(self.client_obj, Decimal("1000"), "cash", items_count=10**20)
        with self.assertRaises(ValidationError):
            services.record_purchase(self.client_obj, Decimal("1e20"), "cash")
        self.assertFalse(PointsTransaction.objects.exists())
        self.assertFalse(ClientPurchase.objects.exists())

    def test_balance_cannot_exceed_column_limit(self):
        self.give_points(self.client_obj, MAX_POINTS - 1)
        services.adjust_points(self.client_obj, 1, "Top up to limit")
        with self.assertRaises(ValidationError):
            services.adjust_points(self.client_obj, 1, "One point too many")
        self.client_obj.refresh_from_db()
        self.assertEqual(self.client_obj.points, MAX_POINTS)
        self.assertReconciled(self.client_obj)

    def test_long_description_rejected_not_truncated(self):
        self.give_points(self.client_obj, 10)
        with self.assertRaises(ValidationError):
            services.adjust_points(self.client_obj, 5, "x" * 256)
        with self.assertRaises(ValidationError):
            services.redeem_points(self.client_obj, 5, "y" * 300)
        self.assertEqual(PointsTransaction.objects.count(), 1)

        result = services.adjust_points(self.client_obj, 5, "z" * 255)
        self.assertEqual(len(result.transaction.description), 255)


class FailedWriteTests(LedgerTestMixin, TestCase):
    def test_adjustment_failure_changes_nothing(self):
        self.give_points(self.client_obj, 50)
        with mock.patch.object(Client, "save", side_effect=DatabaseError("disk full")):
            with self.assertLogs("loyalty.services", level="ERROR"):
                with self.assertRaises(OperationFailedError):
                    services.adjust_points(self.client_obj, 25, "Birthday bonus")
        self.client_obj.refresh_from_db()
        self.assertEqual(self.client_obj.points, 50)
        self.assertEqual(PointsTransaction.objects.filter(client=self.client_obj).count(), 1)
        self.assertReconciled(self.client_obj)

    def test_purchase_failure_changes_nothing(self):
        self.give_points(self.client_obj, 50)
        with mock.patch(
            "loyalty.services.update_client_after_purchase", side_effect=DatabaseError("disk full")
        ):
            with self.assertLogs("loyalty.services", level="ERROR"):
                with self.assertRaises(OperationFailedError):
                    services.record_purchase(self.client_obj, Decimal("5000"), "mixed", points_redeemed=10)
        self.client_obj.refresh_from_db()
        self.assertEqual(self.client_obj.points, 50)
        self.assertEqual(self.client_obj.total_purchases, 0)
        self.assertEqual(PointsTransaction.objects.filter(client=self.client_obj).count(), 1)
        self.assertFalse(ClientPurchase.objects.exists())


class RedeemAndExpireTests(LedgerTestMixin, TestCase):
    def test_redeem_and_expire(self):
        self.give_points(self.client_obj, 100)
        redeemed = services.redeem_points(self.client_obj, 30, "Gift card")
        self.assertEqual(redeemed.transaction.type, PointsTransaction.USED)
        self.assertEqual(redeemed.transaction.points, -30)

        expired = services.expire_points(self.client_obj, 20, "Program rules")
        self.assertEqual(expired.transaction.type, PointsTransaction.EXPIRED)
        self.assertEqual(expired.transaction.description, "Program rules")
        self.assertEqual(expired.client.points, 50)
        self.assertReconciled(self.client_obj)

    def test_bounds(self):
        self.give_points(self.client_obj, 10)
        with self.assertRaises(ValidationError):
            services.redeem_points(self.client_obj, 0)
        with self.assertRaises(ValidationError):
            services.redeem_points(self.client_obj, 11)
        with self.assertRaises(ValidationError):
            services.expire_points(self.client_obj, 11)
        self.client_obj.refresh_from_db()
        self.assertEqual(self.client_obj.points, 10)


class ExpiryTests(LedgerTestMixin, TestCase):
    def test_fifo_expiry_only_expires_unconsumed_old_credits(self):
        self.give_points(self.client_obj, 10, days_ago=400)
        self.give_points(self.client_obj, 5)
        services.redeem_points(self.client_obj, 3, "Coffee")

        outcomes = services.expire_due_points(tenant=self.tenant)
        self.assertEqual(len(outcomes), 1)
        self.assertEqual(outcomes[0].points, 7)
        self.assertEqual(outcomes[0].transaction.type, PointsTransaction.EXPIRED)
        self.client_obj.refresh_from_db()
        self.assertEqual(self.client_obj.points, 5)
        self.assertReconciled(self.client_obj)

        self.assertEqual(services.expire_due_points(tenant=self.tenant), [])

    def test_dry_run_writes_nothing(self):
        self.give_points(self.client_obj, 10, days_ago=400)
        outcomes = services.expire_due_points(dry_run=True)
        self.assertEqual([o.points for o in outcomes], [10])
        self.assertIsNone(outcomes[0].transaction)
        self.client_obj.refresh_from_db()
        self.assertEqual(self.client_obj.points, 10)

    def test_inactive_program_is_skipped(self):
        self.give_points(self.client_obj, 10, days_ago=400)
        config = services.get_points_config(self.tenant)
        config.is_active = False
        config.save()
        self.assertEqual(services.expire_due_points(), [])

    def test_balance_summary_warns_before_expiry(self):
        self.give_points(self.client_obj, 8, days_ago=350)
        self.give_points(self.client_obj, 4)
        summary = services.points_balance_summary(self.client_obj)
        self.assertEqual(summary["current_points"], 12)
        self.assertEqual(summary["points_to_expire"], 8)
        self.assertIsNotNone(summary["expiry_date"])
        self.assertLess(summary["expiry_date"], timezone.now() + timedelta(days=30))

    def test_summary_without_credits(self):
        summary = services.points_balance_summary(self.client_obj)
        self.assertEqual(summary["points_to_expire"], 0)
        self.assertIsNone(summary["expiry_date"])


class LedgerReconciliationTests(LedgerTestMixin, TestCase):
    def test_sum_of_entries_matches_balance_after_mixed_sequence(self):
        services.record_purchase(self.client_obj, Decimal("12500"), "cash")
        services.adjust_points(self.client_obj, 40, "Welcome bonus")
        services.record_purchase(self.client_obj, Decimal("3000"), "mixed", points_redeemed=20)
        services.adjust_points(self.client_obj, -5, "Manual correction")
        services.redeem_points(self.client_obj, 7)
        services.expire_points(self.client_obj, 2)
        with self.assertRaises(ValidationError):
            services.adjust_points(self.client_obj, -1000, "Manual correction")
        self.assertReconciled(self.client_obj)
        self.assertEqual(self.client_obj.points, 12 + 40 - 20 + 3 - 5 - 7 - 2)

        chain = PointsTransaction.objects.filter(client=self.client_obj).order_by("created_at", "id")
        running = 0
        for tx in chain:
            running += tx.points
            self.assertEqual(tx.balance_after, running)


class StatsAndReportTests(LedgerTestMixin, TestCase):
    def setUp(self):
        super().setUp()
        self.second = self.make_client("2002", first_name="Ana")
        services.record_purchase(self.client_obj, Decimal("10000"), "cash")
        services.record_purchase(self.second, Decimal("3000"), "card")
        services.redeem_points(self.client_obj, 4)
        services.expire_points(self.second, 1)

    def test_points_stats(self):
        stats = services.points_stats(self.tenant)
        self.assertEqual(stats["total_points_issued"], 13)
        self.assertEqual(stats["total_points_redeemed"], 4)
        self.assertEqual(stats["total_points_expired"], 1)
        self.assertEqual(stats["active_points"], 8)
        self.assertEqual(stats["total_clients_with_points"], 2)
        self.assertEqual(stats["avg_points_per_client"], 4.0)
        self.assertEqual(stats["points_issued_this_month"], 13)
        self.assertEqual(stats["top_earners"][0]["client"].pk, self.client_obj.pk)

    def test_points_report(self):
        today = timezone.localdate().isoformat()
        report = services.points_report(self.tenant, {"date_from": today, "date_to": today})
        self.assertEqual(report["totals"]["issued"], 13)
        self.assertEqual(report["totals"]["net"], 8)
        self.assertEqual(len(report["daily"]), 1)
        self.assertEqual(report["daily"][0]["redeemed"], 4)
        self.assertEqual(report["top_clients"][0]["client_id"], self.client_obj.pk)

        with self.assertRaises(ValidationError):
            services.points_report(self.tenant, {"date_from": "yesterday"})

    def test_filter_transactions(self):
        qs = PointsTransaction.objects.filter(tenant=self.tenant)
        self.assertEqual(services.filter_transactions(qs, {"type": "earned"}).count(), 2)
        self.assertEqual(services.filter_transactions(qs, {"client_id": self.second.pk}).count(), 2)
        self.assertEqual(services.filter_transactions(qs, {"max_points": "-1"}).count(), 2)
        with self.assertRaises(ValidationError):
            services.filter_transactions(qs, {"type": "gifted"})
