"""
Management command to validate points ledger parity.

Recomputes each client's balance from its PointsTransaction rows and compares
it against Client.points. Also flags entries whose balance_after does not
follow from the previous entry.

Usage:
    python manage.py loyalty_check
    python manage.py loyalty_check --tenant <tenant_id>
    python manage.py loyalty_check --verbose
    python manage.py loyalty_check --by-type

Exit codes:
    0 - All balances match the ledger (clean)
    1 - One or more mismatches found
"""

from django.core.management.base import BaseCommand, CommandError
from django.db.models import Count, Sum

from clients.models import Client
from loyalty.models import PointsTransaction
from tenants.models import Tenant


class Command(BaseCommand):
    help = "Validate points ledger parity by recomputing client balances from PointsTransaction"

    def add_arguments(self, parser):
        parser.add_argument(
            "--tenant",
            type=int,
            help="Check clients of a specific tenant only",
        )
        parser.add_argument(
            "--verbose",
            action="store_true",
            help="Show detailed output for each mismatch as it is found",
        )
        parser.add_argument(
            "--by-type",
            action="store_true",
            help="Show ledger totals grouped by transaction type",
        )

    def handle(self, *args, **options):
        tenant_id = options.get("tenant")
        verbose = options.get("verbose", False)
        by_type = options.get("by_type", False)

        client_filters = {}
        ledger_filters = {}
        if tenant_id:
            try:
                tenant = Tenant.objects.get(id=tenant_id)
            except Tenant.DoesNotExist:
                raise CommandError(f"Tenant with id {tenant_id} does not exist")
            self.stdout.write(f"Checking points ledger for tenant: {tenant.name} ({tenant.code})")
            client_filters["tenant_id"] = tenant_id
            ledger_filters["tenant_id"] = tenant_id

        # soft-deleted clients keep their ledger, check them too
        clients = Client.all_objects.filter(**client_filters).select_related("tenant").order_by("id")
        if not clients.exists():
            self.stdout.write(self.style.WARNING("No clients found to check"))
            return

        sums = dict(
            PointsTransaction.objects.filter(**ledger_filters)
            .values("client_id")
            .annotate(total=Sum("points"))
            .values_list("client_id", "total")
        )

        mismatches = []
        broken_chains = []
        checked = 0
        for client in clients:
            checked += 1
            expected = int(sums.get(client.pk) or 0)
            actual = int(client.points or 0)
            if expected != actual:
                mismatch = {
                    "client": client,
                    "expected": expected,
                    "actual": actual,
                    "difference": actual - expected,
                }
                mismatches.append(mismatch)
                if verbose:
                    self.stdout.write(self.style.ERROR(
                        f"MISMATCH: client {client.pk} ({client.document}) - "
                        f"Expected: {expected}, Actual: {actual}, Difference: {mismatch['difference']}"
                    ))

            running = 0
            for tx in client.points_transactions.order_by("created_at", "id"):
                running += tx.points
                if tx.balance_after != running:
                    broken_chains.append((client, tx, running))
                    if verbose:
                        self.stdout.write(self.style.ERROR(
                            f"CHAIN: tx {tx.pk} of client {client.pk} records balance_after="
                            f"{tx.balance_after}, running total is {running}"
                        ))
                    break

        self.stdout.write("")
        self.stdout.write("=" * 60)
        self.stdout.write(f"Checked: {checked} clients")
        self.stdout.write(f"Mismatches: {len(mismatches)}")
        self.stdout.write(f"Broken balance chains: {len(broken_chains)}")

        if by_type:
            self.stdout.write("")
            self.stdout.write("=" * 60)
            self.stdout.write("LEDGER BREAKDOWN BY TYPE")
            self.stdout.write("=" * 60)
            stats = (
                PointsTransaction.objects.filter(**ledger_filters)
                .values("type")
                .annotate(count=Count("id"), total=Sum("points"))
                .order_by("type")
            )
            if not stats:
                self.stdout.write("No ledger entries found.")
            else:
                self.stdout.write(f"{'Type':<20} {'Count':<10} {'Total Points':>15}")
                self.stdout.write("-" * 47)
                for row in stats:
                    self.stdout.write(f"{row['type']:<20} {row['count']:<10} {row['total'] or 0:>15}")

        if mismatches or broken_chains:
            self.stdout.write("")
            self.stdout.write(self.style.ERROR("MISMATCHES FOUND:"))
            for mismatch in mismatches:
                client = mismatch["client"]
                self.stdout.write(self.style.ERROR(
                    f"  - Client {client.pk} {client.name} ({client.document_type} {client.document}) "
                    f"(Tenant: {client.tenant.code}): Expected {mismatch['expected']}, "
                    f"Actual {mismatch['actual']}, Difference: {mismatch['difference']}"
                ))
            for client, tx, running in broken_chains:
                self.stdout.write(self.style.ERROR(
                    f"  - Client {client.pk}: tx {tx.pk} balance_after {tx.balance_after} != {running}"
                ))
            raise CommandError(
                "Points ledger mismatches found. Review the entries above.", returncode=1
            )

        self.stdout.write("")
        self.stdout.write(self.style.SUCCESS("All client balances match the ledger (clean)"))
