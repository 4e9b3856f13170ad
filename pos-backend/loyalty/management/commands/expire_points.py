"""
Expire points older than each tenant's points_expiry_days.

Credits are consumed oldest first, so only the unconsumed part of old credits
expires. Tenants with an inactive points program are skipped.

Usage:
    python manage.py expire_points
    python manage.py expire_points --tenant <tenant_id>
    python manage.py expire_points --dry-run
"""

from django.core.management.base import BaseCommand, CommandError

from loyalty.services import expire_due_points
from tenants.models import Tenant


class Command(BaseCommand):
    help = "Write 'expired' points entries for credits past their expiry window"

    def add_arguments(self, parser):
        parser.add_argument(
            "--tenant",
            type=int,
            help="Expire points for a specific tenant only",
        )
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Report what would expire without writing entries",
        )

    def handle(self, *args, **options):
        tenant = None
        tenant_id = options.get("tenant")
        dry_run = options.get("dry_run", False)

        if tenant_id:
            try:
                tenant = Tenant.objects.get(id=tenant_id)
            except Tenant.DoesNotExist:
                raise CommandError(f"Tenant with id {tenant_id} does not exist")

        outcomes = expire_due_points(tenant=tenant, dry_run=dry_run)

        prefix = "[dry-run] " if dry_run else ""
        for outcome in outcomes:
            client = outcome.client
            self.stdout.write(
                f"{prefix}{client.tenant.code}: client {client.pk} ({client.document}) "
                f"-{outcome.points} points"
            )

        total = sum(o.points for o in outcomes)
        verb = "would expire" if dry_run else "expired"
        self.stdout.write(self.style.SUCCESS(
            f"{prefix}{len(outcomes)} clients, {total} points {verb}"
        ))
