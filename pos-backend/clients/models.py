# pos-backend/clients/models.py

from decimal import Decimal

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models
from django.db.models import Q
from django.utils import timezone

from tenants.models import Tenant

# upper bound of the integer columns holding points and counters
MAX_POINTS = 2_147_483_647
# BigAutoField primary keys
MAX_ID = 9_223_372_036_854_775_807
# totals are DecimalField(max_digits=14, decimal_places=2)
MAX_AMOUNT = Decimal("999999999999.99")


class DocumentType(models.TextChoices):
    CEDULA = "cedula", "Cédula de ciudadanía"
    NIT = "nit", "NIT"
    PASAPORTE = "pasaporte", "Pasaporte"
    CEDULA_EXTRANJERIA = "cedula_extranjeria", "Cédula de extranjería"


class ClientStatus(models.TextChoices):
    ACTIVE = "active", "Active"
    INACTIVE = "inactive", "Inactive"
    BLOCKED = "blocked", "Blocked"


class PaymentMethod(models.TextChoices):
    CASH = "cash", "Cash"
    CARD = "card", "Card"
    DIGITAL = "digital", "Digital"
    POINTS = "points", "Points"
    MIXED = "mixed", "Mixed"


class ClientManager(models.Manager):
    """Hides soft-deleted clients."""
    def get_queryset(self):
        return super().get_queryset().filter(deleted_at__isnull=True)


class Client(models.Model):
    """
    Tenant-scoped client profile plus its points balance and purchase stats.

    The ledger fields (points, total_purchases, total_spent, last_purchase)
    are maintained only by loyalty.services; the API never writes them directly.
    """

    tenant = models.ForeignKey(
        Tenant,
        on_delete=models.CASCADE,
        related_name="clients",
    )

    # Identity
    first_name = models.CharField(max_length=100)
    last_name = models.CharField(max_length=100)
    name = models.CharField(
        max_length=201,
        help_text="Full name as displayed: first and last name joined by a space.",
    )
    document_type = models.CharField(
        max_length=32, choices=DocumentType.choices, default=DocumentType.CEDULA
    )
    document = models.CharField(
        max_length=64,
        help_text="Document number without the type prefix. Unique per tenant and type.",
    )

    phone = models.CharField(max_length=32)
    email = models.EmailField(blank=True, null=True)
    address = models.CharField(max_length=255, blank=True, null=True)
    city = models.CharField(max_length=100, blank=True, null=True)
    birth_date = models.DateField(blank=True, null=True)

    status = models.CharField(
        max_length=16, choices=ClientStatus.choices, default=ClientStatus.ACTIVE
    )

    # Ledger (maintained only by backend business logic)
    points = models.IntegerField(default=0)
    total_purchases = models.IntegerField(default=0)
    total_spent = models.DecimalField(
        max_digits=14, decimal_places=2, default=Decimal("0.00")
    )
    last_purchase = models.DateTimeField(blank=True, null=True)

    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        blank=True,
        null=True,
        related_name="created_clients",
    )
    updated_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        blank=True,
        null=True,
        related_name="updated_clients",
    )
    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)
    deleted_at = models.DateTimeField(blank=True, null=True, db_index=True)

    objects = ClientManager()
    all_objects = models.Manager()

    class Meta:
        ordering = ["-created_at", "-id"]
        constraints = [
            models.UniqueConstraint(
                fields=["tenant", "document_type", "document"],
                condition=Q(deleted_at__isnull=True),
                name="uniq_client_document_per_tenant",
            ),
            models.CheckConstraint(
                condition=Q(points__gte=0),
                name="client_points_non_negative",
            ),
        ]
        indexes = [
            models.Index(fields=["tenant", "name"], name="client_tenant_name_idx"),
            models.Index(fields=["tenant", "document"], name="client_tenant_document_idx"),
            models.Index(fields=["tenant", "points"], name="client_tenant_points_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.name} ({self.document_type} {self.document})"

    @staticmethod
    def compose_name(first_name, last_name) -> str:
        return f"{first_name or ''} {last_name or ''}".strip()

    @property
    def is_active(self) -> bool:
        return self.status == ClientStatus.ACTIVE

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def soft_delete(self, user=None) -> None:
        self.deleted_at = timezone.now()
        self.status = ClientStatus.INACTIVE
        if user is not None:
            self.updated_by = user
        self.save(update_fields=["deleted_at", "status", "updated_by", "updated_at"])


class ClientPurchase(models.Model):
    """
    One row per completed sale for a client. Append-only.
    """

    tenant = models.ForeignKey(
        Tenant,
        on_delete=models.CASCADE,
        related_name="client_purchases",
    )
    client = models.ForeignKey(
        Client,
        on_delete=models.PROTECT,
        related_name="purchases",
    )
    sale_id = models.CharField(
        max_length=64,
        blank=True,
        null=True,
        help_text="External sale reference. Generated from the tenant code when not supplied.",
    )
    items_count = models.PositiveIntegerField(default=0)
    total = models.DecimalField(max_digits=14, decimal_places=2)
    payment_method = models.CharField(max_length=16, choices=PaymentMethod.choices)
    points_earned = models.PositiveIntegerField(default=0)
    points_used = models.PositiveIntegerField(default=0)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        blank=True,
        null=True,
        related_name="recorded_client_purchases",
    )
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["-created_at", "-id"]
        constraints = [
            models.UniqueConstraint(
                fields=["tenant", "sale_id"],
                condition=Q(sale_id__isnull=False),
                name="uniq_purchase_sale_per_tenant",
            ),
        ]
        indexes = [
            models.Index(fields=["tenant", "client", "created_at"], name="purchase_tenant_client_idx"),
        ]

    def __str__(self):
        return f"Purchase {self.sale_id} - {self.client_id} - {self.total}"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValidationError("Purchase history records are immutable.")
        super().save(*args, **kwargs)

    @staticmethod
    def generated_prefix(tenant) -> str:
        """Prefix of generated sale ids; callers may not supply ids starting with it."""
        return f"{(tenant.code or 'TENANT').upper()}-SALE-"

    @classmethod
    def is_reserved_sale_id(cls, tenant, sale_id) -> bool:
        return bool(sale_id) and sale_id.upper().startswith(cls.generated_prefix(tenant))

    def assign_sale_id(self) -> str:
        if self.sale_id:
            return self.sale_id
        self.sale_id = f"{self.generated_prefix(self.tenant)}{self.id:06d}"
        # bypass save(): the row is otherwise immutable
        ClientPurchase.objects.filter(pk=self.pk).update(sale_id=self.sale_id)
        return self.sale_id
