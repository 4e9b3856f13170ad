# pos-backend/loyalty/models.py

from decimal import Decimal

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models
from django.db.models import Q
from django.utils import timezone

from tenants.models import Tenant
from clients.models import Client, ClientPurchase


def _loyalty_default(key):
    return getattr(settings, "LOYALTY", {}).get(key)


class PointsConfig(models.Model):
    """
    Per-tenant points program settings.
    """

    tenant = models.OneToOneField(
        Tenant,
        on_delete=models.CASCADE,
        related_name="points_config",
    )
    is_active = models.BooleanField(default=True)
    earn_rate = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal("1000.00"),
        help_text="Currency units spent per point earned.",
    )
    min_purchase_for_points = models.DecimalField(
        max_digits=14,
        decimal_places=2,
        default=Decimal("0.00"),
        help_text="Sales below this total earn no points.",
    )
    max_points_per_transaction = models.PositiveIntegerField(
        blank=True,
        null=True,
        help_text="Cap on points earned by a single sale. Empty means no cap.",
    )
    points_expiry_days = models.PositiveIntegerField(default=365)
    point_value = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal("1.00"),
        help_text="Currency value of one point when redeemed.",
    )
    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.CheckConstraint(condition=Q(earn_rate__gt=0), name="points_config_earn_rate_positive"),
            models.CheckConstraint(condition=Q(points_expiry_days__gte=1), name="points_config_expiry_min_one"),
        ]

    def __str__(self):
        return f"PointsConfig({self.tenant_id})"

    @classmethod
    def for_tenant(cls, tenant):
        defaults = {}
        mapping = {
            "EARN_RATE": "earn_rate",
            "MIN_PURCHASE": "min_purchase_for_points",
            "MAX_POINTS_PER_SALE": "max_points_per_transaction",
            "EXPIRY_DAYS": "points_expiry_days",
            "POINT_VALUE": "point_value",
        }
        for key, field in mapping.items():
            value = _loyalty_default(key)
            if value is not None:
                defaults[field] = value
        config, _ = cls.objects.get_or_create(tenant=tenant, defaults=defaults)
        return config


class PointsTransaction(models.Model):
    """
    Immutable log of client point changes. The sum of `points` for a client
    equals Client.points; corrections are new offsetting rows.
    """

    EARNED = "earned"
    USED = "used"
    EXPIRED = "expired"
    ADJUSTMENT = "adjustment"

    TYPE_CHOICES = [
        (EARNED, "Earned"),
        (USED, "Used"),
        (EXPIRED, "Expired"),
        (ADJUSTMENT, "Adjustment"),
    ]

    tenant = models.ForeignKey(
        Tenant,
        on_delete=models.CASCADE,
        related_name="points_transactions",
    )
    client = models.ForeignKey(
        Client,
        on_delete=models.PROTECT,
        related_name="points_transactions",
    )
    purchase = models.ForeignKey(
        ClientPurchase,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="points_transactions",
    )
    sale_id = models.CharField(max_length=64, blank=True, null=True, db_index=True)

    type = models.CharField(max_length=16, choices=TYPE_CHOICES)
    points = models.IntegerField(help_text="Signed: positive credits, negative debits.")
    balance_after = models.IntegerField()
    description = models.CharField(max_length=255)
    idempotency_key = models.CharField(max_length=128, blank=True, null=True)
    metadata = models.JSONField(blank=True, null=True)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        blank=True,
        null=True,
        related_name="points_transactions",
    )
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["-created_at", "-id"]
        constraints = [
            models.CheckConstraint(condition=~Q(points=0), name="points_tx_non_zero"),
            models.CheckConstraint(condition=Q(balance_after__gte=0), name="points_tx_balance_non_negative"),
            models.UniqueConstraint(
                fields=["tenant", "idempotency_key"],
                condition=Q(idempotency_key__isnull=False),
                name="uniq_points_tx_idempotency_key",
            ),
        ]
        indexes = [
            models.Index(fields=["tenant", "type"], name="points_tx_tenant_type_idx"),
            models.Index(fields=["tenant", "client", "created_at"], name="points_tx_client_idx"),
        ]

    def __str__(self):
        return f"{self.type} {self.points:+d} -> {self.balance_after} (client {self.client_id})"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValidationError("Points transactions are immutable.")
        super().save(*args, **kwargs)

    @classmethod
    def credit_filter(cls) -> Q:
        return Q(type=cls.EARNED) | Q(type=cls.ADJUSTMENT, points__gt=0)

    @property
    def is_credit(self) -> bool:
        return self.type == self.EARNED or (self.type == self.ADJUSTMENT and self.points > 0)
