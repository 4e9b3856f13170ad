# pos-backend/loyalty/services.py
"""
Points ledger operations.

Every mutation runs inside ``transaction.atomic()`` holding a row lock on the
client, appends PointsTransaction rows and updates ``Client.points`` in the
same transaction, so the sum of a client's transactions always equals its
balance. Rejected requests raise ``ValidationError`` before anything is
written; database failures surface as ``OperationFailedError``.
"""
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal, InvalidOperation, ROUND_FLOOR, ROUND_HALF_UP
from typing import List, Optional

from django.conf import settings
from django.db import DatabaseError, IntegrityError, transaction
from django.db.models import Count, Q, Sum
from django.db.models.functions import TruncDate
from django.utils import timezone
from django.utils.dateparse import parse_date

from clients.models import MAX_AMOUNT, MAX_POINTS, Client, ClientPurchase, ClientStatus, PaymentMethod
from clients.services import update_client_after_purchase
from common.exceptions import NotFoundError, OperationFailedError, ValidationError
from .models import PointsConfig, PointsTransaction

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")
MIN_DESCRIPTION_LENGTH = 5
MAX_DESCRIPTION_LENGTH = 255

TRANSACTION_EXPORT_FIELDS = [
    "id",
    "created_at",
    "client_id",
    "client__name",
    "client__document",
    "type",
    "points",
    "balance_after",
    "sale_id",
    "description",
]


@dataclass
class LedgerEntryResult:
    transaction: PointsTransaction
    client: Client
    replayed: bool = False


@dataclass
class PurchaseResult:
    purchase: ClientPurchase
    client: Client
    transactions: List[PointsTransaction] = field(default_factory=list)
    replayed: bool = False


@dataclass
class ExpiryOutcome:
    client: Client
    points: int
    transaction: Optional[PointsTransaction] = None


# ---------------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------------

def _to_decimal(value, name="total") -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError({name: ["A valid number is required."]})
    if not amount.is_finite():
        raise ValidationError({name: ["A valid number is required."]})
    return amount


def _to_int(value, name="points") -> int:
    if isinstance(value, bool):
        raise ValidationError({name: ["A valid integer is required."]})
    try:
        number = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError({name: ["A valid integer is required."]})
    if not number.is_finite() or number != number.to_integral_value():
        raise ValidationError({name: ["A valid integer is required."]})
    if abs(number) > MAX_POINTS:
        raise ValidationError({name: [f"Ensure this value is less than or equal to {MAX_POINTS}."]})
    return int(number)


def _clean_description(description, name="description") -> str:
    text = (description or "").strip()
    if len(text) < MIN_DESCRIPTION_LENGTH:
        raise ValidationError(
            {name: [f"Ensure this field has at least {MIN_DESCRIPTION_LENGTH} characters."]}
        )
    return _check_description_length(text, name)


def _check_description_length(text, name="description") -> str:
    if len(text) > MAX_DESCRIPTION_LENGTH:
        raise ValidationError(
            {name: [f"Ensure this field has no more than {MAX_DESCRIPTION_LENGTH} characters."]}
        )
    return text


def _date_param(params, name):
    raw = params.get(name)
    if raw in (None, ""):
        return None
    try:
        value = parse_date(str(raw))
    except ValueError:
        value = None
    if value is None:
        raise ValidationError({name: ["Use the YYYY-MM-DD format."]})
    return value


def _user_or_none(user):
    return user if getattr(user, "is_authenticated", False) else None


# ---------------------------------------------------------------------------
# Configuration & calculation
# ---------------------------------------------------------------------------

def get_points_config(tenant) -> PointsConfig:
    return PointsConfig.for_tenant(tenant)


def calculate_points_for_purchase(amount, config: PointsConfig, payment_method=None) -> int:
    """
    floor(amount / earn_rate), capped by max_points_per_transaction.

    Sales paid fully with points, sales below the configured minimum and any
    sale while the program is inactive earn nothing.
    """
    amount = _to_decimal(amount)
    if payment_method == PaymentMethod.POINTS or not config.is_active:
        return 0
    if amount <= 0 or amount < Decimal(config.min_purchase_for_points or 0):
        return 0
    earn_rate = Decimal(config.earn_rate or 0)
    if earn_rate <= 0:
        return 0
    points = int((amount / earn_rate).to_integral_value(rounding=ROUND_FLOOR))
    cap = config.max_points_per_transaction
    if cap is not None:
        points = min(points, cap)
    return max(points, 0)


def calculate_points_value(points, config: PointsConfig) -> Decimal:
    value = Decimal(_to_int(points)) * Decimal(config.point_value or 0)
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


# ---------------------------------------------------------------------------
# Ledger primitives
# ---------------------------------------------------------------------------

def _lock_client(client) -> Client:
    try:
        return Client.objects.select_for_update().get(pk=client.pk, tenant_id=client.tenant_id)
    except Client.DoesNotExist:
        raise NotFoundError(f"Client {client.pk} not found.")


def _append_entry(client: Client, tx_type: str, points: int, description: str, **extra) -> PointsTransaction:
    """
    Append one entry and move the in-memory balance. Caller holds the row
    lock and saves the client.
    """
    new_balance = client.points + points
    if new_balance < 0:
        raise ValidationError(
            {"points": [f"Insufficient points: balance is {client.points}, requested {-points}."]}
        )
    if new_balance > MAX_POINTS:
        raise ValidationError(
            {"points": [f"The resulting balance would exceed {MAX_POINTS} points."]}
        )
    _check_description_length(description)
    client.points = new_balance
    return PointsTransaction.objects.create(
        tenant_id=client.tenant_id,
        client=client,
        type=tx_type,
        points=points,
        balance_after=new_balance,
        description=description,
        **extra,
    )


def _replayed_entry(client: Client, idempotency_key) -> Optional[LedgerEntryResult]:
    if not idempotency_key:
        return None
    existing = PointsTransaction.objects.filter(
        tenant_id=client.tenant_id, idempotency_key=idempotency_key
    ).first()
    if existing is None:
        return None
    if existing.client_id != client.pk:
        raise ValidationError({"detail": "Idempotency-Key already used for another client."})
    logger.info("Replayed points entry %s for key %s", existing.pk, idempotency_key)
    client.refresh_from_db(fields=["points"])
    return LedgerEntryResult(transaction=existing, client=client, replayed=True)


def _write_single_entry(client, tx_type, points, description, user, idempotency_key, label):
    replay = _replayed_entry(client, idempotency_key)
    if replay:
        return replay

    try:
        with transaction.atomic():
            locked = _lock_client(client)
            if tx_type == PointsTransaction.USED and locked.status == ClientStatus.BLOCKED:
                raise ValidationError({"detail": "Blocked clients cannot redeem points."})
            tx = _append_entry(
                locked,
                tx_type,
                points,
                description,
                created_by=_user_or_none(user),
                idempotency_key=idempotency_key or None,
            )
            locked.save(update_fields=["points", "updated_at"])
    except ValidationError as exc:
        logger.warning("%s rejected for client %s: %s", label, client.pk, exc.detail)
        raise
    except IntegrityError as exc:
        replay = _replayed_entry(client, idempotency_key)
        if replay:
            return replay
        logger.exception("%s failed for client %s", label, client.pk)
        raise OperationFailedError() from exc
    except DatabaseError as exc:
        logger.exception("%s failed for client %s", label, client.pk)
        raise OperationFailedError() from exc

    logger.info(
        "%s: client %s %+d points -> balance %s (tx %s)",
        label, locked.pk, points, tx.balance_after, tx.pk,
    )
    return LedgerEntryResult(transaction=tx, client=locked)


# ---------------------------------------------------------------------------
# Public operations
# ---------------------------------------------------------------------------

def adjust_points(client: Client, points, description, user=None, idempotency_key=None) -> LedgerEntryResult:
    """
    Manual correction: one ``adjustment`` entry of ``points`` (signed).
    A negative adjustment may not exceed the current balance.
    """
    delta = _to_int(points)
    if delta == 0:
        raise ValidationError({"points": ["Points must be a non-zero integer."]})
    text = _clean_description(description)
    return _write_single_entry(
        client, PointsTransaction.ADJUSTMENT, delta, text, user, idempotency_key, "Points adjustment"
    )


def redeem_points(client: Client, points, description=None, user=None, idempotency_key=None) -> LedgerEntryResult:
    amount = _to_int(points)
    if amount < 1:
        raise ValidationError({"points": ["Ensure this value is greater than or equal to 1."]})
    text = (description or "").strip() or "Points redeemed"
    return _write_single_entry(
        client, PointsTransaction.USED, -amount, text, user, idempotency_key, "Points redemption"
    )


def expire_points(client: Client, points, reason=None, user=None, idempotency_key=None) -> LedgerEntryResult:
    amount = _to_int(points)
    if amount < 1:
        raise ValidationError({"points": ["Ensure this value is greater than or equal to 1."]})
    text = (reason or "").strip() or "Points expired"
    return _write_single_entry(
        client, PointsTransaction.EXPIRED, -amount, text, user, idempotency_key, "Points expiry"
    )


def _replayed_purchase(client: Client, sale_id) -> Optional[PurchaseResult]:
    if not sale_id:
        return None
    existing = ClientPurchase.objects.filter(tenant_id=client.tenant_id, sale_id=sale_id).first()
    if existing is None:
        return None
    if existing.client_id != client.pk:
        raise ValidationError({"sale_id": ["This sale is already recorded for another client."]})
    logger.info("Replayed purchase %s for sale %s", existing.pk, sale_id)
    client.refresh_from_db()
    return PurchaseResult(
        purchase=existing,
        client=client,
        transactions=list(existing.points_transactions.order_by("id")),
        replayed=True,
    )


def record_purchase(
    client: Client,
    total,
    payment_method,
    points_redeemed=0,
    sale_id=None,
    items_count=0,
    user=None,
) -> PurchaseResult:
    """
    Record one completed sale: the purchase row, an optional ``used`` entry
    for redeemed points, an ``earned`` entry for accrued points and the client
    purchase stats, all in one transaction.

    Replaying a ``sale_id`` that is already recorded returns the original
    record without touching the ledger.
    """
    amount = _to_decimal(total)
    if amount < 0:
        raise ValidationError({"total": ["Ensure this value is greater than or equal to 0."]})
    if amount > MAX_AMOUNT:
        raise ValidationError({"total": [f"Ensure this value is less than or equal to {MAX_AMOUNT}."]})
    amount = amount.quantize(CENTS, rounding=ROUND_HALF_UP)
    if payment_method not in PaymentMethod.values:
        raise ValidationError({"payment_method": [f"'{payment_method}' is not a valid choice."]})
    redeemed = _to_int(points_redeemed or 0, "points_redeemed")
    if redeemed < 0:
        raise ValidationError({"points_redeemed": ["Ensure this value is greater than or equal to 0."]})
    if payment_method == PaymentMethod.POINTS and redeemed == 0:
        raise ValidationError({"points_redeemed": ["Payment with points requires redeeming points."]})
    items = _to_int(items_count or 0, "items_count")
    if items < 0:
        raise ValidationError({"items_count": ["Ensure this value is greater than or equal to 0."]})
    sale_id = (sale_id or "").strip() or None
    if sale_id and len(sale_id) > 64:
        raise ValidationError({"sale_id": ["Ensure this field has no more than 64 characters."]})

    replay = _replayed_purchase(client, sale_id)
    if replay:
        return replay
    if ClientPurchase.is_reserved_sale_id(client.tenant, sale_id):
        prefix = ClientPurchase.generated_prefix(client.tenant)
        raise ValidationError(
            {"sale_id": [f"Sale ids starting with '{prefix}' are reserved for generated references."]}
        )

    recorded_by = _user_or_none(user)
    try:
        with transaction.atomic():
            locked = _lock_client(client)
            if redeemed and locked.status == ClientStatus.BLOCKED:
                raise ValidationError({"detail": "Blocked clients cannot redeem points."})
            if redeemed > locked.points:
                raise ValidationError(
                    {"points_redeemed": [f"Insufficient points: balance is {locked.points}, requested {redeemed}."]}
                )
            if locked.total_spent + amount > MAX_AMOUNT:
                raise ValidationError(
                    {"total": ["The client's accumulated spend would exceed the supported limit."]}
                )

            config = get_points_config(locked.tenant)
            earned = calculate_points_for_purchase(amount, config, payment_method)

            purchase = ClientPurchase.objects.create(
                tenant_id=locked.tenant_id,
                client=locked,
                sale_id=sale_id,
                items_count=items,
                total=amount,
                payment_method=payment_method,
                points_earned=earned,
                points_used=redeemed,
                created_by=recorded_by,
            )
            sale_ref = purchase.assign_sale_id()

            entries = []
            if redeemed:
                entries.append(_append_entry(
                    locked,
                    PointsTransaction.USED,
                    -redeemed,
                    f"Points redeemed in sale {sale_ref}",
                    purchase=purchase,
                    sale_id=sale_ref,
                    created_by=recorded_by,
                ))
            if earned:
                entries.append(_append_entry(
                    locked,
                    PointsTransaction.EARNED,
                    earned,
                    f"Points earned in sale {sale_ref}",
                    purchase=purchase,
                    sale_id=sale_ref,
                    created_by=recorded_by,
                    metadata={"total": str(amount), "earn_rate": str(config.earn_rate)},
                ))

            update_client_after_purchase(locked, purchase)
            locked.save(update_fields=[
                "points", "total_purchases", "total_spent", "last_purchase", "updated_at",
            ])
    except ValidationError as exc:
        logger.warning("Purchase rejected for client %s: %s", client.pk, exc.detail)
        raise
    except IntegrityError as exc:
        replay = _replayed_purchase(client, sale_id)
        if replay:
            return replay
        logger.exception("Recording purchase failed for client %s", client.pk)
        raise OperationFailedError() from exc
    except DatabaseError as exc:
        logger.exception("Recording purchase failed for client %s", client.pk)
        raise OperationFailedError() from exc

    logger.info(
        "Recorded sale %s for client %s: total=%s earned=%s used=%s balance=%s",
        sale_ref, locked.pk, amount, earned, redeemed, locked.points,
    )
    return PurchaseResult(purchase=purchase, client=locked, transactions=entries)


# ---------------------------------------------------------------------------
# Expiry (FIFO)
# ---------------------------------------------------------------------------

def unconsumed_credits(client: Client):
    """
    Credits still backing the balance, oldest first, as (transaction, remaining).

    Debits (used, expired, negative adjustments) consume the oldest credits
    first. The balance never goes negative, so consuming the debit total in
    one pass gives the same result as replaying entries in order.
    """
    entries = list(
        PointsTransaction.objects.filter(client_id=client.pk).order_by("created_at", "id")
    )
    to_consume = -sum(tx.points for tx in entries if tx.points < 0)
    remaining_credits = []
    for tx in entries:
        if not tx.is_credit:
            continue
        used = min(tx.points, to_consume)
        to_consume -= used
        left = tx.points - used
        if left > 0:
            remaining_credits.append((tx, left))
    return remaining_credits


def expiring_points(client: Client, config: PointsConfig):
    """(transaction, remaining, expires_at) for every unconsumed credit."""
    lifetime = timedelta(days=config.points_expiry_days)
    return [
        (tx, left, tx.created_at + lifetime)
        for tx, left in unconsumed_credits(client)
    ]


def points_balance_summary(client: Client, config: PointsConfig = None, as_of=None) -> dict:
    config = config or get_points_config(client.tenant)
    as_of = as_of or timezone.now()
    warning_days = getattr(settings, "LOYALTY", {}).get("EXPIRY_WARNING_DAYS", 30)
    horizon = as_of + timedelta(days=warning_days)

    credits = expiring_points(client, config)
    to_expire = sum(left for _, left, expires_at in credits if expires_at <= horizon)
    next_expiry = min((expires_at for _, _, expires_at in credits), default=None)
    return {
        "client_id": client.pk,
        "current_points": client.points,
        "points_value": calculate_points_value(client.points, config),
        "points_to_expire": min(to_expire, client.points),
        "expiry_date": next_expiry,
    }


def expire_due_points(tenant=None, as_of=None, dry_run=False) -> List[ExpiryOutcome]:
    """
    Write ``expired`` entries for credits older than the tenant's expiry window.
    Tenants whose program is inactive are skipped.
    """
    as_of = as_of or timezone.now()
    clients = Client.objects.filter(points__gt=0).select_related("tenant").order_by("tenant_id", "id")
    if tenant is not None:
        clients = clients.filter(tenant=tenant)

    outcomes = []
    configs = {}
    for client in clients:
        config = configs.get(client.tenant_id)
        if config is None:
            config = configs[client.tenant_id] = get_points_config(client.tenant)
        if not config.is_active:
            continue

        try:
            with transaction.atomic():
                locked = _lock_client(client)
                due = sum(
                    left for _, left, expires_at in expiring_points(locked, config)
                    if expires_at <= as_of
                )
                due = min(due, locked.points)
                if due <= 0:
                    continue
                if dry_run:
                    outcomes.append(ExpiryOutcome(client=locked, points=due))
                    continue
                tx = _append_entry(
                    locked,
                    PointsTransaction.EXPIRED,
                    -due,
                    f"Points expired after {config.points_expiry_days} days",
                    metadata={"as_of": as_of.isoformat()},
                )
                locked.save(update_fields=["points", "updated_at"])
        except DatabaseError as exc:
            logger.exception("Expiring points failed for client %s", client.pk)
            raise OperationFailedError() from exc

        logger.info("Expired %s points for client %s (tx %s)", due, locked.pk, tx.pk)
        outcomes.append(ExpiryOutcome(client=locked, points=due, transaction=tx))
    return outcomes


# ---------------------------------------------------------------------------
# Listing, statistics & reports
# ---------------------------------------------------------------------------

def filter_transactions(qs, params):
    client_id = params.get("client_id")
    if client_id not in (None, ""):
        qs = qs.filter(client_id=_to_int(client_id, "client_id"))

    tx_type = params.get("type")
    if tx_type:
        valid = [choice for choice, _ in PointsTransaction.TYPE_CHOICES]
        if tx_type not in valid:
            raise ValidationError({"type": [f"'{tx_type}' is not a valid choice."]})
        qs = qs.filter(type=tx_type)

    date_from = _date_param(params, "date_from")
    date_to = _date_param(params, "date_to")
    if date_from:
        qs = qs.filter(created_at__date__gte=date_from)
    if date_to:
        qs = qs.filter(created_at__date__lte=date_to)

    min_points = params.get("min_points")
    if min_points not in (None, ""):
        qs = qs.filter(points__gte=_to_int(min_points, "min_points"))
    max_points = params.get("max_points")
    if max_points not in (None, ""):
        qs = qs.filter(points__lte=_to_int(max_points, "max_points"))

    sale_id = (params.get("sale_id") or "").strip()
    if sale_id:
        qs = qs.filter(sale_id=sale_id)
    return qs


def _month_start():
    now = timezone.localtime()
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def _ledger_totals(qs) -> dict:
    totals = qs.aggregate(
        issued=Sum("points", filter=PointsTransaction.credit_filter()),
        redeemed=Sum("points", filter=Q(type=PointsTransaction.USED)),
        expired=Sum("points", filter=Q(type=PointsTransaction.EXPIRED)),
        removed=Sum("points", filter=Q(type=PointsTransaction.ADJUSTMENT, points__lt=0)),
        net=Sum("points"),
        count=Count("id"),
    )
    return {
        "issued": totals["issued"] or 0,
        "redeemed": -(totals["redeemed"] or 0),
        "expired": -(totals["expired"] or 0),
        "adjusted_out": -(totals["removed"] or 0),
        "net": totals["net"] or 0,
        "transactions": totals["count"] or 0,
    }


def points_stats(tenant, top: int = 5) -> dict:
    ledger = PointsTransaction.objects.filter(tenant=tenant)
    overall = _ledger_totals(ledger)
    this_month = _ledger_totals(ledger.filter(created_at__gte=_month_start()))

    clients = Client.objects.filter(tenant=tenant, points__gt=0)
    balances = clients.aggregate(active=Sum("points"), holders=Count("id"))
    active_points = balances["active"] or 0
    holders = balances["holders"] or 0

    return {
        "total_points_issued": overall["issued"],
        "total_points_redeemed": overall["redeemed"],
        "total_points_expired": overall["expired"],
        "active_points": active_points,
        "total_clients_with_points": holders,
        "avg_points_per_client": round(active_points / holders, 2) if holders else 0,
        "points_issued_this_month": this_month["issued"],
        "points_redeemed_this_month": this_month["redeemed"],
        "top_earners": [
            {"client": c, "points": c.points}
            for c in clients.order_by("-points", "id")[:top]
        ],
    }


def points_report(tenant, params, top: int = 10) -> dict:
    date_from = _date_param(params, "date_from")
    date_to = _date_param(params, "date_to")
    if date_from and date_to and date_from > date_to:
        raise ValidationError({"date_to": ["Must be on or after date_from."]})

    qs = PointsTransaction.objects.filter(tenant=tenant)
    if date_from:
        qs = qs.filter(created_at__date__gte=date_from)
    if date_to:
        qs = qs.filter(created_at__date__lte=date_to)

    daily = (
        qs.annotate(day=TruncDate("created_at"))
        .values("day")
        .annotate(
            issued=Sum("points", filter=PointsTransaction.credit_filter()),
            redeemed=Sum("points", filter=Q(type=PointsTransaction.USED)),
            expired=Sum("points", filter=Q(type=PointsTransaction.EXPIRED)),
            net=Sum("points"),
            count=Count("id"),
        )
        .order_by("day")
    )
    top_clients = (
        qs.filter(PointsTransaction.credit_filter())
        .values("client_id", "client__name", "client__document")
        .annotate(points=Sum("points"))
        .order_by("-points", "client_id")[:top]
    )

    return {
        "date_from": date_from,
        "date_to": date_to,
        "totals": _ledger_totals(qs),
        "daily": [
            {
                "date": row["day"],
                "issued": row["issued"] or 0,
                "redeemed": -(row["redeemed"] or 0),
                "expired": -(row["expired"] or 0),
                "net": row["net"] or 0,
                "transactions": row["count"],
            }
            for row in daily
        ],
        "top_clients": [
            {
                "client_id": row["client_id"],
                "name": row["client__name"],
                "document": row["client__document"],
                "points": row["points"],
            }
            for row in top_clients
        ],
    }


def transaction_export_rows(qs) -> list[dict]:
    return list(qs.values(*TRANSACTION_EXPORT_FIELDS))
