# pos-backend/clients/services.py

import logging
from decimal import Decimal, InvalidOperation

from django.db import DatabaseError, IntegrityError, transaction
from django.db.models import Avg, Count, Q, Sum
from django.utils import timezone

from common.exceptions import NotFoundError, OperationFailedError, ValidationError
from .models import MAX_ID, MAX_POINTS, Client, ClientPurchase, ClientStatus

logger = logging.getLogger(__name__)

# Fields the profile endpoints may write. Ledger fields are not here.
PROFILE_FIELDS = (
    "first_name",
    "last_name",
    "document_type",
    "document",
    "phone",
    "email",
    "address",
    "city",
    "birth_date",
    "status",
)

CLIENT_EXPORT_FIELDS = [
    "id",
    "name",
    "document_type",
    "document",
    "phone",
    "email",
    "address",
    "city",
    "birth_date",
    "status",
    "points",
    "total_purchases",
    "total_spent",
    "last_purchase",
    "created_at",
]


def get_client(tenant, client_id, for_update=False) -> Client:
    qs = Client.objects.filter(tenant=tenant)
    if for_update:
        qs = qs.select_for_update()
    try:
        pk = int(client_id)
    except (TypeError, ValueError):
        raise NotFoundError(f"Client {client_id} not found.")
    if not 0 < pk <= MAX_ID:
        raise NotFoundError(f"Client {client_id} not found.")
    try:
        return qs.get(pk=pk)
    except Client.DoesNotExist:
        raise NotFoundError(f"Client {client_id} not found.")


def document_exists(tenant, document_type, document, exclude_id=None) -> bool:
    qs = Client.objects.filter(
        tenant=tenant,
        document_type=document_type,
        document=(document or "").strip(),
    )
    if exclude_id is not None:
        qs = qs.exclude(pk=exclude_id)
    return qs.exists()


def save_client(tenant, data: dict, user=None, instance: Client | None = None) -> Client:
    """
    Create a client, or overwrite the given profile fields of ``instance``.

    ``data`` holds already validated profile values keyed by model field name.
    A document already registered under the same type is rejected; on edit the
    client's own document does not count as a duplicate.
    """
    creating = instance is None
    client = Client(tenant=tenant) if creating else instance

    for field in PROFILE_FIELDS:
        if field in data:
            value = data[field]
            if isinstance(value, str):
                value = value.strip()
                if value == "" and field in ("email", "address", "city"):
                    value = None
            setattr(client, field, value)

    if document_exists(tenant, client.document_type, client.document, exclude_id=client.pk):
        logger.warning(
            "Rejected duplicate document %s %s for tenant %s",
            client.document_type, client.document, tenant.code,
        )
        raise ValidationError({"document": ["A client with this document is already registered."]})

    client.name = Client.compose_name(client.first_name, client.last_name)
    if user is not None and getattr(user, "is_authenticated", False):
        if creating:
            client.created_by = user
        client.updated_by = user

    try:
        with transaction.atomic():
            client.save()
    except IntegrityError:
        # concurrent registration of the same document
        raise ValidationError({"document": ["A client with this document is already registered."]})
    except DatabaseError as exc:
        logger.exception("Could not save client for tenant %s", tenant.code)
        raise OperationFailedError() from exc

    logger.info("%s client %s (%s)", "Created" if creating else "Updated", client.pk, tenant.code)
    return client


def delete_client(client: Client, user=None) -> None:
    """Soft delete; purchase and points history stay intact."""
    client.soft_delete(user=user if getattr(user, "is_authenticated", False) else None)
    logger.info("Soft-deleted client %s", client.pk)


def update_client_after_purchase(client: Client, purchase: ClientPurchase) -> None:
    """
    Called by the loyalty service while it holds the client row lock.
    """
    client.total_purchases = int(client.total_purchases or 0) + 1
    client.total_spent = (client.total_spent or Decimal("0.00")) + (purchase.total or Decimal("0.00"))
    client.last_purchase = purchase.created_at or timezone.now()


def _decimal_param(params, name):
    raw = params.get(name)
    if raw in (None, ""):
        return None
    try:
        return Decimal(str(raw))
    except InvalidOperation:
        raise ValidationError({name: ["A valid number is required."]})


def _int_param(params, name):
    raw = params.get(name)
    if raw in (None, ""):
        return None
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise ValidationError({name: ["A valid integer is required."]})
    if abs(value) > MAX_POINTS:
        raise ValidationError({name: [f"Ensure this value is less than or equal to {MAX_POINTS}."]})
    return value


def _search_q(term: str) -> Q:
    return (
        Q(name__icontains=term)
        | Q(document__icontains=term)
        | Q(phone__icontains=term)
        | Q(email__icontains=term)
    )


def filter_clients(qs, params):
    search = (params.get("search") or params.get("q") or "").strip()
    if search:
        qs = qs.filter(_search_q(search))

    for field in ("document_type", "status"):
        value = params.get(field)
        if value:
            qs = qs.filter(**{field: value})

    city = (params.get("city") or "").strip()
    if city:
        qs = qs.filter(city__iexact=city)

    has_email = params.get("has_email")
    if has_email not in (None, ""):
        if str(has_email).lower() in ("1", "true", "yes"):
            qs = qs.exclude(email__isnull=True).exclude(email="")
        else:
            qs = qs.filter(Q(email__isnull=True) | Q(email=""))

    bounds = {
        "min_purchases": ("total_purchases__gte", _int_param),
        "max_purchases": ("total_purchases__lte", _int_param),
        "min_spent": ("total_spent__gte", _decimal_param),
        "max_spent": ("total_spent__lte", _decimal_param),
    }
    for name, (lookup, parse) in bounds.items():
        value = parse(params, name)
        if value is not None:
            qs = qs.filter(**{lookup: value})
    return qs


def search_clients(tenant, term: str, limit: int = 10):
    term = (term or "").strip()
    qs = Client.objects.filter(tenant=tenant)
    if not term:
        return qs.none()
    return qs.filter(_search_q(term)).order_by("name", "id")[:limit]


def find_client_by_document(tenant, document: str) -> Client:
    document = (document or "").strip()
    if not document:
        raise ValidationError({"document": ["This field is required."]})
    client = Client.objects.filter(tenant=tenant, document=document).order_by("id").first()
    if client is None:
        raise NotFoundError("No client registered with that document.")
    return client


def client_stats(tenant, top: int = 5) -> dict:
    from loyalty.models import PointsTransaction

    clients = Client.objects.filter(tenant=tenant)
    now = timezone.localtime()
    month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)

    totals = clients.aggregate(
        total=Count("id"),
        active=Count("id", filter=Q(status=ClientStatus.ACTIVE)),
        new_this_month=Count("id", filter=Q(created_at__gte=month_start)),
        avg_purchases=Avg("total_purchases"),
    )
    issued = PointsTransaction.objects.filter(
        PointsTransaction.credit_filter(), tenant=tenant
    ).aggregate(total=Sum("points"))["total"]

    top_spending = clients.filter(total_spent__gt=0).order_by("-total_spent", "id")[:top]
    return {
        "total_clients": totals["total"] or 0,
        "active_clients": totals["active"] or 0,
        "new_clients_this_month": totals["new_this_month"] or 0,
        "total_points_issued": issued or 0,
        "avg_purchases_per_client": round(float(totals["avg_purchases"] or 0), 2),
        "top_spending_clients": [
            {"client": c, "total_spent": c.total_spent} for c in top_spending
        ],
    }


def client_export_rows(qs) -> list[dict]:
    return list(qs.values(*CLIENT_EXPORT_FIELDS))
