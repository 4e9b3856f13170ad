# pos-backend/loyalty/views.py

from drf_spectacular.utils import OpenApiResponse, extend_schema
from rest_framework import generics, status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from clients.models import ClientPurchase
from clients.serializers import ClientListSerializer, ClientPurchaseSerializer, ClientSerializer
from clients.services import find_client_by_document, get_client
from common.api_mixins import IsInTenant, RoleRequired, TenantScopedMixin
from common.export import csv_response, export_to_csv
from common.pagination import paginate
from common.permissions import IsOwnerOrAdmin
from common.roles import LEDGER_MANAGER_ROLES
from .models import PointsConfig, PointsTransaction
from .serializers import (
    ClientDocumentSearchSerializer,
    PointsAdjustmentSerializer,
    PointsConfigSerializer,
    PointsExpireSerializer,
    PointsRedeemSerializer,
    PointsTransactionSerializer,
    RecordPurchaseSerializer,
)
from . import services


def _idempotency_key(request):
    key = (request.headers.get("Idempotency-Key") or "").strip()
    return key[:128] or None


def _entry_response(result, message):
    data = PointsTransactionSerializer(result.transaction).data
    data["balance"] = result.client.points
    data["replayed"] = result.replayed
    data["message"] = message
    return Response(data, status=status.HTTP_200_OK if result.replayed else status.HTTP_201_CREATED)


class ClientPurchasesView(TenantScopedMixin, APIView):
    """
    GET  /api/v1/clients/<id>/purchases?page=&limit=
    POST /api/v1/clients/<id>/purchases  {total, payment_method, points_redeemed?, items_count?, sale_id?}
    """
    permission_classes = [IsAuthenticated, IsInTenant]

    def get(self, request, pk):
        tenant = self.get_tenant()
        client = get_client(tenant, pk)
        qs = ClientPurchase.objects.filter(tenant=tenant, client=client)
        return Response(paginate(request, qs, ClientPurchaseSerializer))

    @extend_schema(
        request=RecordPurchaseSerializer,
        responses={
            201: OpenApiResponse(description="Purchase recorded with its points entries."),
            200: OpenApiResponse(description="sale_id already recorded; original record returned."),
            400: OpenApiResponse(description="Invalid sale or insufficient points."),
        },
    )
    def post(self, request, pk):
        client = get_client(self.get_tenant(), pk)
        serializer = RecordPurchaseSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        result = services.record_purchase(
            client,
            total=data["total"],
            payment_method=data["payment_method"],
            points_redeemed=data.get("points_redeemed") or 0,
            sale_id=data.get("sale_id"),
            items_count=data.get("items_count") or 0,
            user=request.user,
        )
        purchase = result.purchase
        if result.replayed:
            message = f"Sale {purchase.sale_id} was already recorded."
        else:
            message = (
                f"Sale {purchase.sale_id} recorded: {purchase.points_earned} points earned, "
                f"{purchase.points_used} points used."
            )
        return Response(
            {
                "purchase": ClientPurchaseSerializer(purchase).data,
                "transactions": PointsTransactionSerializer(result.transactions, many=True).data,
                "client": ClientSerializer(result.client).data,
                "replayed": result.replayed,
                "message": message,
            },
            status=status.HTTP_200_OK if result.replayed else status.HTTP_201_CREATED,
        )


class ClientPointsHistoryView(TenantScopedMixin, APIView):
    """
    GET /api/v1/clients/<id>/points?page=&limit=
    """
    permission_classes = [IsAuthenticated, IsInTenant]

    def get(self, request, pk):
        tenant = self.get_tenant()
        client = get_client(tenant, pk)
        qs = PointsTransaction.objects.filter(tenant=tenant, client=client).select_related("client")
        return Response(paginate(request, qs, PointsTransactionSerializer))


class ClientPointsAdjustView(TenantScopedMixin, APIView):
    """
    POST /api/v1/clients/<id>/points/adjust
      {points, direction: add|subtract, description}  or  {points: signedDelta, description}
    Optional header: Idempotency-Key
    """
    permission_classes = [IsAuthenticated, IsInTenant, RoleRequired]
    permission_roles = {"POST": LEDGER_MANAGER_ROLES}

    @extend_schema(request=PointsAdjustmentSerializer, responses={201: PointsTransactionSerializer})
    def post(self, request, pk):
        client = get_client(self.get_tenant(), pk)
        serializer = PointsAdjustmentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        delta = serializer.validated_data["delta"]

        result = services.adjust_points(
            client,
            delta,
            serializer.validated_data["description"],
            user=request.user,
            idempotency_key=_idempotency_key(request),
        )
        verb = "added to" if delta > 0 else "subtracted from"
        message = f"{abs(delta)} points {verb} {result.client.name}. New balance: {result.client.points}."
        return _entry_response(result, message)


class PointsConfigView(TenantScopedMixin, generics.RetrieveUpdateAPIView):
    """
    GET   /api/v1/points/config
    PUT   /api/v1/points/config
    PATCH /api/v1/points/config
    """
    permission_classes = [IsAuthenticated, IsOwnerOrAdmin]
    serializer_class = PointsConfigSerializer
    queryset = PointsConfig.objects.all()

    def get_object(self):
        return services.get_points_config(self.get_tenant())

    def update(self, request, *args, **kwargs):
        response = super().update(request, *args, **kwargs)
        response.data["message"] = "Points configuration updated."
        return response


class PointsTransactionListView(TenantScopedMixin, generics.ListAPIView):
    """
    GET /api/v1/points/transactions?page=&limit=&client_id=&type=&date_from=&date_to=
                                   &min_points=&max_points=&sale_id=
    """
    permission_classes = [IsAuthenticated, IsInTenant]
    serializer_class = PointsTransactionSerializer
    queryset = PointsTransaction.objects.select_related("client")

    def list(self, request, *args, **kwargs):
        qs = services.filter_transactions(self.get_queryset(), request.query_params)
        return Response(paginate(request, qs, PointsTransactionSerializer))


class PointsStatsView(TenantScopedMixin, APIView):
    """
    GET /api/v1/points/stats
    """
    permission_classes = [IsAuthenticated, IsInTenant]

    def get(self, request):
        stats = services.points_stats(self.get_tenant())
        stats["top_earners"] = [
            {"client": ClientListSerializer(row["client"]).data, "points": row["points"]}
            for row in stats["top_earners"]
        ]
        return Response(stats)


class PointsReportView(TenantScopedMixin, APIView):
    """
    GET /api/v1/points/report?date_from=&date_to=
    """
    permission_classes = [IsAuthenticated, IsInTenant]

    def get(self, request):
        return Response(services.points_report(self.get_tenant(), request.query_params))


class PointsExportView(TenantScopedMixin, APIView):
    """
    GET /api/v1/points/export?<same filters as the transaction list>  -> text/csv
    """
    permission_classes = [IsAuthenticated, IsInTenant]

    def get(self, request):
        tenant = self.get_tenant()
        qs = services.filter_transactions(
            PointsTransaction.objects.filter(tenant=tenant), request.query_params
        )
        content = export_to_csv(
            services.transaction_export_rows(qs.order_by("created_at", "id")),
            fieldnames=services.TRANSACTION_EXPORT_FIELDS,
        )
        return csv_response(content, tenant, "points_transactions")


class PointsRedeemView(TenantScopedMixin, APIView):
    """
    POST /api/v1/points/redeem  {client_id, points, description?}
    """
    permission_classes = [IsAuthenticated, IsInTenant]

    @extend_schema(request=PointsRedeemSerializer, responses={201: PointsTransactionSerializer})
    def post(self, request):
        serializer = PointsRedeemSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        client = get_client(self.get_tenant(), data["client_id"])

        result = services.redeem_points(
            client,
            data["points"],
            data.get("description"),
            user=request.user,
            idempotency_key=_idempotency_key(request),
        )
        message = f"{data['points']} points redeemed. New balance: {result.client.points}."
        return _entry_response(result, message)


class PointsExpireView(TenantScopedMixin, APIView):
    """
    POST /api/v1/points/expire  {client_id, points, reason?}
    """
    permission_classes = [IsAuthenticated, IsInTenant, RoleRequired]
    permission_roles = {"POST": LEDGER_MANAGER_ROLES}

    @extend_schema(request=PointsExpireSerializer, responses={201: PointsTransactionSerializer})
    def post(self, request):
        serializer = PointsExpireSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        client = get_client(self.get_tenant(), data["client_id"])

        result = services.expire_points(
            client,
            data["points"],
            data.get("reason"),
            user=request.user,
            idempotency_key=_idempotency_key(request),
        )
        message = f"{data['points']} points expired. New balance: {result.client.points}."
        return _entry_response(result, message)


class ClientBalanceView(TenantScopedMixin, APIView):
    """
    GET /api/v1/points/client/<id>/balance
    """
    permission_classes = [IsAuthenticated, IsInTenant]

    def get(self, request, pk):
        client = get_client(self.get_tenant(), pk)
        return Response(services.points_balance_summary(client))


class ClientDocumentSearchView(TenantScopedMixin, APIView):
    """
    POST /api/v1/points/client/search  {document}
    """
    permission_classes = [IsAuthenticated, IsInTenant]

    @extend_schema(request=ClientDocumentSearchSerializer, responses={200: ClientSerializer})
    def post(self, request):
        serializer = ClientDocumentSearchSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        client = find_client_by_document(self.get_tenant(), serializer.validated_data["document"])
        return Response(ClientSerializer(client).data)
