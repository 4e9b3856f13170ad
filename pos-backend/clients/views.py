# pos-backend/clients/views.py

import re

from drf_spectacular.utils import extend_schema
from rest_framework import generics, status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from common.api_mixins import IsInTenant, RoleRequired, TenantScopedMixin
from common.export import csv_response, export_to_csv
from common.pagination import paginate
from common.roles import LEDGER_MANAGER_ROLES
from .models import Client, DocumentType
from .serializers import (
    CLIENT_FIELD_RULES,
    ClientListSerializer,
    ClientSerializer,
    ClientWriteSerializer,
    DocumentValidationSerializer,
)
from . import services


class ClientListCreateView(TenantScopedMixin, generics.ListCreateAPIView):
    """
    GET  /api/v1/clients?page=&limit=&search=&document_type=&status=&city=&has_email=
                        &min_purchases=&max_purchases=&min_spent=&max_spent=
    POST /api/v1/clients
    """
    permission_classes = [IsAuthenticated, IsInTenant]
    queryset = Client.objects.all()
    serializer_class = ClientSerializer

    def get_serializer_class(self):
        if self.request.method == "POST":
            return ClientWriteSerializer
        return ClientListSerializer

    def list(self, request, *args, **kwargs):
        qs = services.filter_clients(self.get_queryset(), request.query_params)
        return Response(paginate(request, qs, ClientListSerializer))

    @extend_schema(request=ClientWriteSerializer, responses={201: ClientSerializer})
    def create(self, request, *args, **kwargs):
        serializer = ClientWriteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        client = services.save_client(self.get_tenant(), serializer.to_model_data(), user=request.user)
        data = ClientSerializer(client).data
        data["message"] = f"Client {client.name} registered."
        return Response(data, status=status.HTTP_201_CREATED)


class ClientDetailView(TenantScopedMixin, generics.RetrieveUpdateDestroyAPIView):
    """
    GET    /api/v1/clients/<id>
    PUT    /api/v1/clients/<id>
    PATCH  /api/v1/clients/<id>
    DELETE /api/v1/clients/<id>   (soft delete; history is kept)
    """
    permission_classes = [IsAuthenticated, IsInTenant, RoleRequired]
    permission_roles = {"DELETE": LEDGER_MANAGER_ROLES}
    queryset = Client.objects.all()
    serializer_class = ClientSerializer

    def get_object(self):
        return services.get_client(self.get_tenant(), self.kwargs["pk"])

    @extend_schema(request=ClientWriteSerializer, responses={200: ClientSerializer})
    def update(self, request, *args, **kwargs):
        partial = kwargs.pop("partial", False)
        client = self.get_object()
        serializer = ClientWriteSerializer(data=request.data, partial=partial)
        serializer.is_valid(raise_exception=True)
        client = services.save_client(
            self.get_tenant(), serializer.to_model_data(), user=request.user, instance=client
        )
        data = ClientSerializer(client).data
        data["message"] = f"Client {client.name} updated."
        return Response(data)

    def destroy(self, request, *args, **kwargs):
        client = self.get_object()
        services.delete_client(client, user=request.user)
        return Response({"id": client.pk, "message": f"Client {client.name} deleted."})


class ClientValidateDocumentView(TenantScopedMixin, APIView):
    """
    POST /api/v1/clients/validate-document  {document_type, document_number, exclude_id?}
    -> {isValid, exists}
    """
    permission_classes = [IsAuthenticated, IsInTenant]

    @extend_schema(request=DocumentValidationSerializer)
    def post(self, request):
        serializer = DocumentValidationSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        document_type = serializer.validated_data["document_type"]
        number = serializer.validated_data["document_number"].strip()

        well_formed = (
            document_type in DocumentType.values
            and bool(re.fullmatch(CLIENT_FIELD_RULES["document_number"]["pattern"], number))
        )
        exists = well_formed and services.document_exists(
            self.get_tenant(), document_type, number, exclude_id=serializer.validated_data.get("exclude_id")
        )
        return Response({"isValid": well_formed and not exists, "exists": exists})


class ClientSearchView(TenantScopedMixin, APIView):
    """
    GET /api/v1/clients/search?search=&limit=
    """
    permission_classes = [IsAuthenticated, IsInTenant]

    def get(self, request):
        term = request.query_params.get("search") or request.query_params.get("q") or ""
        try:
            limit = max(1, min(int(request.query_params.get("limit", 10)), 50))
        except ValueError:
            limit = 10
        rows = services.search_clients(self.get_tenant(), term, limit)
        return Response(ClientListSerializer(rows, many=True).data)


class ClientStatsView(TenantScopedMixin, APIView):
    """
    GET /api/v1/clients/stats
    """
    permission_classes = [IsAuthenticated, IsInTenant]

    def get(self, request):
        stats = services.client_stats(self.get_tenant())
        stats["top_spending_clients"] = [
            {"client": ClientListSerializer(row["client"]).data, "total_spent": row["total_spent"]}
            for row in stats["top_spending_clients"]
        ]
        return Response(stats)


class ClientExportView(TenantScopedMixin, APIView):
    """
    GET /api/v1/clients/export?<same filters as the list>  -> text/csv
    """
    permission_classes = [IsAuthenticated, IsInTenant]

    def get(self, request):
        tenant = self.get_tenant()
        qs = services.filter_clients(Client.objects.filter(tenant=tenant), request.query_params)
        content = export_to_csv(
            services.client_export_rows(qs.order_by("name", "id")),
            fieldnames=services.CLIENT_EXPORT_FIELDS,
        )
        return csv_response(content, tenant, "clients")
