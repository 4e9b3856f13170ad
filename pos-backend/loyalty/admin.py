# pos-backend/loyalty/admin.py

from django.contrib import admin
from django.urls import reverse
from django.utils.html import format_html

from .models import PointsConfig, PointsTransaction


@admin.register(PointsConfig)
class PointsConfigAdmin(admin.ModelAdmin):
    list_display = [
        "tenant",
        "is_active",
        "earn_rate",
        "min_purchase_for_points",
        "max_points_per_transaction",
        "points_expiry_days",
        "point_value",
        "updated_at",
    ]
    list_editable = ["is_active", "earn_rate", "points_expiry_days"]
    list_filter = ["is_active", "updated_at"]
    search_fields = ["tenant__name", "tenant__code"]

    def get_queryset(self, request):
        return super().get_queryset(request).select_related("tenant")


@admin.register(PointsTransaction)
class PointsTransactionAdmin(admin.ModelAdmin):
    date_hierarchy = "created_at"
    list_display = [
        "created_at",
        "tenant",
        "client_link",
        "type",
        "points",
        "balance_after",
        "sale_id",
        "description",
    ]
    list_filter = ["tenant", "type", "created_at"]
    search_fields = [
        "client__name",
        "client__document",
        "sale_id",
        "description",
    ]
    readonly_fields = [
        "tenant", "client", "purchase", "sale_id", "type", "points",
        "balance_after", "description", "idempotency_key", "metadata",
        "created_by", "created_at",
    ]

    def has_add_permission(self, request):    return False
    def has_change_permission(self, request, obj=None): return False
    def has_delete_permission(self, request, obj=None):
        return request.user.is_superuser

    def get_queryset(self, request):
        return super().get_queryset(request).select_related("tenant", "client")

    def client_link(self, obj):
        url = reverse("admin:clients_client_change", args=[obj.client_id])
        return format_html('<a href="{}">{}</a>', url, obj.client.name)
    client_link.short_description = "Client"
    client_link.admin_order_field = "client__name"
