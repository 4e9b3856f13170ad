# pos-backend/clients/admin.py

from django.contrib import admin
from django.urls import reverse
from django.utils.html import format_html

from .models import Client, ClientPurchase


@admin.register(Client)
class ClientAdmin(admin.ModelAdmin):
    list_display = [
        "id",
        "name_link",
        "document_type",
        "document",
        "phone",
        "tenant",
        "status",
        "points",
        "total_purchases",
        "total_spent",
        "last_purchase",
    ]
    list_filter = ["tenant", "status", "document_type", "created_at"]
    search_fields = [
        "name__icontains",
        "document__exact",
        "phone__icontains",
        "email__icontains",
    ]

    # ledger fields only move through loyalty.services
    readonly_fields = [
        "name",
        "points",
        "total_purchases",
        "total_spent",
        "last_purchase",
        "created_by",
        "updated_by",
        "created_at",
        "updated_at",
        "deleted_at",
    ]

    fieldsets = (
        (None, {
            "fields": (
                "tenant",
                ("first_name", "last_name"),
                "name",
                ("document_type", "document"),
                ("phone", "email"),
                "status",
            )
        }),
        ("Address", {
            "fields": ("address", "city", "birth_date"),
            "classes": ("collapse",),
        }),
        ("Points & purchases (ledger)", {
            "fields": ("points", "total_purchases", "total_spent", "last_purchase"),
        }),
        ("Metadata", {
            "fields": ("created_by", "updated_by", "created_at", "updated_at", "deleted_at"),
            "classes": ("collapse",),
        }),
    )

    ordering = ["-created_at", "-id"]
    list_per_page = 25
    show_full_result_count = False

    def get_queryset(self, request):
        return Client.all_objects.select_related("tenant")

    def save_model(self, request, obj, form, change):
        obj.name = Client.compose_name(obj.first_name, obj.last_name)
        if not change:
            obj.created_by = request.user
        obj.updated_by = request.user
        super().save_model(request, obj, form, change)

    def name_link(self, obj):
        if not obj.pk:
            return "-"
        url = reverse("admin:clients_client_change", args=[obj.pk])
        return format_html('<a href="{}">{}</a>', url, obj.name)
    name_link.short_description = "Client"
    name_link.admin_order_field = "name"

    def has_delete_permission(self, request, obj=None):
        # purchase and points rows PROTECT the client
        return request.user.is_superuser


@admin.register(ClientPurchase)
class ClientPurchaseAdmin(admin.ModelAdmin):
    date_hierarchy = "created_at"
    list_display = [
        "created_at",
        "tenant",
        "sale_id",
        "client",
        "total",
        "payment_method",
        "points_earned",
        "points_used",
    ]
    list_filter = ["tenant", "payment_method", "created_at"]
    search_fields = ["sale_id", "client__name", "client__document"]
    readonly_fields = [
        "tenant", "client", "sale_id", "items_count", "total", "payment_method",
        "points_earned", "points_used", "created_by", "created_at",
    ]

    def has_add_permission(self, request):    return False
    def has_change_permission(self, request, obj=None): return False
    def has_delete_permission(self, request, obj=None):
        return request.user.is_superuser

    def get_queryset(self, request):
        return super().get_queryset(request).select_related("tenant", "client")
