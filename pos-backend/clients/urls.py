# pos-backend/clients/urls.py

from django.urls import path

from .views import (
    ClientDetailView,
    ClientExportView,
    ClientListCreateView,
    ClientSearchView,
    ClientStatsView,
    ClientValidateDocumentView,
)

app_name = "clients"

urlpatterns = [
    path("clients", ClientListCreateView.as_view(), name="client-list"),
    path("clients/validate-document", ClientValidateDocumentView.as_view(), name="validate-document"),
    path("clients/search", ClientSearchView.as_view(), name="client-search"),
    path("clients/stats", ClientStatsView.as_view(), name="client-stats"),
    path("clients/export", ClientExportView.as_view(), name="client-export"),
    path("clients/<int:pk>", ClientDetailView.as_view(), name="client-detail"),
]
