# pos-backend/loyalty/urls.py

from django.urls import path

from .views import (
    ClientBalanceView,
    ClientDocumentSearchView,
    ClientPointsAdjustView,
    ClientPointsHistoryView,
    ClientPurchasesView,
    PointsConfigView,
    PointsExpireView,
    PointsExportView,
    PointsRedeemView,
    PointsReportView,
    PointsStatsView,
    PointsTransactionListView,
)

app_name = "loyalty"

urlpatterns = [
    # per-client ledger
    path("clients/<int:pk>/purchases", ClientPurchasesView.as_view(), name="client-purchases"),
    path("clients/<int:pk>/points", ClientPointsHistoryView.as_view(), name="client-points"),
    path("clients/<int:pk>/points/adjust", ClientPointsAdjustView.as_view(), name="client-points-adjust"),

    # program
    path("points/config", PointsConfigView.as_view(), name="config"),
    path("points/transactions", PointsTransactionListView.as_view(), name="transactions"),
    path("points/stats", PointsStatsView.as_view(), name="stats"),
    path("points/report", PointsReportView.as_view(), name="report"),
    path("points/export", PointsExportView.as_view(), name="export"),
    path("points/redeem", PointsRedeemView.as_view(), name="redeem"),
    path("points/expire", PointsExpireView.as_view(), name="expire"),
    path("points/client/search", ClientDocumentSearchView.as_view(), name="client-search"),
    path("points/client/<int:pk>/balance", ClientBalanceView.as_view(), name="client-balance"),
]
