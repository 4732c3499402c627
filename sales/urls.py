from django.urls import path
from rest_framework.routers import DefaultRouter

from sales.reports import DashboardReportView, GstSummaryReportView, PosExportView, SalesSummaryReportView
from sales.views import CustomerViewSet, InvoiceViewSet, PaymentViewSet

router = DefaultRouter()
router.register(r"customers", CustomerViewSet, basename="customer")
router.register(r"invoices", InvoiceViewSet, basename="invoice")
router.register(r"payments", PaymentViewSet, basename="payment")

urlpatterns = router.urls + [
    path("reports/sales-summary/", SalesSummaryReportView.as_view(), name="report-sales-summary"),
    path("reports/gst-summary/", GstSummaryReportView.as_view(), name="report-gst-summary"),
    path("reports/dashboard/", DashboardReportView.as_view(), name="report-dashboard"),
    path("reports/pos-export/", PosExportView.as_view(), name="report-pos-export"),
]
