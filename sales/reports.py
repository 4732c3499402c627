import logging
import re
from collections import OrderedDict
from datetime import date
from decimal import Decimal

from django.core.cache import cache
from django.db.models import Count, DecimalField, ExpressionWrapper, F, Sum
from django.db.models.functions import Coalesce
from django.http import HttpResponse
from django.utils import timezone
from django.utils.dateparse import parse_date
from rest_framework.exceptions import ValidationError
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from common.permissions import ExportApiKeyOrCapability, RoleCapabilityPermission
from inventory.services import low_stock_products
from sales.gst import quantize_money
from sales.models import Invoice, InvoiceLine

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")
RECEIPT_TIME_PATTERN = re.compile(r"^\d{6}$")
ISO_DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")

POS_PAYMENT_NAMES = {
    "cash": "CASH",
    "upi": "OTHERS",
    "card": "CC",
    "credit": "CREDIT",
}


def pos_payment_name(mode):
    return POS_PAYMENT_NAMES.get((mode or "").lower(), "OTHERS")


def pos_receipt_time(invoice):
    if invoice.receipt_time and RECEIPT_TIME_PATTERN.match(invoice.receipt_time):
        return invoice.receipt_time
    return timezone.localtime(invoice.created_at).strftime("%H%M%S")


class BaseReportView(APIView):
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"get": "reports.view"}
    cache_timeout = 60

    def _date_range(self, request):
        date_from = parse_date(request.query_params.get("date_from", ""))
        date_to = parse_date(request.query_params.get("date_to", ""))
        if not date_from and not date_to:
            return None, None

        if not date_from or not date_to:
            raise ValidationError({"date_range": "Both date_from and date_to are required."})
        if date_from > date_to:
            raise ValidationError({"date_range": "date_from must be before or equal to date_to."})
        return date_from, date_to

    def _invoices(self, date_from, date_to):
        qs = Invoice.objects.all()
        if date_from and date_to:
            qs = qs.filter(invoice_date__gte=date_from, invoice_date__lte=date_to)
        return qs

    def _csv_response(self, filename, rows):
        import csv

        response = HttpResponse(content_type="text/csv")
        response["Content-Disposition"] = f'attachment; filename="{filename}"'

        if not rows:
            return response

        writer = csv.DictWriter(response, fieldnames=list(rows[0].keys()))
        writer.writeheader()
        for row in rows:
            writer.writerow(row)
        return response

    def _cached(self, request, key, callback):
        cache_key = f"reports:{key}:{request.get_full_path()}"
        payload = cache.get(cache_key)
        if payload is None:
            payload = callback()
            cache.set(cache_key, payload, self.cache_timeout)
        return payload


class SalesSummaryReportView(BaseReportView):
    def get(self, request):
        date_from, date_to = self._date_range(request)
        qs = self._invoices(date_from, date_to)

        if request.query_params.get("format") == "csv":
            rows = [
                OrderedDict(
                    invoice_number=invoice.invoice_number,
                    invoice_date=invoice.invoice_date.isoformat(),
                    customer_name=invoice.customer_name,
                    customer_gstin=invoice.customer_gstin,
                    payment_mode=invoice.payment_mode,
                    status=invoice.status,
                    subtotal=invoice.subtotal,
                    total_cgst=invoice.total_cgst,
                    total_sgst=invoice.total_sgst,
                    total_igst=invoice.total_igst,
                    total_gst=invoice.total_gst,
                    discount=invoice.discount,
                    grand_total=invoice.grand_total,
                    paid_amount=invoice.paid_amount,
                    due_amount=invoice.due_amount,
                )
                for invoice in qs.order_by("invoice_date", "created_at", "invoice_number")
            ]
            return self._csv_response("sales_summary.csv", rows)

        def run():
            totals = qs.aggregate(
                invoice_count=Count("id"),
                total_sales=Coalesce(Sum("grand_total"), ZERO),
                total_received=Coalesce(Sum("paid_amount"), ZERO),
                total_due=Coalesce(Sum("due_amount"), ZERO),
                total_cgst=Coalesce(Sum("total_cgst"), ZERO),
                total_sgst=Coalesce(Sum("total_sgst"), ZERO),
                total_igst=Coalesce(Sum("total_igst"), ZERO),
                total_gst=Coalesce(Sum("total_gst"), ZERO),
                total_discount=Coalesce(Sum("discount"), ZERO),
            )
            by_mode = list(
                qs.values("payment_mode")
                .annotate(invoice_count=Count("id"), total=Coalesce(Sum("grand_total"), ZERO))
                .order_by("payment_mode")
            )
            return OrderedDict(
                date_from=date_from.isoformat() if date_from else None,
                date_to=date_to.isoformat() if date_to else None,
                **totals,
                by_payment_mode=by_mode,
            )

        return Response(self._cached(request, "sales-summary", run))


class GstSummaryReportView(BaseReportView):
    """Taxable value and tax per GST slab, the shape GSTR-1 style filings ask for."""

    def get(self, request):
        date_from, date_to = self._date_range(request)

        def run():
            tax_field = DecimalField(max_digits=20, decimal_places=7)
            qs = InvoiceLine.objects.filter(invoice__in=self._invoices(date_from, date_to))
            rows = (
                qs.values("gst_percent")
                .annotate(
                    line_count=Count("id"),
                    taxable_value=Coalesce(Sum("amount"), ZERO),
                    cgst=Sum(ExpressionWrapper(F("cgst") * F("quantity"), output_field=tax_field)),
                    sgst=Sum(ExpressionWrapper(F("sgst") * F("quantity"), output_field=tax_field)),
                    igst=Sum(ExpressionWrapper(F("igst") * F("quantity"), output_field=tax_field)),
                )
                .order_by("gst_percent")
            )
            results = []
            for row in rows:
                cgst = quantize_money(row["cgst"] or 0)
                sgst = quantize_money(row["sgst"] or 0)
                igst = quantize_money(row["igst"] or 0)
                results.append(
                    OrderedDict(
                        gst_percent=row["gst_percent"],
                        line_count=row["line_count"],
                        taxable_value=row["taxable_value"],
                        cgst=cgst,
                        sgst=sgst,
                        igst=igst,
                        total_tax=cgst + sgst + igst,
                    )
                )
            return results

        rows = self._cached(request, "gst-summary", run)
        if request.query_params.get("format") == "csv":
            return self._csv_response("gst_summary.csv", rows)
        return Response({"results": rows})


class DashboardReportView(BaseReportView):
    def get(self, request):
        def run():
            today = timezone.localdate()
            today_totals = Invoice.objects.filter(invoice_date=today).aggregate(
                invoice_count=Count("id"),
                total=Coalesce(Sum("grand_total"), ZERO),
            )
            overall = Invoice.objects.aggregate(
                invoice_count=Count("id"),
                total_sales=Coalesce(Sum("grand_total"), ZERO),
                receivables=Coalesce(Sum("due_amount"), ZERO),
            )
            recent = list(
                Invoice.objects.order_by("-created_at").values(
                    "id", "invoice_number", "customer_name", "grand_total", "status", "invoice_date"
                )[:5]
            )
            return OrderedDict(
                today=OrderedDict(date=today.isoformat(), **today_totals),
                invoice_count=overall["invoice_count"],
                total_sales=overall["total_sales"],
                receivables=overall["receivables"],
                low_stock_count=low_stock_products().count(),
                recent_invoices=recent,
            )

        payload = self._cached(request, "dashboard", run)
        response = Response(payload)
        response["Cache-Control"] = f"private, max-age={self.cache_timeout}"
        return response


class PosExportView(APIView):
    """
    Daily feed for the mall's POS aggregator.

    Field names and codes follow the aggregator's import format. Machine
    clients authenticate with the `X-API-Key` header, people with an admin
    session.
    """

    permission_classes = [ExportApiKeyOrCapability]

    def _required_date(self, request, name):
        raw = request.query_params.get(name)
        if not raw:
            raise ValidationError({name: "This query parameter is required (YYYY-MM-DD)."})
        parsed = parse_date(raw) if ISO_DATE_PATTERN.match(raw) else None
        if parsed is None:
            raise ValidationError({name: "Invalid date format. Use YYYY-MM-DD."})
        return parsed

    def get(self, request):
        from_date = self._required_date(request, "from_date")
        to_date = self._required_date(request, "to_date")

        invoices = (
            Invoice.objects.filter(invoice_date__gte=from_date, invoice_date__lte=to_date)
            .prefetch_related("lines")
            .order_by("invoice_date", "created_at", "invoice_number")
        )
        transactions = [self._transaction(invoice) for invoice in invoices]
        logger.info("pos_export from=%s to=%s transactions=%s", from_date, to_date, len(transactions))

        return Response(
            {
                "success": True,
                "summary": self._summary(transactions, from_date, to_date),
                "transactions": transactions,
            }
        )

    def _transaction(self, invoice):
        items = [
            OrderedDict(
                ITEM_NO=index,
                ITEM_CODE=str(line.product_id) if line.product_id else "",
                ITEM_NAME=line.product_name or "",
                HSN_CODE=line.hsn_code or "",
                QUANTITY=line.quantity,
                UNIT=line.unit or "pcs",
                RATE=line.rate,
                AMOUNT=line.amount,
                GST_PERCENT=line.gst_percent,
                CGST=line.cgst,
                SGST=line.sgst,
                IGST=line.igst,
                DISCOUNT=line.discount,
            )
            for index, line in enumerate(invoice.lines.all(), start=1)
        ]
        return OrderedDict(
            LOCATION_CODE=invoice.location_code or "01",
            TERMINAL_ID=invoice.terminal_id or "01",
            SHIFT_NO=invoice.shift_no or "01",
            RCPT_NUM=invoice.invoice_number,
            RCPT_DT=_yyyymmdd(invoice.invoice_date),
            BUSINESS_DT=_yyyymmdd(invoice.business_date or invoice.invoice_date),
            RCPT_TM=pos_receipt_time(invoice),
            INV_AMT=invoice.grand_total,
            TAX_AMT=invoice.total_gst,
            RET_AMT=invoice.return_amount,
            TRAN_STATUS=invoice.transaction_status or Invoice.TransactionStatus.SALES,
            CUSTOMER_NAME=invoice.customer_name or "Walk-in",
            CUSTOMER_PHONE=invoice.customer_phone or "",
            CUSTOMER_GSTIN=invoice.customer_gstin or "",
            items=items,
            payments=[
                OrderedDict(
                    PAYMENT_NAME=pos_payment_name(invoice.payment_mode),
                    PAYMENT_AMT=invoice.paid_amount or invoice.grand_total,
                )
            ],
        )

    def _summary(self, transactions, from_date, to_date):
        total_amount = ZERO
        total_tax = ZERO
        sales = returns = 0
        for transaction in transactions:
            if transaction["TRAN_STATUS"] == Invoice.TransactionStatus.SALES:
                sales += 1
                total_amount += transaction["INV_AMT"]
                total_tax += transaction["TAX_AMT"]
            else:
                returns += 1
                total_amount -= transaction["INV_AMT"]
                total_tax -= transaction["TAX_AMT"]
        return OrderedDict(
            total_transactions=len(transactions),
            total_sales=sales,
            total_returns=returns,
            total_amount=total_amount,
            total_tax=total_tax,
            from_date=from_date.isoformat(),
            to_date=to_date.isoformat(),
            generated_at=timezone.now().isoformat(),
        )


def _yyyymmdd(value: date):
    return value.strftime("%Y%m%d")
