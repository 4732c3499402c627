from django.db.models import Q
from django.utils.dateparse import parse_date
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from common.audit import create_audit_log_from_request
from common.mixins import OutboxMutationMixin
from common.permissions import RoleCapabilityPermission
from common.utils import emit_outbox
from sales.models import Customer, Invoice, Payment
from sales.serializers import (
    CustomerSerializer,
    InvoiceCreateSerializer,
    InvoiceSerializer,
    PaymentCreateSerializer,
    PaymentSerializer,
    draft_to_representation,
)
from sales.services import apply_payment, commit_invoice


class CustomerViewSet(OutboxMutationMixin, viewsets.ModelViewSet):
    queryset = Customer.objects.all()
    serializer_class = CustomerSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "customers.view",
        "retrieve": "customers.view",
        "create": "customers.create",
        "update": "customers.manage",
        "partial_update": "customers.manage",
        "destroy": "customers.manage",
    }
    outbox_entity = "customer"
    audit_entity = "customer"

    def get_queryset(self):
        qs = super().get_queryset()
        search = self.request.query_params.get("search")
        if search:
            qs = qs.filter(Q(name__icontains=search) | Q(phone__icontains=search))
        return qs


class InvoiceViewSet(mixins.CreateModelMixin, viewsets.ReadOnlyModelViewSet):
    queryset = Invoice.objects.select_related("customer", "device", "user").prefetch_related("lines", "payments")
    serializer_class = InvoiceSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "invoices.view",
        "retrieve": "invoices.view",
        "create": "billing.access",
        "preview": "billing.access",
        "payments": "payments.record",
    }

    def get_serializer_class(self):
        if self.action in {"create", "preview"}:
            return InvoiceCreateSerializer
        return super().get_serializer_class()

    def get_queryset(self):
        qs = super().get_queryset()
        params = self.request.query_params

        status_filter = params.get("status")
        customer_id = params.get("customer")
        date_from = parse_date(params.get("date_from") or "")
        date_to = parse_date(params.get("date_to") or "")
        search = params.get("search")

        if status_filter:
            qs = qs.filter(status=status_filter)
        if customer_id:
            qs = qs.filter(customer_id=customer_id)
        if date_from:
            qs = qs.filter(invoice_date__gte=date_from)
        if date_to:
            qs = qs.filter(invoice_date__lte=date_to)
        if search:
            qs = qs.filter(Q(invoice_number__icontains=search) | Q(customer_name__icontains=search))
        return qs

    def create(self, request, *args, **kwargs):
        serializer = InvoiceCreateSerializer(data=request.data, context={"request": request})
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        invoice, created = commit_invoice(
            data["draft"],
            user=request.user,
            device=data.get("device"),
            event_id=data.get("event_id"),
        )
        invoice_payload = InvoiceSerializer(invoice).data
        if not created:
            return Response(invoice_payload, status=status.HTTP_200_OK)

        emit_outbox(entity="invoice", entity_id=invoice.id, op="upsert", payload=invoice_payload)
        create_audit_log_from_request(
            request,
            action="invoice.create",
            entity="invoice",
            entity_id=invoice.id,
            after_snapshot=invoice_payload,
            event_id=invoice.event_id,
            device=invoice.device,
        )
        return Response(invoice_payload, status=status.HTTP_201_CREATED)

    @action(detail=False, methods=["post"], url_path="preview")
    def preview(self, request):
        serializer = InvoiceCreateSerializer(data=request.data, context={"request": request})
        serializer.is_valid(raise_exception=True)
        return Response(draft_to_representation(serializer.validated_data["draft"]))

    @action(detail=True, methods=["post"], url_path="payments")
    def payments(self, request, pk=None):
        invoice = self.get_object()
        serializer = PaymentCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        before_snapshot = {
            "paid_amount": str(invoice.paid_amount),
            "due_amount": str(invoice.due_amount),
            "status": invoice.status,
        }

        payment, created = apply_payment(
            invoice,
            data["amount"],
            data["mode"],
            paid_at=data.get("paid_at"),
            notes=data.get("notes", ""),
            event_id=data.get("event_id"),
        )
        invoice = Invoice.objects.prefetch_related("lines", "payments").get(pk=invoice.pk)
        payment_payload = PaymentSerializer(payment).data
        invoice_payload = InvoiceSerializer(invoice).data
        if not created:
            return Response({"payment": payment_payload, "invoice": invoice_payload}, status=status.HTTP_200_OK)

        emit_outbox(entity="payment", entity_id=payment.id, op="upsert", payload=payment_payload)
        emit_outbox(entity="invoice", entity_id=invoice.id, op="upsert", payload=invoice_payload)
        create_audit_log_from_request(
            request,
            action="payment.create",
            entity="invoice",
            entity_id=invoice.id,
            before_snapshot=before_snapshot,
            after_snapshot=payment_payload,
            event_id=payment.event_id,
        )
        return Response({"payment": payment_payload, "invoice": invoice_payload}, status=status.HTTP_201_CREATED)


class PaymentViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = Payment.objects.select_related("invoice")
    serializer_class = PaymentSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "invoices.view",
        "retrieve": "invoices.view",
    }

    def get_queryset(self):
        qs = super().get_queryset().order_by("-paid_at")
        invoice_id = self.request.query_params.get("invoice")
        mode = self.request.query_params.get("mode")
        if invoice_id:
            qs = qs.filter(invoice_id=invoice_id)
        if mode:
            qs = qs.filter(mode=mode)
        return qs
