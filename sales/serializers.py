from django.core.exceptions import ValidationError as DjangoValidationError
from rest_framework import serializers

from core.models import Device
from inventory.models import Product
from sales.models import Customer, Invoice, InvoiceLine, Payment, PaymentMode, gstin_validator, state_code_validator
from sales.services import build_invoice_draft


def _normalize_gstin(value):
    if not value:
        return value
    value = value.strip().upper()
    try:
        gstin_validator(value)
    except DjangoValidationError as exc:
        raise serializers.ValidationError(exc.messages) from exc
    return value


def _normalize_state_code(value):
    if not value:
        return value
    value = value.strip()
    try:
        state_code_validator(value)
    except DjangoValidationError as exc:
        raise serializers.ValidationError(exc.messages) from exc
    return value


class CustomerSerializer(serializers.ModelSerializer):
    gstin = serializers.CharField(max_length=15, required=False, allow_blank=True, allow_null=True)
    state_code = serializers.CharField(max_length=2, required=False, allow_blank=True, allow_null=True)

    class Meta:
        model = Customer
        fields = [
            "id",
            "name",
            "phone",
            "email",
            "gstin",
            "address",
            "state_code",
            "state_name",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["id", "created_at", "updated_at"]

    def validate_name(self, value):
        value = value.strip()
        if not value:
            raise serializers.ValidationError("Customer name is required.")
        return value

    def validate_gstin(self, value):
        return _normalize_gstin(value)

    def validate_state_code(self, value):
        return _normalize_state_code(value)


class InvoiceLineSerializer(serializers.ModelSerializer):
    class Meta:
        model = InvoiceLine
        fields = [
            "id",
            "position",
            "product",
            "product_name",
            "hsn_code",
            "quantity",
            "unit",
            "rate",
            "gst_percent",
            "discount",
            "amount",
            "cgst",
            "sgst",
            "igst",
        ]
        read_only_fields = fields


class PaymentSerializer(serializers.ModelSerializer):
    invoice_number = serializers.CharField(source="invoice.invoice_number", read_only=True)

    class Meta:
        model = Payment
        fields = [
            "id",
            "invoice",
            "invoice_number",
            "mode",
            "amount",
            "paid_at",
            "notes",
            "event_id",
            "device",
            "created_at",
        ]
        read_only_fields = fields


class InvoiceSerializer(serializers.ModelSerializer):
    lines = InvoiceLineSerializer(many=True, read_only=True)
    payments = PaymentSerializer(many=True, read_only=True)

    class Meta:
        model = Invoice
        fields = [
            "id",
            "invoice_number",
            "customer",
            "customer_name",
            "customer_phone",
            "customer_gstin",
            "customer_address",
            "customer_state_code",
            "is_inter_state",
            "subtotal",
            "total_cgst",
            "total_sgst",
            "total_igst",
            "total_gst",
            "discount",
            "round_off",
            "grand_total",
            "paid_amount",
            "due_amount",
            "change_returned",
            "payment_mode",
            "status",
            "notes",
            "invoice_date",
            "due_date",
            "receipt_time",
            "business_date",
            "transaction_status",
            "location_code",
            "terminal_id",
            "shift_no",
            "device",
            "user",
            "event_id",
            "created_at",
            "updated_at",
            "lines",
            "payments",
        ]
        read_only_fields = fields


class InvoiceItemInputSerializer(serializers.Serializer):
    product = serializers.PrimaryKeyRelatedField(
        queryset=Product.objects.filter(is_active=True), required=False, allow_null=True
    )
    product_name = serializers.CharField(max_length=255, required=False, allow_blank=True)
    hsn_code = serializers.CharField(max_length=16, required=False, allow_blank=True)
    quantity = serializers.DecimalField(max_digits=12, decimal_places=3)
    unit = serializers.CharField(max_length=16, required=False, allow_blank=True)
    rate = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0, required=False)
    gst_percent = serializers.DecimalField(
        max_digits=5, decimal_places=2, min_value=0, max_value=100, required=False
    )
    discount = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0, required=False, default=0)

    def validate_quantity(self, value):
        if value <= 0:
            raise serializers.ValidationError("Quantity must be greater than zero.")
        return value


class InvoiceCreateSerializer(serializers.Serializer):
    """
    Save-bill input.

    Prices the cart during validation; the resulting draft is available as
    `validated_data["draft"]` for previews and is committed by the view.
    """

    customer = serializers.PrimaryKeyRelatedField(queryset=Customer.objects.all(), required=False, allow_null=True)
    customer_name = serializers.CharField(max_length=255, required=False, allow_blank=True)
    customer_phone = serializers.CharField(max_length=64, required=False, allow_blank=True)
    customer_gstin = serializers.CharField(max_length=15, required=False, allow_blank=True)
    customer_address = serializers.CharField(required=False, allow_blank=True)
    customer_state_code = serializers.CharField(max_length=2, required=False, allow_blank=True)
    items = InvoiceItemInputSerializer(many=True, allow_empty=True)
    discount = serializers.DecimalField(max_digits=12, decimal_places=2, required=False, default=0)
    payment_mode = serializers.ChoiceField(choices=PaymentMode.choices)
    paid_amount = serializers.DecimalField(max_digits=12, decimal_places=2, required=False, allow_null=True)
    notes = serializers.CharField(required=False, allow_blank=True)
    invoice_date = serializers.DateField(required=False)
    due_date = serializers.DateField(required=False, allow_null=True)
    receipt_time = serializers.RegexField(r"^\d{6}$", required=False, allow_blank=True)
    device = serializers.PrimaryKeyRelatedField(
        queryset=Device.objects.filter(is_active=True), required=False, allow_null=True
    )
    event_id = serializers.UUIDField(required=False, allow_null=True)

    def validate_customer_gstin(self, value):
        return _normalize_gstin(value)

    def validate_customer_state_code(self, value):
        return _normalize_state_code(value)

    def validate(self, attrs):
        attrs["draft"] = build_invoice_draft(
            items=attrs.get("items") or [],
            payment_mode=attrs["payment_mode"],
            discount=attrs.get("discount") or 0,
            paid_amount=attrs.get("paid_amount"),
            customer=attrs.get("customer"),
            customer_details={
                "name": attrs.get("customer_name"),
                "phone": attrs.get("customer_phone"),
                "gstin": attrs.get("customer_gstin"),
                "address": attrs.get("customer_address"),
                "state_code": attrs.get("customer_state_code"),
            },
            notes=attrs.get("notes", ""),
            invoice_date=attrs.get("invoice_date"),
            due_date=attrs.get("due_date"),
            receipt_time=attrs.get("receipt_time", ""),
        )
        return attrs


def draft_to_representation(draft):
    """Shape an uncommitted draft like a saved invoice, for the preview endpoint."""
    totals = draft.totals
    return {
        "customer": str(draft.customer.id) if draft.customer is not None else None,
        "customer_name": draft.snapshot.name,
        "customer_state_code": draft.snapshot.state_code,
        "is_inter_state": draft.inter_state,
        "subtotal": str(totals.subtotal),
        "total_cgst": str(totals.total_cgst),
        "total_sgst": str(totals.total_sgst),
        "total_igst": str(totals.total_igst),
        "total_gst": str(totals.total_gst),
        "discount": str(totals.discount),
        "round_off": str(totals.round_off),
        "grand_total": str(totals.grand_total),
        "paid_amount": str(draft.payment.paid_amount),
        "due_amount": str(draft.payment.due_amount),
        "change_returned": str(draft.payment.change_returned),
        "payment_mode": draft.payment_mode,
        "status": draft.payment.status,
        "lines": [
            {
                "position": line.position,
                "product": str(line.product.id) if line.product is not None else None,
                "product_name": line.product_name,
                "hsn_code": line.hsn_code,
                "quantity": str(line.amounts.quantity),
                "unit": line.unit,
                "rate": str(line.amounts.rate),
                "gst_percent": str(line.amounts.gst_percent),
                "discount": str(line.discount),
                "amount": str(line.amounts.amount),
                "cgst": str(line.amounts.unit_tax.cgst),
                "sgst": str(line.amounts.unit_tax.sgst),
                "igst": str(line.amounts.unit_tax.igst),
            }
            for line in draft.lines
        ],
    }


class PaymentCreateSerializer(serializers.Serializer):
    mode = serializers.ChoiceField(choices=Payment.Mode.choices)
    amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    paid_at = serializers.DateTimeField(required=False)
    notes = serializers.CharField(required=False, allow_blank=True)
    event_id = serializers.UUIDField(required=False, allow_null=True)

    def validate_amount(self, value):
        if value <= 0:
            raise serializers.ValidationError("Payment amount must be greater than zero.")
        return value
