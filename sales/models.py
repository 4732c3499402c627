import uuid

from django.core.validators import RegexValidator
from django.db import models
from django.db.models import Q

from core.models import Device, User
from inventory.models import Product

gstin_validator = RegexValidator(
    regex=r"^[0-9A-Z]{15}$",
    message="GSTIN must be 15 uppercase alphanumeric characters.",
)
state_code_validator = RegexValidator(regex=r"^[0-9]{2}$", message="State code must be two digits.")


class PaymentMode(models.TextChoices):
    CASH = "cash", "Cash"
    UPI = "upi", "UPI"
    CARD = "card", "Card"
    CREDIT = "credit", "Credit"


class Customer(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=255)
    phone = models.CharField(max_length=64, null=True, blank=True)
    email = models.EmailField(null=True, blank=True)
    gstin = models.CharField(max_length=15, null=True, blank=True, validators=[gstin_validator])
    address = models.TextField(null=True, blank=True)
    state_code = models.CharField(max_length=2, null=True, blank=True, validators=[state_code_validator])
    state_name = models.CharField(max_length=64, null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]
        indexes = [
            models.Index(fields=["phone"], name="customer_phone_idx"),
            models.Index(fields=["name"], name="customer_name_idx"),
        ]

    def __str__(self):
        return self.name


class Invoice(models.Model):
    class Status(models.TextChoices):
        PAID = "paid", "Paid"
        PARTIAL = "partial", "Partial"
        UNPAID = "unpaid", "Unpaid"

    class TransactionStatus(models.TextChoices):
        SALES = "SALES", "Sales"
        RETURN = "RETURN", "Return"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    invoice_number = models.CharField(max_length=64, unique=True)
    customer = models.ForeignKey(Customer, on_delete=models.SET_NULL, null=True, blank=True, related_name="invoices")
    customer_name = models.CharField(max_length=255)
    customer_phone = models.CharField(max_length=64, blank=True, default="")
    customer_gstin = models.CharField(max_length=15, blank=True, default="")
    customer_address = models.TextField(blank=True, default="")
    customer_state_code = models.CharField(max_length=2, blank=True, default="")
    is_inter_state = models.BooleanField(default=False)
    subtotal = models.DecimalField(max_digits=12, decimal_places=2)
    total_cgst = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    total_sgst = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    total_igst = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    total_gst = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    discount = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    round_off = models.DecimalField(max_digits=6, decimal_places=2, default=0)
    grand_total = models.DecimalField(max_digits=12, decimal_places=2)
    paid_amount = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    due_amount = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    change_returned = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    payment_mode = models.CharField(max_length=16, choices=PaymentMode.choices)
    status = models.CharField(max_length=16, choices=Status.choices)
    notes = models.TextField(blank=True, default="")
    invoice_date = models.DateField()
    due_date = models.DateField(null=True, blank=True)
    receipt_time = models.CharField(max_length=6, blank=True, default="")
    business_date = models.DateField(null=True, blank=True)
    transaction_status = models.CharField(
        max_length=16, choices=TransactionStatus.choices, default=TransactionStatus.SALES
    )
    return_amount = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    location_code = models.CharField(max_length=16, blank=True, default="")
    terminal_id = models.CharField(max_length=16, blank=True, default="")
    shift_no = models.CharField(max_length=16, blank=True, default="")
    device = models.ForeignKey(Device, on_delete=models.PROTECT, null=True, blank=True)
    user = models.ForeignKey(User, on_delete=models.PROTECT, null=True, blank=True)
    event_id = models.UUIDField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["invoice_date", "created_at"], name="invoice_date_created_idx"),
            models.Index(fields=["status", "invoice_date"], name="invoice_status_date_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["event_id", "device"],
                condition=Q(event_id__isnull=False),
                name="uniq_invoice_event_device",
            ),
        ]

    def __str__(self):
        return self.invoice_number


class InvoiceLine(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    invoice = models.ForeignKey(Invoice, on_delete=models.CASCADE, related_name="lines")
    position = models.PositiveIntegerField()
    product = models.ForeignKey(Product, on_delete=models.SET_NULL, null=True, blank=True)
    product_name = models.CharField(max_length=255)
    hsn_code = models.CharField(max_length=16, blank=True, default="")
    quantity = models.DecimalField(max_digits=12, decimal_places=3)
    unit = models.CharField(max_length=16, blank=True, default="Pcs")
    rate = models.DecimalField(max_digits=12, decimal_places=2)
    gst_percent = models.DecimalField(max_digits=5, decimal_places=2)
    discount = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    # Per-unit tax components; totals are unit tax x quantity.
    cgst = models.DecimalField(max_digits=12, decimal_places=4, default=0)
    sgst = models.DecimalField(max_digits=12, decimal_places=4, default=0)
    igst = models.DecimalField(max_digits=12, decimal_places=4, default=0)

    class Meta:
        ordering = ["invoice", "position"]
        indexes = [
            models.Index(fields=["invoice"], name="invoiceline_invoice_idx"),
            models.Index(fields=["product"], name="invoiceline_product_idx"),
        ]


class Payment(models.Model):
    class Mode(models.TextChoices):
        CASH = "cash", "Cash"
        UPI = "upi", "UPI"
        CARD = "card", "Card"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    invoice = models.ForeignKey(Invoice, on_delete=models.PROTECT, related_name="payments")
    mode = models.CharField(max_length=16, choices=Mode.choices)
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    paid_at = models.DateTimeField()
    notes = models.TextField(blank=True, default="")
    event_id = models.UUIDField(null=True, blank=True)
    device = models.ForeignKey(Device, on_delete=models.PROTECT, null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["paid_at"]
        indexes = [
            models.Index(fields=["invoice", "paid_at"], name="payment_invoice_paid_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["event_id", "device"],
                condition=Q(event_id__isnull=False),
                name="uniq_payment_event_device",
            ),
        ]
