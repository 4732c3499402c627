import uuid

import django.core.validators
import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models
from django.db.models import Q

PAYMENT_MODE_CHOICES = [("cash", "Cash"), ("upi", "UPI"), ("card", "Card"), ("credit", "Credit")]


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        ("core", "0001_initial"),
        ("inventory", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="Customer",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("name", models.CharField(max_length=255)),
                ("phone", models.CharField(blank=True, max_length=64, null=True)),
                ("email", models.EmailField(blank=True, max_length=254, null=True)),
                (
                    "gstin",
                    models.CharField(
                        blank=True,
                        max_length=15,
                        null=True,
                        validators=[
                            django.core.validators.RegexValidator(
                                message="GSTIN must be 15 uppercase alphanumeric characters.",
                                regex="^[0-9A-Z]{15}$",
                            )
                        ],
                    ),
                ),
                ("address", models.TextField(blank=True, null=True)),
                (
                    "state_code",
                    models.CharField(
                        blank=True,
                        max_length=2,
                        null=True,
                        validators=[
                            django.core.validators.RegexValidator(
                                message="State code must be two digits.",
                                regex="^[0-9]{2}$",
                            )
                        ],
                    ),
                ),
                ("state_name", models.CharField(blank=True, max_length=64, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "ordering": ["name"],
                "indexes": [
                    models.Index(fields=["phone"], name="customer_phone_idx"),
                    models.Index(fields=["name"], name="customer_name_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="Invoice",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("invoice_number", models.CharField(max_length=64, unique=True)),
                ("customer_name", models.CharField(max_length=255)),
                ("customer_phone", models.CharField(blank=True, default="", max_length=64)),
                ("customer_gstin", models.CharField(blank=True, default="", max_length=15)),
                ("customer_address", models.TextField(blank=True, default="")),
                ("customer_state_code", models.CharField(blank=True, default="", max_length=2)),
                ("is_inter_state", models.BooleanField(default=False)),
                ("subtotal", models.DecimalField(decimal_places=2, max_digits=12)),
                ("total_cgst", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ("total_sgst", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ("total_igst", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ("total_gst", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ("discount", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ("round_off", models.DecimalField(decimal_places=2, default=0, max_digits=6)),
                ("grand_total", models.DecimalField(decimal_places=2, max_digits=12)),
                ("paid_amount", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ("due_amount", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ("change_returned", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ("payment_mode", models.CharField(choices=PAYMENT_MODE_CHOICES, max_length=16)),
                (
                    "status",
                    models.CharField(
                        choices=[("paid", "Paid"), ("partial", "Partial"), ("unpaid", "Unpaid")],
                        max_length=16,
                    ),
                ),
                ("notes", models.TextField(blank=True, default="")),
                ("invoice_date", models.DateField()),
                ("due_date", models.DateField(blank=True, null=True)),
                ("receipt_time", models.CharField(blank=True, default="", max_length=6)),
                ("business_date", models.DateField(blank=True, null=True)),
                (
                    "transaction_status",
                    models.CharField(
                        choices=[("SALES", "Sales"), ("RETURN", "Return")],
                        default="SALES",
                        max_length=16,
                    ),
                ),
                ("return_amount", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ("location_code", models.CharField(blank=True, default="", max_length=16)),
                ("terminal_id", models.CharField(blank=True, default="", max_length=16)),
                ("shift_no", models.CharField(blank=True, default="", max_length=16)),
                ("event_id", models.UUIDField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "customer",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="invoices",
                        to="sales.customer",
                    ),
                ),
                (
                    "device",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        to="core.device",
                    ),
                ),
                (
                    "user",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["invoice_date", "created_at"], name="invoice_date_created_idx"),
                    models.Index(fields=["status", "invoice_date"], name="invoice_status_date_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        condition=Q(event_id__isnull=False),
                        fields=("event_id", "device"),
                        name="uniq_invoice_event_device",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="InvoiceLine",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("position", models.PositiveIntegerField()),
                ("product_name", models.CharField(max_length=255)),
                ("hsn_code", models.CharField(blank=True, default="", max_length=16)),
                ("quantity", models.DecimalField(decimal_places=3, max_digits=12)),
                ("unit", models.CharField(blank=True, default="Pcs", max_length=16)),
                ("rate", models.DecimalField(decimal_places=2, max_digits=12)),
                ("gst_percent", models.DecimalField(decimal_places=2, max_digits=5)),
                ("discount", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ("amount", models.DecimalField(decimal_places=2, max_digits=12)),
                ("cgst", models.DecimalField(decimal_places=4, default=0, max_digits=12)),
                ("sgst", models.DecimalField(decimal_places=4, default=0, max_digits=12)),
                ("igst", models.DecimalField(decimal_places=4, default=0, max_digits=12)),
                (
                    "invoice",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="lines",
                        to="sales.invoice",
                    ),
                ),
                (
                    "product",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        to="inventory.product",
                    ),
                ),
            ],
            options={
                "ordering": ["invoice", "position"],
                "indexes": [
                    models.Index(fields=["invoice"], name="invoiceline_invoice_idx"),
                    models.Index(fields=["product"], name="invoiceline_product_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="Payment",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                (
                    "mode",
                    models.CharField(choices=[("cash", "Cash"), ("upi", "UPI"), ("card", "Card")], max_length=16),
                ),
                ("amount", models.DecimalField(decimal_places=2, max_digits=12)),
                ("paid_at", models.DateTimeField()),
                ("notes", models.TextField(blank=True, default="")),
                ("event_id", models.UUIDField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "device",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        to="core.device",
                    ),
                ),
                (
                    "invoice",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="payments",
                        to="sales.invoice",
                    ),
                ),
            ],
            options={
                "ordering": ["paid_at"],
                "indexes": [
                    models.Index(fields=["invoice", "paid_at"], name="payment_invoice_paid_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        condition=Q(event_id__isnull=False),
                        fields=("event_id", "device"),
                        name="uniq_payment_event_device",
                    ),
                ],
            },
        ),
    ]
