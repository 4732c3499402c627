import uuid

import django.core.validators
import django.db.models.deletion
from django.db import migrations, models
from django.db.models import Q


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        ("core", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="Product",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("name", models.CharField(max_length=255)),
                ("sku", models.CharField(blank=True, max_length=64, null=True)),
                ("hsn_code", models.CharField(blank=True, default="", max_length=16)),
                ("description", models.TextField(blank=True, default="")),
                (
                    "gst_rate",
                    models.DecimalField(
                        decimal_places=2,
                        default=0,
                        max_digits=5,
                        validators=[
                            django.core.validators.MinValueValidator(0),
                            django.core.validators.MaxValueValidator(100),
                        ],
                    ),
                ),
                ("purchase_price", models.DecimalField(blank=True, decimal_places=2, max_digits=12, null=True)),
                ("selling_price", models.DecimalField(decimal_places=2, max_digits=12)),
                ("stock", models.DecimalField(decimal_places=3, default=0, max_digits=12)),
                ("low_stock_threshold", models.DecimalField(decimal_places=3, default=10, max_digits=12)),
                ("unit", models.CharField(default="Pcs", max_length=16)),
                ("is_active", models.BooleanField(default=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "ordering": ["name"],
                "indexes": [
                    models.Index(fields=["name"], name="product_name_idx"),
                    models.Index(fields=["is_active"], name="product_active_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        condition=Q(sku__isnull=False) & ~Q(sku=""),
                        fields=("sku",),
                        name="uniq_product_sku_when_present",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="StockMove",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("quantity", models.DecimalField(decimal_places=3, max_digits=12)),
                ("stock_after", models.DecimalField(decimal_places=3, max_digits=12)),
                (
                    "reason",
                    models.CharField(choices=[("sale", "Sale"), ("adjustment", "Adjustment")], max_length=32),
                ),
                ("source_ref_type", models.CharField(blank=True, max_length=64, null=True)),
                ("source_ref_id", models.UUIDField(blank=True, null=True)),
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
                    "product",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="stock_moves",
                        to="inventory.product",
                    ),
                ),
            ],
            options={
                "indexes": [
                    models.Index(fields=["product", "created_at"], name="stockmove_product_created_idx"),
                    models.Index(fields=["source_ref_id", "source_ref_type"], name="stockmove_source_ref_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        condition=Q(reason="sale"),
                        fields=("source_ref_type", "source_ref_id", "product"),
                        name="uniq_sale_move_per_line_product",
                    ),
                ],
            },
        ),
    ]
