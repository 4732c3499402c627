from rest_framework import serializers

from inventory.models import Product, StockMove


class ProductSerializer(serializers.ModelSerializer):
    is_low_stock = serializers.BooleanField(read_only=True)

    class Meta:
        model = Product
        fields = [
            "id",
            "name",
            "sku",
            "hsn_code",
            "description",
            "gst_rate",
            "purchase_price",
            "selling_price",
            "stock",
            "low_stock_threshold",
            "unit",
            "is_active",
            "is_low_stock",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["id", "created_at", "updated_at"]

    def validate_sku(self, value):
        if not value:
            return None
        value = value.strip()
        queryset = Product.objects.filter(sku=value)
        if self.instance is not None:
            queryset = queryset.exclude(id=self.instance.id)
        if queryset.exists():
            raise serializers.ValidationError("A product with this SKU already exists.")
        return value

    def validate_gst_rate(self, value):
        if value < 0 or value > 100:
            raise serializers.ValidationError("GST rate must be between 0 and 100.")
        return value

    def validate(self, attrs):
        for field in ("selling_price", "purchase_price"):
            value = attrs.get(field)
            if value is not None and value < 0:
                raise serializers.ValidationError({field: "Price cannot be negative."})
        return attrs


class StockMoveSerializer(serializers.ModelSerializer):
    class Meta:
        model = StockMove
        fields = [
            "id",
            "product",
            "quantity",
            "stock_after",
            "reason",
            "source_ref_type",
            "source_ref_id",
            "event_id",
            "device",
            "created_at",
        ]
        read_only_fields = fields


class StockAdjustmentSerializer(serializers.Serializer):
    delta = serializers.DecimalField(max_digits=12, decimal_places=3)

    def validate_delta(self, value):
        if value == 0:
            raise serializers.ValidationError("Adjustment must be non-zero.")
        return value
