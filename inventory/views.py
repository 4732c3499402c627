from django.db.models import Q
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from common.mixins import OutboxMutationMixin
from common.permissions import RoleCapabilityPermission
from inventory.models import Product
from inventory.serializers import ProductSerializer, StockAdjustmentSerializer, StockMoveSerializer
from inventory.services import adjust_stock, low_stock_products


class ProductViewSet(OutboxMutationMixin, viewsets.ModelViewSet):
    queryset = Product.objects.all()
    serializer_class = ProductSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "catalog.view",
        "retrieve": "catalog.view",
        "low_stock": "catalog.view",
        "stock_moves": "catalog.view",
        "create": "catalog.manage",
        "update": "catalog.manage",
        "partial_update": "catalog.manage",
        "destroy": "catalog.manage",
        "adjust_stock": "catalog.manage",
    }
    outbox_entity = "product"
    audit_entity = "product"

    def get_queryset(self):
        qs = super().get_queryset()
        search = self.request.query_params.get("search")
        active = self.request.query_params.get("active")
        if search:
            qs = qs.filter(Q(name__icontains=search) | Q(sku__icontains=search) | Q(hsn_code__startswith=search))
        if active in {"true", "false"}:
            qs = qs.filter(is_active=active == "true")
        return qs

    def perform_destroy(self, instance):
        if not instance.stock_moves.exists():
            super().perform_destroy(instance)
            return

        # Sold products keep their ledger; retire them instead.
        before_snapshot = self.get_serializer(instance).data
        instance.is_active = False
        instance.save(update_fields=["is_active", "updated_at"])
        snapshot = self.get_serializer(instance).data
        self._emit(instance, "upsert", snapshot)
        self._audit(
            action="product.deactivate",
            instance=instance,
            before_snapshot=before_snapshot,
            after_snapshot=snapshot,
        )

    @action(detail=False, methods=["get"], url_path="low-stock", pagination_class=None)
    def low_stock(self, request):
        products = low_stock_products(self.get_queryset().filter(is_active=True))
        return Response(self.get_serializer(products, many=True).data)

    @action(detail=True, methods=["get"], url_path="stock-moves")
    def stock_moves(self, request, pk=None):
        product = self.get_object()
        moves = product.stock_moves.order_by("-created_at")
        page = self.paginate_queryset(moves)
        if page is not None:
            return self.get_paginated_response(StockMoveSerializer(page, many=True).data)
        return Response(StockMoveSerializer(moves, many=True).data)

    @action(detail=True, methods=["post"], url_path="adjust-stock")
    def adjust_stock(self, request, pk=None):
        product = self.get_object()
        serializer = StockAdjustmentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        before_snapshot = {"stock": str(product.stock)}

        move = adjust_stock(product, serializer.validated_data["delta"])
        snapshot = self.get_serializer(product).data
        self._emit(product, "upsert", snapshot)
        self._audit(
            action="product.stock_adjust",
            instance=product,
            before_snapshot=before_snapshot,
            after_snapshot=snapshot,
        )
        return Response(StockMoveSerializer(move).data, status=status.HTTP_201_CREATED)
