import logging
from decimal import Decimal

from django.conf import settings
from django.db import transaction
from django.db.models import F
from django.utils import timezone

from inventory.models import Product, StockMove

logger = logging.getLogger(__name__)

SALE_SOURCE_REF_TYPE = "sales.invoice_line"


def allows_negative_stock():
    return getattr(settings, "INVENTORY_ALLOW_NEGATIVE_STOCK", False)


def apply_sale_quantity(current_stock, quantity, *, allow_negative=None):
    """
    Stock left after selling `quantity` units.

    An oversell is never rejected. With negative stock disallowed (the default)
    the result is clamped to zero; otherwise the shortfall is kept as a
    negative balance so it can be reconciled later.

    The clamp never raises stock: a balance already below zero (left by a
    manual adjustment) is kept as is rather than reset to zero by a sale.
    """
    if allow_negative is None:
        allow_negative = allows_negative_stock()
    current_stock = Decimal(current_stock)
    remaining = current_stock - Decimal(quantity)
    if allow_negative:
        return remaining
    return max(remaining, min(current_stock, Decimal("0")))


@transaction.atomic
def decrement_stock_for_sale(product_id, quantity, *, source_ref_id, event_id=None, device=None):
    """
    Decrement a product's stock for one sold invoice line.

    Idempotent per (line, product): if a sale move already exists for the line
    the stock is left untouched and None is returned.
    """
    if StockMove.objects.filter(
        reason=StockMove.Reason.SALE,
        source_ref_type=SALE_SOURCE_REF_TYPE,
        source_ref_id=source_ref_id,
        product_id=product_id,
    ).exists():
        logger.info("stock_decrement_skipped_duplicate", extra={"product_id": product_id})
        return None

    product = Product.objects.select_for_update().filter(id=product_id).first()
    if product is None:
        logger.warning("stock_decrement_missing_product", extra={"product_id": product_id})
        return None

    quantity = Decimal(quantity)
    new_stock = apply_sale_quantity(product.stock, quantity)
    if new_stock != product.stock - quantity:
        logger.warning(
            "stock_oversold_clamped requested=%s available=%s",
            quantity,
            product.stock,
            extra={"product_id": product.id},
        )

    Product.objects.filter(id=product.id).update(stock=new_stock, updated_at=timezone.now())
    move = StockMove.objects.create(
        product=product,
        quantity=-quantity,
        stock_after=new_stock,
        reason=StockMove.Reason.SALE,
        source_ref_type=SALE_SOURCE_REF_TYPE,
        source_ref_id=source_ref_id,
        event_id=event_id,
        device=device,
    )
    logger.info("stock_decremented new_stock=%s", new_stock, extra={"product_id": product.id})
    return move


@transaction.atomic
def adjust_stock(product, delta, *, device=None, event_id=None):
    """Manual correction of a product's stock (positive or negative delta)."""
    delta = Decimal(delta)
    Product.objects.filter(id=product.id).update(stock=F("stock") + delta, updated_at=timezone.now())
    product.refresh_from_db(fields=["stock", "updated_at"])
    return StockMove.objects.create(
        product=product,
        quantity=delta,
        stock_after=product.stock,
        reason=StockMove.Reason.ADJUSTMENT,
        event_id=event_id,
        device=device,
    )


def low_stock_products(queryset=None):
    queryset = Product.objects.filter(is_active=True) if queryset is None else queryset
    return queryset.filter(stock__lte=F("low_stock_threshold")).order_by("stock", "name")
