import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from django.conf import settings
from django.db import transaction
from django.db.models import F
from django.utils import timezone
from rest_framework.exceptions import ValidationError

from common.exceptions import Conflict
from core.models import ShopSettings
from inventory.services import decrement_stock_for_sale
from sales import gst
from sales.models import Invoice, InvoiceLine, Payment, PaymentMode

logger = logging.getLogger(__name__)

WALK_IN_CUSTOMER_NAME = "Walk-in Customer"


class InvoiceNumberAllocationError(Conflict):
    default_detail = "Could not allocate a free invoice number. Please retry."


@dataclass(frozen=True)
class CustomerSnapshot:
    name: str
    phone: str = ""
    gstin: str = ""
    address: str = ""
    state_code: str = ""


@dataclass(frozen=True)
class LineDraft:
    position: int
    product: object
    product_name: str
    hsn_code: str
    unit: str
    discount: Decimal
    amounts: gst.LineAmounts


@dataclass(frozen=True)
class InvoiceDraft:
    shop: ShopSettings
    customer: object
    snapshot: CustomerSnapshot
    inter_state: bool
    lines: list
    totals: gst.InvoiceTotals
    payment_mode: str
    payment: gst.PaymentState
    invoice_date: date
    due_date: date = None
    receipt_time: str = ""
    notes: str = ""


def _snapshot_for(customer, customer_details):
    if customer is not None:
        return CustomerSnapshot(
            name=customer.name,
            phone=customer.phone or "",
            gstin=customer.gstin or "",
            address=customer.address or "",
            state_code=customer.state_code or "",
        )

    details = {key: value for key, value in (customer_details or {}).items() if value not in (None, "")}
    if not details:
        return CustomerSnapshot(name=WALK_IN_CUSTOMER_NAME)
    name = (details.get("name") or "").strip()
    if not name:
        raise ValidationError({"customer_name": "Customer name is required for a manually entered customer."})
    return CustomerSnapshot(
        name=name,
        phone=details.get("phone", ""),
        gstin=details.get("gstin", ""),
        address=details.get("address", ""),
        state_code=details.get("state_code", ""),
    )


def _build_line(position, item, inter_state):
    product = item.get("product")
    product_name = item.get("product_name") or (product.name if product is not None else "")
    if not product_name:
        raise ValidationError({"items": f"Line {position}: product_name is required for a manual line."})

    rate = item.get("rate")
    if rate is None and product is not None:
        rate = product.selling_price
    gst_percent = item.get("gst_percent")
    if gst_percent is None and product is not None:
        gst_percent = product.gst_rate
    if rate is None or gst_percent is None:
        raise ValidationError({"items": f"Line {position}: rate and gst_percent are required for a manual line."})

    quantity = Decimal(str(item["quantity"]))
    if quantity <= 0:
        raise ValidationError({"items": f"Line {position}: quantity must be greater than zero."})

    return LineDraft(
        position=position,
        product=product,
        product_name=product_name,
        hsn_code=item.get("hsn_code") or (product.hsn_code if product is not None else ""),
        unit=item.get("unit") or (product.unit if product is not None else "Pcs"),
        discount=gst.quantize_money(item.get("discount") or 0),
        amounts=gst.compute_line(rate, quantity, gst_percent, inter_state),
    )


def build_invoice_draft(
    *,
    items,
    payment_mode,
    discount=0,
    paid_amount=None,
    customer=None,
    customer_details=None,
    shop=None,
    notes="",
    invoice_date=None,
    due_date=None,
    receipt_time="",
):
    """
    Price a cart without touching the database (apart from reading settings).

    Raises `ValidationError` for an empty cart, a manual customer without a
    name, a negative or oversized discount, or a negative paid amount.
    """
    if not items:
        raise ValidationError({"items": "At least one line item is required."})
    if payment_mode not in PaymentMode.values:
        raise ValidationError({"payment_mode": f"Unsupported payment mode '{payment_mode}'."})

    shop = shop or ShopSettings.load()
    snapshot = _snapshot_for(customer, customer_details)
    inter_state = gst.is_inter_state(snapshot.state_code, shop.state_code)

    lines = [_build_line(position, item, inter_state) for position, item in enumerate(items, start=1)]

    discount = gst.quantize_money(discount or 0)
    if discount < 0:
        raise ValidationError({"discount": "Discount cannot be negative."})
    totals = gst.compute_invoice_totals([line.amounts for line in lines], discount)
    if totals.grand_total < 0:
        raise ValidationError({"discount": "Discount cannot exceed the bill amount."})

    if paid_amount is not None and payment_mode != PaymentMode.CREDIT:
        paid_amount = gst.quantize_money(paid_amount)
        if paid_amount < 0:
            raise ValidationError({"paid_amount": "Paid amount cannot be negative."})
    payment = gst.resolve_initial_payment(payment_mode, totals.grand_total, paid_amount)

    return InvoiceDraft(
        shop=shop,
        customer=customer,
        snapshot=snapshot,
        inter_state=inter_state,
        lines=lines,
        totals=totals,
        payment_mode=payment_mode,
        payment=payment,
        invoice_date=invoice_date or timezone.localdate(),
        due_date=due_date,
        receipt_time=receipt_time or timezone.localtime().strftime("%H%M%S"),
        notes=notes or "",
    )


def allocate_invoice_number():
    """
    Reserve the next invoice number.

    Must run inside a transaction: the settings row stays locked until the
    caller commits, so concurrent terminals allocate one at a time. A number
    that is already taken (for example after the counter was edited by hand)
    is skipped.
    """
    ShopSettings.load()
    max_attempts = settings.INVOICE_NUMBER_MAX_ATTEMPTS
    for attempt in range(1, max_attempts + 1):
        shop = ShopSettings.objects.select_for_update().get(pk=ShopSettings.SINGLETON_ID)
        number = gst.format_invoice_number(shop.invoice_prefix, shop.next_invoice_number)
        ShopSettings.objects.filter(pk=shop.pk).update(next_invoice_number=F("next_invoice_number") + 1)
        if not Invoice.objects.filter(invoice_number=number).exists():
            return number
        logger.warning("invoice_number_taken attempt=%s", attempt, extra={"invoice_number": number})

    logger.error("invoice_number_allocation_exhausted attempts=%s", max_attempts)
    raise InvoiceNumberAllocationError()


def commit_invoice(draft, *, user, device=None, event_id=None):
    """
    Persist a priced draft and apply its side effects in one transaction.

    Returns `(invoice, created)`. Replaying an `event_id` already committed
    for the same device returns the stored invoice untouched.
    """
    if event_id is not None:
        existing = Invoice.objects.filter(event_id=event_id, device=device).first()
        if existing is not None:
            logger.info("invoice_replayed", extra={"invoice_id": existing.id, "event_id": event_id})
            return existing, False

    totals = draft.totals
    shop = draft.shop
    with transaction.atomic():
        invoice_number = allocate_invoice_number()
        invoice = Invoice.objects.create(
            invoice_number=invoice_number,
            customer=draft.customer,
            customer_name=draft.snapshot.name,
            customer_phone=draft.snapshot.phone,
            customer_gstin=draft.snapshot.gstin,
            customer_address=draft.snapshot.address,
            customer_state_code=draft.snapshot.state_code,
            is_inter_state=draft.inter_state,
            subtotal=totals.subtotal,
            total_cgst=totals.total_cgst,
            total_sgst=totals.total_sgst,
            total_igst=totals.total_igst,
            total_gst=totals.total_gst,
            discount=totals.discount,
            round_off=totals.round_off,
            grand_total=totals.grand_total,
            paid_amount=draft.payment.paid_amount,
            due_amount=draft.payment.due_amount,
            change_returned=draft.payment.change_returned,
            payment_mode=draft.payment_mode,
            status=draft.payment.status,
            notes=draft.notes,
            invoice_date=draft.invoice_date,
            due_date=draft.due_date,
            receipt_time=draft.receipt_time,
            business_date=draft.invoice_date,
            location_code=shop.location_code or settings.POS_DEFAULT_LOCATION_CODE,
            terminal_id=shop.terminal_id or settings.POS_DEFAULT_TERMINAL_ID,
            shift_no=shop.current_shift or settings.POS_DEFAULT_SHIFT_NO,
            device=device,
            user=user if user is not None and user.is_authenticated else None,
            event_id=event_id,
        )

        for line in draft.lines:
            amounts = line.amounts
            invoice_line = InvoiceLine.objects.create(
                invoice=invoice,
                position=line.position,
                product=line.product,
                product_name=line.product_name,
                hsn_code=line.hsn_code,
                quantity=amounts.quantity,
                unit=line.unit,
                rate=amounts.rate,
                gst_percent=amounts.gst_percent,
                discount=line.discount,
                amount=amounts.amount,
                cgst=amounts.unit_tax.cgst,
                sgst=amounts.unit_tax.sgst,
                igst=amounts.unit_tax.igst,
            )
            if line.product is not None:
                decrement_stock_for_sale(
                    line.product.id,
                    amounts.quantity,
                    source_ref_id=invoice_line.id,
                    event_id=event_id,
                    device=device,
                )

        if draft.payment.paid_amount > 0:
            Payment.objects.create(
                invoice=invoice,
                mode=draft.payment_mode,
                amount=draft.payment.paid_amount,
                paid_at=timezone.now(),
                device=device,
            )

    logger.info(
        "invoice_committed grand_total=%s status=%s",
        invoice.grand_total,
        invoice.status,
        extra={"invoice_id": invoice.id, "invoice_number": invoice.invoice_number, "event_id": event_id},
    )
    return invoice, True


def apply_payment(invoice, amount, mode, *, paid_at=None, notes="", device=None, event_id=None):
    """
    Record a follow-up payment and re-derive the invoice's paid, due and status fields.

    Returns `(payment, created)`. Replaying an `event_id` already recorded for
    the same device returns the stored payment untouched; a replay that names
    a different invoice raises `Conflict`.
    """
    if mode not in Payment.Mode.values:
        raise ValidationError({"mode": f"Unsupported payment mode '{mode}'."})
    amount = gst.quantize_money(amount)
    if amount <= 0:
        raise ValidationError({"amount": "Payment amount must be greater than zero."})

    with transaction.atomic():
        if event_id is not None:
            existing = Payment.objects.filter(event_id=event_id, device=device).first()
            if existing is not None:
                if existing.invoice_id != invoice.pk:
                    logger.warning(
                        "payment_replay_invoice_mismatch",
                        extra={"invoice_id": invoice.pk, "event_id": event_id},
                    )
                    raise Conflict("This event_id was already used for a payment on another invoice.")
                logger.info("payment_replayed", extra={"invoice_id": existing.invoice_id, "event_id": event_id})
                return existing, False

        invoice = Invoice.objects.select_for_update().get(pk=invoice.pk)
        if invoice.due_amount <= 0:
            raise ValidationError({"amount": "Invoice is already fully paid."})
        if amount > invoice.due_amount:
            raise ValidationError({"amount": "Payment amount cannot be greater than the remaining balance."})

        payment = Payment.objects.create(
            invoice=invoice,
            mode=mode,
            amount=amount,
            paid_at=paid_at or timezone.now(),
            notes=notes or "",
            device=device,
            event_id=event_id,
        )
        state = gst.derive_payment_state(invoice.grand_total, invoice.paid_amount + amount)
        invoice.paid_amount = state.paid_amount
        invoice.due_amount = state.due_amount
        invoice.status = state.status
        invoice.save(update_fields=["paid_amount", "due_amount", "status", "updated_at"])

    logger.info(
        "payment_applied amount=%s due=%s status=%s",
        amount,
        invoice.due_amount,
        invoice.status,
        extra={"invoice_id": invoice.id, "invoice_number": invoice.invoice_number, "event_id": event_id},
    )
    return payment, True
