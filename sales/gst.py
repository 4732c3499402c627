"""
GST arithmetic for invoices.

Everything here is pure Decimal math with no database access, so the same
functions back the save-bill API, the preview endpoint and pushed offline
invoices. Inputs are expected to be validated already (see
`sales.serializers`); nothing in this module clamps or rejects values.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

HUNDRED = Decimal("100")
TWO = Decimal("2")
ZERO = Decimal("0")
UNIT_TAX_QUANT = Decimal("0.0001")
MONEY_QUANT = Decimal("0.01")
RUPEE_QUANT = Decimal("1")

STATUS_PAID = "paid"
STATUS_PARTIAL = "partial"
STATUS_UNPAID = "unpaid"

CREDIT_MODE = "credit"


def _decimal(value):
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def quantize_money(value):
    return _decimal(value).quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class LineTax:
    cgst: Decimal
    sgst: Decimal
    igst: Decimal

    @property
    def total(self):
        return self.cgst + self.sgst + self.igst

    def quantized(self, quant=UNIT_TAX_QUANT):
        return LineTax(
            cgst=self.cgst.quantize(quant, rounding=ROUND_HALF_UP),
            sgst=self.sgst.quantize(quant, rounding=ROUND_HALF_UP),
            igst=self.igst.quantize(quant, rounding=ROUND_HALF_UP),
        )


def compute_line_tax(amount, gst_percent, is_inter_state):
    """
    Split the GST on `amount` into its components.

    Inter-state supplies carry the whole tax as IGST; intra-state supplies
    split it evenly between CGST and SGST. The result is exact.
    """
    gst_amount = _decimal(amount) * _decimal(gst_percent) / HUNDRED
    if is_inter_state:
        return LineTax(cgst=ZERO, sgst=ZERO, igst=gst_amount)
    half = gst_amount / TWO
    return LineTax(cgst=half, sgst=half, igst=ZERO)


def compute_unit_tax(rate, gst_percent, is_inter_state):
    """Per-unit tax as stored on an invoice line (4 dp)."""
    return compute_line_tax(rate, gst_percent, is_inter_state).quantized()


def is_inter_state(customer_state_code, shop_state_code):
    customer_code = (customer_state_code or "").strip()
    shop_code = (shop_state_code or "").strip()
    if not customer_code or not shop_code:
        return False
    return customer_code != shop_code


@dataclass(frozen=True)
class LineAmounts:
    rate: Decimal
    quantity: Decimal
    gst_percent: Decimal
    amount: Decimal
    unit_tax: LineTax

    @property
    def cgst_total(self):
        return self.unit_tax.cgst * self.quantity

    @property
    def sgst_total(self):
        return self.unit_tax.sgst * self.quantity

    @property
    def igst_total(self):
        return self.unit_tax.igst * self.quantity


def compute_line(rate, quantity, gst_percent, inter_state):
    rate = _decimal(rate)
    quantity = _decimal(quantity)
    gst_percent = _decimal(gst_percent)
    return LineAmounts(
        rate=rate,
        quantity=quantity,
        gst_percent=gst_percent,
        amount=quantize_money(rate * quantity),
        unit_tax=compute_unit_tax(rate, gst_percent, inter_state),
    )


@dataclass(frozen=True)
class InvoiceTotals:
    subtotal: Decimal
    total_cgst: Decimal
    total_sgst: Decimal
    total_igst: Decimal
    total_gst: Decimal
    discount: Decimal
    round_off: Decimal
    grand_total: Decimal


def round_grand_total(subtotal, total_gst, discount):
    """
    Return `(grand_total, round_off)`.

    The discount is a flat amount taken off after tax. The grand total is
    rounded to whole rupees, halves away from zero.
    """
    after_discount = _decimal(subtotal) + _decimal(total_gst) - _decimal(discount)
    grand_total = after_discount.quantize(RUPEE_QUANT, rounding=ROUND_HALF_UP).quantize(MONEY_QUANT)
    return grand_total, grand_total - after_discount


def compute_invoice_totals(lines, discount=ZERO):
    lines = list(lines)
    discount = quantize_money(discount)
    subtotal = quantize_money(sum((line.amount for line in lines), ZERO))
    total_cgst = quantize_money(sum((line.cgst_total for line in lines), ZERO))
    total_sgst = quantize_money(sum((line.sgst_total for line in lines), ZERO))
    total_igst = quantize_money(sum((line.igst_total for line in lines), ZERO))
    total_gst = total_cgst + total_sgst + total_igst
    grand_total, round_off = round_grand_total(subtotal, total_gst, discount)
    return InvoiceTotals(
        subtotal=subtotal,
        total_cgst=total_cgst,
        total_sgst=total_sgst,
        total_igst=total_igst,
        total_gst=total_gst,
        discount=discount,
        round_off=round_off,
        grand_total=grand_total,
    )


@dataclass(frozen=True)
class PaymentState:
    paid_amount: Decimal
    due_amount: Decimal
    status: str
    change_returned: Decimal = ZERO


def derive_payment_state(grand_total, paid_amount):
    grand_total = _decimal(grand_total)
    paid_amount = _decimal(paid_amount)
    if paid_amount >= grand_total:
        status = STATUS_PAID
    elif paid_amount > ZERO:
        status = STATUS_PARTIAL
    else:
        status = STATUS_UNPAID
    due_amount = max(ZERO, grand_total - paid_amount)
    return PaymentState(paid_amount=paid_amount, due_amount=due_amount, status=status)


def resolve_initial_payment(payment_mode, grand_total, paid_amount=None):
    """
    Payment state of a bill at save time.

    Credit sales are always fully outstanding, whatever amount was typed in.
    For other modes an omitted amount means the bill was paid in full. Cash
    tendered above the grand total settles the bill; the excess is handed
    back as change and is not counted as paid.
    """
    if payment_mode == CREDIT_MODE:
        return derive_payment_state(grand_total, ZERO)
    if paid_amount is None:
        return derive_payment_state(grand_total, grand_total)
    grand_total = _decimal(grand_total)
    tendered = quantize_money(paid_amount)
    if tendered > grand_total:
        settled = derive_payment_state(grand_total, grand_total)
        return PaymentState(
            paid_amount=settled.paid_amount,
            due_amount=settled.due_amount,
            status=settled.status,
            change_returned=tendered - grand_total,
        )
    return derive_payment_state(grand_total, tendered)


def format_invoice_number(prefix, sequence):
    return f"{prefix}-{int(sequence):05d}"
