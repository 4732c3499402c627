import threading
import unittest
import uuid
from decimal import ROUND_HALF_UP, Decimal
from unittest import mock

from django.contrib.auth import get_user_model
from django.core.cache import cache
from django.db import connection
from django.test import SimpleTestCase, TestCase, TransactionTestCase, override_settings
from django.utils import timezone
from rest_framework.exceptions import ValidationError
from rest_framework.test import APIClient

from core.models import AuditLog, Device, ShopSettings
from inventory.models import Product, StockMove
from sales import gst
from sales.models import Customer, Invoice, Payment
from sales.reports import pos_payment_name
from sales.services import (
    InvoiceNumberAllocationError,
    apply_payment,
    build_invoice_draft,
    commit_invoice,
)
from sync.models import SyncOutbox


def make_invoice(user, items, payment_mode="cash", **kwargs):
    draft = build_invoice_draft(items=items, payment_mode=payment_mode, **kwargs)
    invoice, _ = commit_invoice(draft, user=user)
    return invoice


class GstMathTests(SimpleTestCase):
    def test_intra_state_line_splits_tax_evenly(self):
        tax = gst.compute_line_tax(Decimal("1000"), Decimal("18"), False)

        self.assertEqual(tax.cgst, Decimal("90"))
        self.assertEqual(tax.sgst, Decimal("90"))
        self.assertEqual(tax.igst, Decimal("0"))
        self.assertEqual(tax.total, Decimal("180"))

    def test_inter_state_line_is_all_igst(self):
        tax = gst.compute_line_tax(Decimal("1000"), Decimal("18"), True)

        self.assertEqual(tax.cgst, Decimal("0"))
        self.assertEqual(tax.sgst, Decimal("0"))
        self.assertEqual(tax.igst, Decimal("180"))

    def test_components_always_add_up_to_gst_amount(self):
        cases = [
            ("1000", "18"),
            ("999.99", "12"),
            ("0.01", "28"),
            ("37.45", "5"),
            ("250", "0"),
        ]
        for amount, percent in cases:
            expected = Decimal(amount) * Decimal(percent) / Decimal("100")
            for inter_state in (False, True):
                with self.subTest(amount=amount, percent=percent, inter_state=inter_state):
                    tax = gst.compute_line_tax(amount, percent, inter_state)
                    self.assertEqual(tax.cgst + tax.sgst + tax.igst, expected)
                    if inter_state:
                        self.assertEqual(tax.cgst + tax.sgst, 0)
                    else:
                        self.assertEqual(tax.igst, 0)

    def test_out_of_range_percent_is_not_clamped(self):
        negative = gst.compute_line_tax(Decimal("100"), Decimal("-5"), False)
        excessive = gst.compute_line_tax(Decimal("100"), Decimal("150"), True)

        self.assertEqual(negative.total, Decimal("-5"))
        self.assertEqual(excessive.igst, Decimal("150"))

    def test_inter_state_decision(self):
        self.assertFalse(gst.is_inter_state("27", "27"))
        self.assertTrue(gst.is_inter_state("29", "27"))
        self.assertFalse(gst.is_inter_state(" 27 ", "27"))
        self.assertFalse(gst.is_inter_state(None, "27"))
        self.assertFalse(gst.is_inter_state("", "27"))
        self.assertFalse(gst.is_inter_state("29", ""))

    def test_unit_tax_times_quantity_differs_from_tax_on_line_amount(self):
        line = gst.compute_line(Decimal("0.99"), Decimal("1000"), Decimal("5"), False)
        totals = gst.compute_invoice_totals([line])

        self.assertEqual(line.unit_tax.cgst, Decimal("0.0248"))
        self.assertEqual(totals.total_cgst, Decimal("24.80"))
        self.assertEqual(totals.total_gst, Decimal("49.60"))

        on_amount = gst.compute_line_tax(line.amount, line.gst_percent, False).quantized(gst.MONEY_QUANT)
        self.assertEqual(on_amount.cgst, Decimal("24.75"))
        self.assertNotEqual(totals.total_cgst, on_amount.cgst)

    def test_discount_and_rounding(self):
        grand_total, round_off = gst.round_grand_total(Decimal("999.50"), Decimal("179.91"), Decimal("50"))

        self.assertEqual(grand_total, Decimal("1129"))
        self.assertEqual(round_off, Decimal("-0.41"))

    def test_half_rupee_rounds_away_from_zero(self):
        self.assertEqual(gst.round_grand_total("100.50", "0", "0"), (Decimal("101"), Decimal("0.50")))
        self.assertEqual(gst.round_grand_total("100.49", "0", "0"), (Decimal("100"), Decimal("-0.49")))

    def test_discount_is_taken_after_tax(self):
        line = gst.compute_line(Decimal("1000"), Decimal("1"), Decimal("18"), False)
        totals = gst.compute_invoice_totals([line], Decimal("100"))

        self.assertEqual(totals.subtotal, Decimal("1000.00"))
        self.assertEqual(totals.total_gst, Decimal("180.00"))
        self.assertEqual(totals.grand_total, Decimal("1080"))

    def test_totals_reconcile(self):
        lines = [
            gst.compute_line(Decimal("12.35"), Decimal("3"), Decimal("12"), False),
            gst.compute_line(Decimal("7.80"), Decimal("2.5"), Decimal("5"), False),
        ]
        totals = gst.compute_invoice_totals(lines, Decimal("3.10"))

        exact = totals.subtotal + totals.total_gst - totals.discount
        self.assertEqual(totals.total_gst, totals.total_cgst + totals.total_sgst + totals.total_igst)
        self.assertEqual(totals.grand_total, exact.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
        self.assertEqual(totals.round_off, totals.grand_total - exact)

    def test_payment_state_derivation(self):
        paid = gst.derive_payment_state(Decimal("1180"), Decimal("1180"))
        partial = gst.derive_payment_state(Decimal("1180"), Decimal("500"))
        unpaid = gst.derive_payment_state(Decimal("1180"), Decimal("0"))
        over = gst.derive_payment_state(Decimal("1180"), Decimal("1200"))

        self.assertEqual((paid.status, paid.due_amount), ("paid", Decimal("0")))
        self.assertEqual((partial.status, partial.due_amount), ("partial", Decimal("680")))
        self.assertEqual((unpaid.status, unpaid.due_amount), ("unpaid", Decimal("1180")))
        self.assertEqual((over.status, over.due_amount), ("paid", Decimal("0")))

    def test_initial_payment_resolution(self):
        credit = gst.resolve_initial_payment("credit", Decimal("1180"), Decimal("1000"))
        omitted = gst.resolve_initial_payment("cash", Decimal("1180"), None)
        explicit_zero = gst.resolve_initial_payment("upi", Decimal("1180"), Decimal("0"))
        partial = gst.resolve_initial_payment("card", Decimal("1180"), Decimal("500"))

        self.assertEqual((credit.paid_amount, credit.due_amount, credit.status), (0, Decimal("1180"), "unpaid"))
        self.assertEqual((omitted.paid_amount, omitted.due_amount, omitted.status), (Decimal("1180"), 0, "paid"))
        self.assertEqual(explicit_zero.status, "unpaid")
        self.assertEqual((partial.due_amount, partial.status), (Decimal("680"), "partial"))

    def test_tendered_amount_above_total_settles_with_change(self):
        over = gst.resolve_initial_payment("cash", Decimal("1180"), Decimal("1200"))
        credit = gst.resolve_initial_payment("credit", Decimal("1180"), Decimal("1200"))

        self.assertEqual((over.paid_amount, over.due_amount, over.status), (Decimal("1180"), 0, "paid"))
        self.assertEqual(over.change_returned, Decimal("20.00"))
        self.assertEqual(credit.change_returned, 0)

    def test_invoice_number_format(self):
        self.assertEqual(gst.format_invoice_number("INV", 7), "INV-00007")
        self.assertEqual(gst.format_invoice_number("SHOP", 123456), "SHOP-123456")


class InvoiceEngineTests(TestCase):
    def setUp(self):
        self.user = get_user_model().objects.create_user(username="cashier", password="pass1234")
        self.shop = ShopSettings.load()
        self.product = Product.objects.create(
            name="Steel Bottle",
            hsn_code="7323",
            gst_rate=Decimal("18"),
            selling_price=Decimal("1000"),
            stock=Decimal("10"),
        )
        self.local_customer = Customer.objects.create(name="Local Traders", state_code="27")
        self.outstation_customer = Customer.objects.create(name="Karnataka Stores", state_code="29")

    def test_intra_state_sale(self):
        invoice = make_invoice(self.user, [{"product": self.product, "quantity": 1}], customer=self.local_customer)
        invoice.refresh_from_db()

        self.assertFalse(invoice.is_inter_state)
        self.assertEqual(invoice.subtotal, Decimal("1000.00"))
        self.assertEqual(invoice.total_cgst, Decimal("90.00"))
        self.assertEqual(invoice.total_sgst, Decimal("90.00"))
        self.assertEqual(invoice.total_igst, Decimal("0.00"))
        self.assertEqual(invoice.total_gst, Decimal("180.00"))
        self.assertEqual(invoice.grand_total, Decimal("1180.00"))
        line = invoice.lines.get()
        self.assertEqual(line.product_name, "Steel Bottle")
        self.assertEqual(line.hsn_code, "7323")
        self.assertEqual(line.cgst, Decimal("90.0000"))

    def test_inter_state_sale(self):
        invoice = make_invoice(
            self.user, [{"product": self.product, "quantity": 1}], customer=self.outstation_customer
        )
        invoice.refresh_from_db()

        self.assertTrue(invoice.is_inter_state)
        self.assertEqual(invoice.total_cgst, Decimal("0.00"))
        self.assertEqual(invoice.total_sgst, Decimal("0.00"))
        self.assertEqual(invoice.total_igst, Decimal("180.00"))
        self.assertEqual(invoice.grand_total, Decimal("1180.00"))

    def test_walk_in_customer_is_intra_state(self):
        invoice = make_invoice(self.user, [{"product": self.product, "quantity": 1}])

        self.assertEqual(invoice.customer_name, "Walk-in Customer")
        self.assertIsNone(invoice.customer)
        self.assertFalse(invoice.is_inter_state)

    def test_shop_state_code_decides_tax_split(self):
        ShopSettings.objects.filter(pk=self.shop.pk).update(state_code="29")

        invoice = make_invoice(self.user, [{"product": self.product, "quantity": 1}], customer=self.local_customer)

        self.assertTrue(invoice.is_inter_state)

    def test_discount_and_rounding_on_saved_invoice(self):
        invoice = make_invoice(
            self.user,
            [{"product_name": "Hand Loom Saree", "rate": Decimal("999.50"), "gst_percent": Decimal("18"), "quantity": 1}],
            customer=self.outstation_customer,
            discount=Decimal("50"),
        )
        invoice.refresh_from_db()

        self.assertEqual(invoice.subtotal, Decimal("999.50"))
        self.assertEqual(invoice.total_gst, Decimal("179.91"))
        self.assertEqual(invoice.grand_total, Decimal("1129.00"))
        self.assertEqual(invoice.round_off, Decimal("-0.41"))

    def test_credit_sale_ignores_typed_amount(self):
        invoice = make_invoice(
            self.user,
            [{"product": self.product, "quantity": 1}],
            payment_mode="credit",
            paid_amount=Decimal("1000"),
        )

        self.assertEqual(invoice.paid_amount, Decimal("0"))
        self.assertEqual(invoice.due_amount, Decimal("1180"))
        self.assertEqual(invoice.status, Invoice.Status.UNPAID)
        self.assertFalse(invoice.payments.exists())

    def test_omitted_paid_amount_records_full_payment(self):
        invoice = make_invoice(self.user, [{"product": self.product, "quantity": 1}], payment_mode="upi")

        self.assertEqual(invoice.status, Invoice.Status.PAID)
        payment = invoice.payments.get()
        self.assertEqual(payment.amount, Decimal("1180"))
        self.assertEqual(payment.mode, Payment.Mode.UPI)

    def test_explicit_zero_paid_amount_is_unpaid(self):
        invoice = make_invoice(
            self.user, [{"product": self.product, "quantity": 1}], payment_mode="cash", paid_amount=Decimal("0")
        )

        self.assertEqual(invoice.status, Invoice.Status.UNPAID)
        self.assertEqual(invoice.due_amount, Decimal("1180"))
        self.assertFalse(invoice.payments.exists())

    def test_partial_payment_then_full_settlement(self):
        invoice = make_invoice(self.user, [{"product": self.product, "quantity": 1}], payment_mode="credit")

        apply_payment(invoice, Decimal("500"), "cash")
        invoice.refresh_from_db()
        self.assertEqual(invoice.paid_amount, Decimal("500.00"))
        self.assertEqual(invoice.due_amount, Decimal("680.00"))
        self.assertEqual(invoice.status, Invoice.Status.PARTIAL)

        apply_payment(invoice, Decimal("680"), "upi")
        invoice.refresh_from_db()
        self.assertEqual(invoice.paid_amount, Decimal("1180.00"))
        self.assertEqual(invoice.due_amount, Decimal("0.00"))
        self.assertEqual(invoice.status, Invoice.Status.PAID)
        self.assertEqual(sum(payment.amount for payment in invoice.payments.all()), invoice.paid_amount)

    def test_replayed_payment_event_returns_stored_payment(self):
        invoice = make_invoice(self.user, [{"product": self.product, "quantity": 1}], payment_mode="credit")
        event_id = uuid.uuid4()

        payment, created = apply_payment(invoice, Decimal("500"), "cash", event_id=event_id)
        replayed, replay_created = apply_payment(invoice, Decimal("500"), "cash", event_id=event_id)

        self.assertTrue(created)
        self.assertFalse(replay_created)
        self.assertEqual(replayed.pk, payment.pk)
        invoice.refresh_from_db()
        self.assertEqual(invoice.paid_amount, Decimal("500.00"))
        self.assertEqual(invoice.payments.count(), 1)

    def test_payment_above_due_is_rejected(self):
        invoice = make_invoice(self.user, [{"product": self.product, "quantity": 1}], payment_mode="credit")
        apply_payment(invoice, Decimal("500"), "cash")

        with self.assertRaises(ValidationError):
            apply_payment(invoice, Decimal("700"), "cash")

        invoice.refresh_from_db()
        self.assertEqual(invoice.due_amount, Decimal("680.00"))
        self.assertEqual(invoice.payments.count(), 1)

    def test_payment_on_settled_invoice_is_rejected(self):
        invoice = make_invoice(self.user, [{"product": self.product, "quantity": 1}], payment_mode="cash")

        with self.assertRaises(ValidationError):
            apply_payment(invoice, Decimal("1"), "cash")

    def test_cash_tendered_above_grand_total_returns_change(self):
        invoice = make_invoice(
            self.user, [{"product": self.product, "quantity": 1}], payment_mode="cash", paid_amount=Decimal("1500")
        )
        invoice.refresh_from_db()

        self.assertEqual(invoice.status, Invoice.Status.PAID)
        self.assertEqual(invoice.paid_amount, Decimal("1180.00"))
        self.assertEqual(invoice.due_amount, Decimal("0.00"))
        self.assertEqual(invoice.change_returned, Decimal("320.00"))
        self.assertEqual(invoice.payments.get().amount, Decimal("1180.00"))

    def test_negative_paid_amount_is_rejected(self):
        with self.assertRaises(ValidationError):
            build_invoice_draft(
                items=[{"product": self.product, "quantity": 1}],
                payment_mode="cash",
                paid_amount=Decimal("-1"),
            )

    def test_empty_cart_is_rejected_without_side_effects(self):
        with self.assertRaises(ValidationError) as ctx:
            build_invoice_draft(items=[], payment_mode="cash")

        self.assertIn("items", ctx.exception.detail)
        self.assertEqual(Invoice.objects.count(), 0)
        self.assertEqual(ShopSettings.load().next_invoice_number, 1)

    def test_manual_customer_requires_name(self):
        with self.assertRaises(ValidationError) as ctx:
            build_invoice_draft(
                items=[{"product": self.product, "quantity": 1}],
                payment_mode="cash",
                customer_details={"name": "", "phone": "9876543210"},
            )

        self.assertIn("customer_name", ctx.exception.detail)

    def test_manual_customer_snapshot(self):
        invoice = make_invoice(
            self.user,
            [{"product": self.product, "quantity": 1}],
            customer_details={"name": "Ravi", "phone": "9876543210", "state_code": "29"},
        )

        self.assertEqual(invoice.customer_name, "Ravi")
        self.assertEqual(invoice.customer_phone, "9876543210")
        self.assertTrue(invoice.is_inter_state)

    def test_sequential_invoice_numbers(self):
        numbers = [make_invoice(self.user, [{"product": self.product, "quantity": 1}]).invoice_number for _ in range(3)]

        self.assertEqual(numbers, ["INV-00001", "INV-00002", "INV-00003"])
        self.assertEqual(ShopSettings.load().next_invoice_number, 4)

    def test_stale_counter_skips_taken_number(self):
        first = make_invoice(self.user, [{"product": self.product, "quantity": 1}])
        ShopSettings.objects.filter(pk=self.shop.pk).update(next_invoice_number=1)

        second = make_invoice(self.user, [{"product": self.product, "quantity": 1}])

        self.assertEqual(first.invoice_number, "INV-00001")
        self.assertEqual(second.invoice_number, "INV-00002")
        self.assertEqual(ShopSettings.load().next_invoice_number, 3)

    @override_settings(INVOICE_NUMBER_MAX_ATTEMPTS=2)
    def test_exhausted_allocation_rolls_back(self):
        make_invoice(self.user, [{"product": self.product, "quantity": 1}])
        make_invoice(self.user, [{"product": self.product, "quantity": 1}])
        ShopSettings.objects.filter(pk=self.shop.pk).update(next_invoice_number=1)
        draft = build_invoice_draft(items=[{"product": self.product, "quantity": 1}], payment_mode="cash")

        with self.assertLogs("sales.services", level="WARNING"):
            with self.assertRaises(InvoiceNumberAllocationError):
                commit_invoice(draft, user=self.user)

        self.assertEqual(Invoice.objects.count(), 2)
        self.assertEqual(ShopSettings.load().next_invoice_number, 1)
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock, Decimal("8"))

    def test_failure_mid_commit_leaves_nothing_behind(self):
        draft = build_invoice_draft(items=[{"product": self.product, "quantity": 1}], payment_mode="cash")

        with mock.patch("sales.services.decrement_stock_for_sale", side_effect=RuntimeError("disk full")):
            with self.assertRaises(RuntimeError):
                commit_invoice(draft, user=self.user)

        self.assertEqual(Invoice.objects.count(), 0)
        self.assertEqual(Payment.objects.count(), 0)
        self.assertEqual(ShopSettings.load().next_invoice_number, 1)

    def test_stock_is_decremented(self):
        make_invoice(self.user, [{"product": self.product, "quantity": 3}])

        self.product.refresh_from_db()
        self.assertEqual(self.product.stock, Decimal("7"))
        move = StockMove.objects.get(product=self.product)
        self.assertEqual(move.quantity, Decimal("-3"))
        self.assertEqual(move.reason, StockMove.Reason.SALE)

    def test_oversell_clamps_stock_at_zero(self):
        with self.assertLogs("inventory.services", level="WARNING"):
            make_invoice(self.user, [{"product": self.product, "quantity": 15}])

        self.product.refresh_from_db()
        self.assertEqual(self.product.stock, Decimal("0"))

    @override_settings(INVENTORY_ALLOW_NEGATIVE_STOCK=True)
    def test_oversell_keeps_negative_balance_when_allowed(self):
        make_invoice(self.user, [{"product": self.product, "quantity": 15}])

        self.product.refresh_from_db()
        self.assertEqual(self.product.stock, Decimal("-5"))

    def test_manual_line_does_not_touch_stock(self):
        make_invoice(
            self.user,
            [{"product_name": "Gift wrap", "rate": Decimal("20"), "gst_percent": Decimal("0"), "quantity": 1}],
        )

        self.assertFalse(StockMove.objects.exists())

    def test_replayed_event_returns_existing_invoice(self):
        device = Device.objects.create(name="Counter 1", identifier="counter-1")
        event_id = uuid.uuid4()
        draft = build_invoice_draft(items=[{"product": self.product, "quantity": 2}], payment_mode="cash")

        first, first_created = commit_invoice(draft, user=self.user, device=device, event_id=event_id)
        second, second_created = commit_invoice(draft, user=self.user, device=device, event_id=event_id)

        self.assertTrue(first_created)
        self.assertFalse(second_created)
        self.assertEqual(first.id, second.id)
        self.assertEqual(Invoice.objects.count(), 1)
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock, Decimal("8"))

    def test_invoice_defaults_for_pos_fields(self):
        invoice = make_invoice(self.user, [{"product": self.product, "quantity": 1}])

        self.assertEqual(invoice.location_code, "01")
        self.assertEqual(invoice.terminal_id, "01")
        self.assertEqual(invoice.shift_no, "01")
        self.assertEqual(invoice.transaction_status, Invoice.TransactionStatus.SALES)
        self.assertRegex(invoice.receipt_time, r"^\d{6}$")
        self.assertEqual(invoice.business_date, invoice.invoice_date)


@unittest.skipUnless(connection.vendor == "postgresql", "row locks need PostgreSQL")
class ConcurrentInvoiceNumberTests(TransactionTestCase):
    workers = 8

    def setUp(self):
        self.user = get_user_model().objects.create_user(username="cashier", password="pass1234")
        ShopSettings.load()
        self.product = Product.objects.create(
            name="Notebook", gst_rate=Decimal("12"), selling_price=Decimal("50"), stock=Decimal("100")
        )

    def test_concurrent_commits_never_share_a_number(self):
        barrier = threading.Barrier(self.workers)
        errors = []

        def worker():
            try:
                draft = build_invoice_draft(items=[{"product": self.product, "quantity": 1}], payment_mode="cash")
                barrier.wait()
                commit_invoice(draft, user=self.user)
            except Exception as exc:  # surfaced through the assertion below
                errors.append(exc)
            finally:
                connection.close()

        threads = [threading.Thread(target=worker) for _ in range(self.workers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(errors, [])
        numbers = list(Invoice.objects.values_list("invoice_number", flat=True))
        self.assertEqual(len(numbers), self.workers)
        self.assertEqual(len(set(numbers)), self.workers)
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock, Decimal("100") - self.workers)


class InvoiceApiTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        user_model = get_user_model()
        self.staff = user_model.objects.create_user(username="staff", password="pass1234", role="staff")
        self.admin = user_model.objects.create_user(username="owner", password="pass1234", role="admin")
        self.product = Product.objects.create(
            name="Basmati Rice 5kg", gst_rate=Decimal("5"), selling_price=Decimal("640"), stock=Decimal("20")
        )
        self.customer = Customer.objects.create(name="Patil Stores", state_code="27")

    def _invoice_payload(self, **overrides):
        payload = {
            "customer": str(self.customer.id),
            "items": [{"product": str(self.product.id), "quantity": "2"}],
            "payment_mode": "cash",
        }
        payload.update(overrides)
        return payload

    def test_requires_authentication(self):
        response = self.client.post("/api/v1/invoices/", self._invoice_payload(), format="json")

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["code"], "not_authenticated")

    def test_staff_saves_bill(self):
        self.client.force_authenticate(user=self.staff)

        response = self.client.post("/api/v1/invoices/", self._invoice_payload(), format="json")

        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertEqual(body["invoice_number"], "INV-00001")
        self.assertEqual(body["subtotal"], "1280.00")
        self.assertEqual(body["total_cgst"], "32.00")
        self.assertEqual(body["total_sgst"], "32.00")
        self.assertEqual(body["grand_total"], "1344.00")
        self.assertEqual(body["status"], "paid")
        self.assertEqual(len(body["lines"]), 1)
        self.assertEqual(body["lines"][0]["cgst"], "16.0000")
        self.assertEqual(len(body["payments"]), 1)
        self.assertTrue(SyncOutbox.objects.filter(entity="invoice", entity_id=body["id"]).exists())
        self.assertTrue(AuditLog.objects.filter(action="invoice.create", actor=self.staff).exists())
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock, Decimal("18"))

    def test_cash_tendered_above_total_is_accepted_with_change(self):
        self.client.force_authenticate(user=self.staff)

        response = self.client.post("/api/v1/invoices/", self._invoice_payload(paid_amount="1500"), format="json")

        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertEqual(body["grand_total"], "1344.00")
        self.assertEqual(body["status"], "paid")
        self.assertEqual(body["paid_amount"], "1344.00")
        self.assertEqual(body["due_amount"], "0.00")
        self.assertEqual(body["change_returned"], "156.00")
        self.assertEqual(body["payments"][0]["amount"], "1344.00")

    def test_rejects_garbage_gst_percent(self):
        self.client.force_authenticate(user=self.staff)
        payload = self._invoice_payload(
            items=[{"product_name": "Loose item", "rate": "100", "gst_percent": "150", "quantity": "1"}]
        )

        response = self.client.post("/api/v1/invoices/", payload, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "validation_error")
        self.assertEqual(Invoice.objects.count(), 0)

    def test_rejects_negative_gst_percent(self):
        self.client.force_authenticate(user=self.staff)
        payload = self._invoice_payload(
            items=[{"product_name": "Loose item", "rate": "100", "gst_percent": "-1", "quantity": "1"}]
        )

        response = self.client.post("/api/v1/invoices/", payload, format="json")

        self.assertEqual(response.status_code, 400)

    def test_rejects_empty_cart(self):
        self.client.force_authenticate(user=self.staff)

        response = self.client.post("/api/v1/invoices/", self._invoice_payload(items=[]), format="json")

        self.assertEqual(response.status_code, 400)
        self.assertIn("items", response.json()["errors"])

    def test_rejects_bad_customer_gstin(self):
        self.client.force_authenticate(user=self.staff)
        payload = self._invoice_payload(customer=None, customer_name="Ravi", customer_gstin="NOT-A-GSTIN")

        response = self.client.post("/api/v1/invoices/", payload, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertIn("customer_gstin", response.json()["errors"])

    def test_preview_does_not_persist(self):
        self.client.force_authenticate(user=self.staff)

        response = self.client.post("/api/v1/invoices/preview/", self._invoice_payload(), format="json")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(Decimal(response.json()["grand_total"]), Decimal("1344"))
        self.assertEqual(Invoice.objects.count(), 0)
        self.assertEqual(ShopSettings.load().next_invoice_number, 1)
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock, Decimal("20"))

    def test_follow_up_payment(self):
        self.client.force_authenticate(user=self.staff)
        created = self.client.post(
            "/api/v1/invoices/", self._invoice_payload(payment_mode="credit"), format="json"
        ).json()

        response = self.client.post(
            f"/api/v1/invoices/{created['id']}/payments/",
            {"mode": "cash", "amount": "500"},
            format="json",
        )

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["invoice"]["status"], "partial")
        self.assertEqual(response.json()["invoice"]["due_amount"], "844.00")

        overpay = self.client.post(
            f"/api/v1/invoices/{created['id']}/payments/",
            {"mode": "cash", "amount": "900"},
            format="json",
        )
        self.assertEqual(overpay.status_code, 400)

    def test_replayed_payment_has_no_further_side_effects(self):
        self.client.force_authenticate(user=self.staff)
        created = self.client.post(
            "/api/v1/invoices/", self._invoice_payload(payment_mode="credit"), format="json"
        ).json()
        url = f"/api/v1/invoices/{created['id']}/payments/"
        body = {"mode": "cash", "amount": "100", "event_id": str(uuid.uuid4())}

        first = self.client.post(url, body, format="json")
        outbox_after_first = SyncOutbox.objects.count()
        audit_after_first = AuditLog.objects.count()
        replay = self.client.post(url, body, format="json")

        self.assertEqual(first.status_code, 201)
        self.assertEqual(replay.status_code, 200)
        self.assertEqual(replay.json()["payment"]["id"], first.json()["payment"]["id"])
        self.assertEqual(replay.json()["invoice"]["due_amount"], "1244.00")
        self.assertEqual(SyncOutbox.objects.count(), outbox_after_first)
        self.assertEqual(AuditLog.objects.count(), audit_after_first)
        self.assertEqual(Payment.objects.filter(invoice_id=created["id"]).count(), 1)

    def test_payment_event_reused_on_another_invoice_is_a_conflict(self):
        self.client.force_authenticate(user=self.staff)
        first_invoice = self.client.post(
            "/api/v1/invoices/", self._invoice_payload(payment_mode="credit"), format="json"
        ).json()
        second_invoice = self.client.post(
            "/api/v1/invoices/", self._invoice_payload(payment_mode="credit"), format="json"
        ).json()
        body = {"mode": "cash", "amount": "100", "event_id": str(uuid.uuid4())}
        self.client.post(f"/api/v1/invoices/{first_invoice['id']}/payments/", body, format="json")

        response = self.client.post(f"/api/v1/invoices/{second_invoice['id']}/payments/", body, format="json")

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["code"], "conflict")
        self.assertFalse(Payment.objects.filter(invoice_id=second_invoice["id"]).exists())

    def test_credit_is_not_a_follow_up_payment_mode(self):
        self.client.force_authenticate(user=self.staff)
        created = self.client.post(
            "/api/v1/invoices/", self._invoice_payload(payment_mode="credit"), format="json"
        ).json()

        response = self.client.post(
            f"/api/v1/invoices/{created['id']}/payments/",
            {"mode": "credit", "amount": "100"},
            format="json",
        )

        self.assertEqual(response.status_code, 400)

    def test_list_filters_by_status(self):
        self.client.force_authenticate(user=self.staff)
        self.client.post("/api/v1/invoices/", self._invoice_payload(), format="json")
        self.client.post("/api/v1/invoices/", self._invoice_payload(payment_mode="credit"), format="json")

        response = self.client.get("/api/v1/invoices/", {"status": "unpaid"})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["count"], 1)
        self.assertEqual(response.json()["results"][0]["payment_mode"], "credit")

    @override_settings(INVOICE_NUMBER_MAX_ATTEMPTS=1)
    def test_allocation_conflict_maps_to_409(self):
        self.client.force_authenticate(user=self.staff)
        self.client.post("/api/v1/invoices/", self._invoice_payload(), format="json")
        ShopSettings.objects.update(next_invoice_number=1)

        response = self.client.post("/api/v1/invoices/", self._invoice_payload(), format="json")

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["code"], "conflict")

    def test_payments_listing(self):
        self.client.force_authenticate(user=self.staff)
        self.client.post("/api/v1/invoices/", self._invoice_payload(), format="json")

        response = self.client.get("/api/v1/payments/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["count"], 1)
        self.assertEqual(response.json()["results"][0]["invoice_number"], "INV-00001")


class CustomerApiTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        user_model = get_user_model()
        self.staff = user_model.objects.create_user(username="staff", password="pass1234", role="staff")
        self.admin = user_model.objects.create_user(username="owner", password="pass1234", role="admin")
        self.customer = Customer.objects.create(name="Shah & Sons", phone="9820000000")

    def test_staff_creates_customer_with_normalized_gstin(self):
        self.client.force_authenticate(user=self.staff)

        response = self.client.post(
            "/api/v1/customers/",
            {"name": "Mehta Traders", "gstin": "27abcde1234f1z5", "state_code": "27"},
            format="json",
        )

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["gstin"], "27ABCDE1234F1Z5")
        self.assertTrue(SyncOutbox.objects.filter(entity="customer", op="upsert").exists())

    def test_invalid_gstin_is_rejected(self):
        self.client.force_authenticate(user=self.staff)

        response = self.client.post("/api/v1/customers/", {"name": "Mehta", "gstin": "12345"}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertIn("gstin", response.json()["errors"])

    def test_staff_cannot_edit_customer(self):
        self.client.force_authenticate(user=self.staff)

        with self.assertLogs("security.authorization", level="WARNING"):
            response = self.client.patch(
                f"/api/v1/customers/{self.customer.id}/", {"name": "Renamed"}, format="json"
            )

        self.assertEqual(response.status_code, 403)

    def test_admin_edits_customer(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.patch(f"/api/v1/customers/{self.customer.id}/", {"name": "Renamed"}, format="json")

        self.assertEqual(response.status_code, 200)
        self.assertTrue(AuditLog.objects.filter(action="customer.update", entity_id=self.customer.id).exists())

    def test_search_by_phone(self):
        Customer.objects.create(name="Someone Else", phone="9111111111")
        self.client.force_authenticate(user=self.staff)

        response = self.client.get("/api/v1/customers/", {"search": "98200"})

        self.assertEqual(response.json()["count"], 1)
        self.assertEqual(response.json()["results"][0]["name"], "Shah & Sons")


class ReportTests(TestCase):
    def setUp(self):
        cache.clear()
        self.client = APIClient()
        user_model = get_user_model()
        self.staff = user_model.objects.create_user(username="staff", password="pass1234", role="staff")
        self.admin = user_model.objects.create_user(username="owner", password="pass1234", role="admin")
        self.product = Product.objects.create(
            name="Ceiling Fan",
            gst_rate=Decimal("18"),
            selling_price=Decimal("1000"),
            stock=Decimal("5"),
            low_stock_threshold=Decimal("10"),
        )
        self.cash_invoice = make_invoice(
            self.staff, [{"product": self.product, "quantity": 1}], payment_mode="cash", receipt_time="101500"
        )
        self.credit_invoice = make_invoice(
            self.staff,
            [
                {"product": self.product, "quantity": 1},
                {"product_name": "Installation", "rate": Decimal("100"), "gst_percent": Decimal("5"), "quantity": 2},
            ],
            payment_mode="credit",
        )
        self.today = timezone.localdate().isoformat()

    def test_sales_summary(self):
        self.client.force_authenticate(user=self.staff)

        response = self.client.get(
            "/api/v1/reports/sales-summary/", {"date_from": self.today, "date_to": self.today}
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["invoice_count"], 2)
        self.assertEqual(response.data["total_sales"], Decimal("2570"))
        self.assertEqual(response.data["total_received"], Decimal("1180"))
        self.assertEqual(response.data["total_due"], Decimal("1390"))
        modes = {row["payment_mode"]: row["invoice_count"] for row in response.data["by_payment_mode"]}
        self.assertEqual(modes, {"cash": 1, "credit": 1})

    def test_sales_summary_requires_both_dates(self):
        self.client.force_authenticate(user=self.staff)

        response = self.client.get("/api/v1/reports/sales-summary/", {"date_from": self.today})

        self.assertEqual(response.status_code, 400)

    def test_sales_summary_csv(self):
        self.client.force_authenticate(user=self.staff)

        response = self.client.get("/api/v1/reports/sales-summary/", {"format": "csv"})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response["Content-Type"], "text/csv")
        content = response.content.decode()
        self.assertIn("invoice_number", content.splitlines()[0])
        self.assertIn("INV-00001", content)
        self.assertIn("INV-00002", content)

    def test_gst_summary_groups_by_rate(self):
        self.client.force_authenticate(user=self.staff)

        response = self.client.get("/api/v1/reports/gst-summary/")

        self.assertEqual(response.status_code, 200)
        rows = {row["gst_percent"]: row for row in response.data["results"]}
        self.assertEqual(rows[Decimal("18.00")]["taxable_value"], Decimal("2000"))
        self.assertEqual(rows[Decimal("18.00")]["cgst"], Decimal("180.00"))
        self.assertEqual(rows[Decimal("5.00")]["taxable_value"], Decimal("200"))
        self.assertEqual(rows[Decimal("5.00")]["total_tax"], Decimal("10.00"))

    def test_dashboard(self):
        self.client.force_authenticate(user=self.staff)

        response = self.client.get("/api/v1/reports/dashboard/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["today"]["invoice_count"], 2)
        self.assertEqual(response.data["receivables"], Decimal("1390"))
        self.assertEqual(response.data["low_stock_count"], 1)
        self.assertEqual(len(response.data["recent_invoices"]), 2)


class PosExportTests(TestCase):
    url = "/api/v1/reports/pos-export/"

    def setUp(self):
        self.client = APIClient()
        user_model = get_user_model()
        self.staff = user_model.objects.create_user(username="staff", password="pass1234", role="staff")
        self.admin = user_model.objects.create_user(username="owner", password="pass1234", role="admin")
        self.product = Product.objects.create(
            name="LED Bulb", hsn_code="8539", gst_rate=Decimal("18"), selling_price=Decimal("1000"), stock=Decimal("50")
        )
        self.cash_invoice = make_invoice(
            self.staff,
            [{"product": self.product, "quantity": 1}],
            payment_mode="cash",
            customer_details={"name": "Anita", "phone": "9000000001"},
            receipt_time="101500",
        )
        self.credit_invoice = make_invoice(self.staff, [{"product": self.product, "quantity": 1}], payment_mode="credit")
        self.today = timezone.localdate()
        self.params = {"from_date": self.today.isoformat(), "to_date": self.today.isoformat()}

    def test_api_key_access(self):
        response = self.client.get(self.url, self.params, HTTP_X_API_KEY="test-export-key")

        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.data["success"])
        self.assertEqual(len(response.data["transactions"]), 2)

    def test_wrong_api_key_is_rejected(self):
        with self.assertLogs("security.authorization", level="WARNING"):
            response = self.client.get(self.url, self.params, HTTP_X_API_KEY="guess")

        self.assertIn(response.status_code, (401, 403))

    def test_staff_session_is_rejected(self):
        self.client.force_authenticate(user=self.staff)

        response = self.client.get(self.url, self.params)

        self.assertEqual(response.status_code, 403)

    def test_admin_session_is_accepted(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.get(self.url, self.params)

        self.assertEqual(response.status_code, 200)

    def test_missing_or_malformed_dates(self):
        self.client.force_authenticate(user=self.admin)

        missing = self.client.get(self.url, {"from_date": self.today.isoformat()})
        malformed = self.client.get(self.url, {"from_date": "18-10-2026", "to_date": self.today.isoformat()})

        self.assertEqual(missing.status_code, 400)
        self.assertEqual(malformed.status_code, 400)

    def test_transaction_shape(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.get(self.url, self.params)

        transaction = response.data["transactions"][0]
        self.assertEqual(transaction["RCPT_NUM"], "INV-00001")
        self.assertEqual(transaction["RCPT_DT"], self.today.strftime("%Y%m%d"))
        self.assertEqual(transaction["BUSINESS_DT"], self.today.strftime("%Y%m%d"))
        self.assertEqual(transaction["RCPT_TM"], "101500")
        self.assertEqual(transaction["LOCATION_CODE"], "01")
        self.assertEqual(transaction["INV_AMT"], Decimal("1180"))
        self.assertEqual(transaction["TAX_AMT"], Decimal("180"))
        self.assertEqual(transaction["TRAN_STATUS"], "SALES")
        self.assertEqual(transaction["CUSTOMER_NAME"], "Anita")
        self.assertEqual(transaction["payments"], [{"PAYMENT_NAME": "CASH", "PAYMENT_AMT": Decimal("1180")}])
        item = transaction["items"][0]
        self.assertEqual(item["ITEM_NO"], 1)
        self.assertEqual(item["ITEM_CODE"], str(self.product.id))
        self.assertEqual(item["HSN_CODE"], "8539")
        self.assertEqual(item["CGST"], Decimal("90"))

    def test_credit_sale_reports_grand_total_as_payment(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.get(self.url, self.params)

        credit = response.data["transactions"][1]
        self.assertEqual(credit["payments"][0]["PAYMENT_NAME"], "CREDIT")
        self.assertEqual(credit["payments"][0]["PAYMENT_AMT"], Decimal("1180"))

    def test_receipt_time_falls_back_to_created_at(self):
        Invoice.objects.filter(pk=self.credit_invoice.pk).update(receipt_time="12:30")
        self.credit_invoice.refresh_from_db()
        self.client.force_authenticate(user=self.admin)

        response = self.client.get(self.url, self.params)

        expected = timezone.localtime(self.credit_invoice.created_at).strftime("%H%M%S")
        self.assertEqual(response.data["transactions"][1]["RCPT_TM"], expected)

    def test_summary_nets_out_returns(self):
        Invoice.objects.filter(pk=self.credit_invoice.pk).update(transaction_status=Invoice.TransactionStatus.RETURN)
        self.client.force_authenticate(user=self.admin)

        response = self.client.get(self.url, self.params)

        summary = response.data["summary"]
        self.assertEqual(summary["total_transactions"], 2)
        self.assertEqual(summary["total_sales"], 1)
        self.assertEqual(summary["total_returns"], 1)
        self.assertEqual(summary["total_amount"], Decimal("0"))
        self.assertEqual(summary["total_tax"], Decimal("0"))

    def test_payment_name_mapping(self):
        self.assertEqual(pos_payment_name("cash"), "CASH")
        self.assertEqual(pos_payment_name("UPI"), "OTHERS")
        self.assertEqual(pos_payment_name("card"), "CC")
        self.assertEqual(pos_payment_name("credit"), "CREDIT")
        self.assertEqual(pos_payment_name("wallet"), "OTHERS")
        self.assertEqual(pos_payment_name(None), "OTHERS")
