import uuid
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.test import TestCase
from rest_framework.test import APIClient

from core.models import AuditLog, Device, ShopSettings
from inventory.models import Product
from sales.models import Customer, Invoice, Payment
from sales.services import build_invoice_draft, commit_invoice
from sync.models import SyncEvent, SyncOutbox


class SyncErrorEnvelopeTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user = get_user_model().objects.create_user(username="sync-user", password="pass1234", role="staff")
        self.device = Device.objects.create(name="Counter 1", identifier="counter-1")

    def test_unauthenticated_error_uses_standard_envelope(self):
        response = self.client.post(
            "/api/v1/sync/pull",
            {"device_id": str(self.device.id), "cursor": 0, "limit": 5},
            format="json",
        )

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["code"], "not_authenticated")
        self.assertIn("message", response.json())
        self.assertIn("errors", response.json())
        self.assertEqual(response.json()["status"], 401)

    def test_sync_validation_error_uses_standard_envelope(self):
        self.client.force_authenticate(user=self.user)
        response = self.client.post(
            "/api/v1/sync/pull",
            {"device_id": str(self.device.id), "cursor": -1, "limit": 5},
            format="json",
        )

        self.assertEqual(response.status_code, 422)
        payload = response.json()
        self.assertEqual(payload["code"], "validation_error")
        self.assertEqual(payload["message"], "Validation failed.")
        self.assertEqual(payload["status"], 422)
        self.assertIn("cursor", payload["errors"])

    def test_sync_inactive_device_is_forbidden(self):
        self.client.force_authenticate(user=self.user)
        self.device.is_active = False
        self.device.save(update_fields=["is_active"])

        response = self.client.post(
            "/api/v1/sync/pull",
            {"device_id": str(self.device.id), "cursor": 0, "limit": 5},
            format="json",
        )

        self.assertEqual(response.status_code, 403)
        payload = response.json()
        self.assertEqual(payload["code"], "forbidden_device")
        self.assertEqual(payload["status"], 403)
        self.assertIn("device_id", payload["errors"])

    def test_sync_device_not_found_uses_standard_envelope(self):
        self.client.force_authenticate(user=self.user)

        response = self.client.post(
            "/api/v1/sync/pull",
            {"device_id": "00000000-0000-0000-0000-000000000000", "cursor": 0, "limit": 5},
            format="json",
        )

        self.assertEqual(response.status_code, 404)
        payload = response.json()
        self.assertEqual(payload["code"], "device_not_found")
        self.assertEqual(payload["status"], 404)
        self.assertIn("device_id", payload["errors"])


class SyncPushTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        user_model = get_user_model()
        self.staff = user_model.objects.create_user(username="staff", password="pass1234", role="staff")
        self.admin = user_model.objects.create_user(username="owner", password="pass1234", role="admin")
        self.device = Device.objects.create(name="Counter 1", identifier="counter-1")
        self.product = Product.objects.create(
            name="Basmati Rice 5kg", gst_rate=Decimal("5"), selling_price=Decimal("640"), stock=Decimal("20")
        )
        self.client.force_authenticate(user=self.staff)

    def _push(self, *events, validate_only=False):
        return self.client.post(
            "/api/v1/sync/push",
            {"device_id": str(self.device.id), "events": list(events), "validate_only": validate_only},
            format="json",
        )

    def _event(self, event_type, payload, event_id=None):
        return {
            "event_id": str(event_id or uuid.uuid4()),
            "event_type": event_type,
            "payload": payload,
            "created_at": "2025-01-01T12:00:00Z",
        }

    def _invoice_event(self, event_id=None, **overrides):
        payload = {
            "items": [{"product": str(self.product.id), "quantity": "2"}],
            "payment_mode": "cash",
        }
        payload.update(overrides)
        return self._event("invoice.create", payload, event_id)

    def test_invoice_event_goes_through_the_billing_engine(self):
        response = self._push(self._invoice_event(grand_total="1344.00"))

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["rejected"], [])
        ack = payload["acknowledged"][0]
        self.assertFalse(ack["duplicate"])
        self.assertEqual(ack["details"]["invoice_number"], "INV-00001")
        self.assertNotIn("grand_total_mismatch", ack["details"])

        invoice = Invoice.objects.get()
        self.assertEqual(invoice.grand_total, Decimal("1344.00"))
        self.assertEqual(invoice.device, self.device)
        self.assertEqual(invoice.user, self.staff)
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock, Decimal("18"))
        self.assertTrue(SyncOutbox.objects.filter(entity="invoice", entity_id=invoice.id).exists())
        self.assertTrue(AuditLog.objects.filter(action="invoice.create", device=self.device).exists())
        self.assertEqual(SyncEvent.objects.get().status, SyncEvent.Status.PROCESSED)
        self.assertEqual(payload["server_cursor"], SyncOutbox.objects.order_by("-id").first().id)

    def test_client_total_mismatch_is_reported_not_rejected(self):
        response = self._push(self._invoice_event(grand_total="1300.00"))

        ack = response.json()["acknowledged"][0]
        self.assertEqual(ack["details"]["grand_total_mismatch"], {"client": "1300.00", "server": "1344.00"})
        self.assertEqual(Invoice.objects.get().grand_total, Decimal("1344.00"))

    def test_replayed_event_creates_one_invoice(self):
        event = self._invoice_event()

        first = self._push(event)
        second = self._push(event)

        self.assertEqual(Invoice.objects.count(), 1)
        self.assertEqual(ShopSettings.load().next_invoice_number, 2)
        replay = second.json()["acknowledged"][0]
        self.assertTrue(replay["duplicate"])
        self.assertEqual(replay["details"]["invoice_number"], first.json()["acknowledged"][0]["details"]["invoice_number"])
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock, Decimal("18"))

    def test_invalid_invoice_event_is_rejected_with_stable_code(self):
        event = self._invoice_event(items=[])

        response = self._push(event)
        replay = self._push(event)

        self.assertEqual(response.json()["acknowledged"], [])
        rejection = response.json()["rejected"][0]
        self.assertEqual(rejection["event_id"], event["event_id"])
        self.assertEqual(rejection["code"], "validation_failed")
        self.assertIn("items", rejection["details"])
        self.assertEqual(replay.json()["rejected"][0]["code"], "validation_failed")
        self.assertEqual(Invoice.objects.count(), 0)
        self.assertEqual(SyncEvent.objects.get().status, SyncEvent.Status.REJECTED)

    def test_validate_only_leaves_no_trace(self):
        response = self._push(self._invoice_event(), validate_only=True)

        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.json()["validate_only"])
        self.assertEqual(len(response.json()["acknowledged"]), 1)
        self.assertEqual(Invoice.objects.count(), 0)
        self.assertEqual(SyncEvent.objects.count(), 0)
        self.assertEqual(SyncOutbox.objects.count(), 0)
        self.assertEqual(ShopSettings.load().next_invoice_number, 1)
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock, Decimal("20"))

    def test_unsupported_event_type(self):
        response = self._push(self._event("stock.transfer.create", {}))

        rejection = response.json()["rejected"][0]
        self.assertEqual(rejection["code"], "validation_failed")
        self.assertIn("event_type", rejection["details"])

    def test_payment_event_settles_credit_invoice(self):
        draft = build_invoice_draft(items=[{"product": self.product, "quantity": 1}], payment_mode="credit")
        invoice, _ = commit_invoice(draft, user=self.staff)

        response = self._push(
            self._event("payment.create", {"invoice_id": str(invoice.id), "amount": "672.00", "mode": "upi"})
        )

        self.assertEqual(response.json()["rejected"], [])
        invoice.refresh_from_db()
        self.assertEqual(invoice.status, Invoice.Status.PAID)
        self.assertEqual(invoice.due_amount, Decimal("0.00"))
        payment = Payment.objects.get(invoice=invoice)
        self.assertEqual(payment.device, self.device)

    def test_overpayment_event_is_rejected(self):
        draft = build_invoice_draft(items=[{"product": self.product, "quantity": 1}], payment_mode="credit")
        invoice, _ = commit_invoice(draft, user=self.staff)

        response = self._push(
            self._event("payment.create", {"invoice_id": str(invoice.id), "amount": "1000.00", "mode": "cash"})
        )

        rejection = response.json()["rejected"][0]
        self.assertEqual(rejection["code"], "validation_failed")
        self.assertIn("amount", rejection["details"])
        self.assertFalse(Payment.objects.filter(invoice=invoice).exists())

    def test_customer_upsert_keeps_client_id(self):
        customer_id = str(uuid.uuid4())

        response = self._push(
            self._event(
                "customer.upsert",
                {"customer_id": customer_id, "name": "Patil Stores", "gstin": "27aapfu0939f1zv", "state_code": "27"},
            )
        )

        self.assertEqual(response.json()["rejected"], [])
        customer = Customer.objects.get(id=customer_id)
        self.assertEqual(customer.gstin, "27AAPFU0939F1ZV")
        self.assertTrue(SyncOutbox.objects.filter(entity="customer", entity_id=customer_id, op="upsert").exists())

    def test_staff_cannot_edit_existing_customer_offline(self):
        customer = Customer.objects.create(name="Patil Stores")

        response = self._push(
            self._event("customer.upsert", {"customer_id": str(customer.id), "name": "Renamed"})
        )

        self.assertEqual(response.json()["rejected"][0]["code"], "forbidden")
        customer.refresh_from_db()
        self.assertEqual(customer.name, "Patil Stores")

    def test_admin_deletes_customer(self):
        customer = Customer.objects.create(name="Patil Stores")
        self.client.force_authenticate(user=self.admin)

        response = self._push(self._event("customer.delete", {"customer_id": str(customer.id)}))

        self.assertEqual(response.json()["rejected"], [])
        self.assertFalse(Customer.objects.filter(id=customer.id).exists())
        self.assertTrue(SyncOutbox.objects.filter(entity="customer", entity_id=customer.id, op="delete").exists())

    def test_bad_identifier_is_a_validation_failure(self):
        response = self._push(self._event("customer.delete", {"customer_id": "not-a-uuid"}))

        rejection = response.json()["rejected"][0]
        self.assertEqual(rejection["code"], "validation_failed")

    def test_product_upsert_requires_catalog_manage(self):
        product_id = str(uuid.uuid4())
        event = {"product_id": product_id, "name": "Sugar 1kg", "selling_price": "48.00", "gst_rate": "5"}

        staff_response = self._push(self._event("product.upsert", event))
        self.client.force_authenticate(user=self.admin)
        admin_response = self._push(self._event("product.upsert", event))

        self.assertEqual(staff_response.json()["rejected"][0]["code"], "forbidden")
        self.assertEqual(admin_response.json()["rejected"], [])
        self.assertEqual(Product.objects.get(id=product_id).selling_price, Decimal("48.00"))


class SyncPullTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user = get_user_model().objects.create_user(username="staff", password="pass1234", role="staff")
        self.device = Device.objects.create(name="Counter 1", identifier="counter-1")
        self.client.force_authenticate(user=self.user)
        self.rows = [
            SyncOutbox.objects.create(
                entity="product",
                entity_id=uuid.uuid4(),
                op="upsert",
                payload={"entity": "product", "op": "upsert", "entity_id": "x", "payload": {"index": index}},
            )
            for index in range(3)
        ]

    def _pull(self, cursor, limit):
        return self.client.post(
            "/api/v1/sync/pull",
            {"device_id": str(self.device.id), "cursor": cursor, "limit": limit},
            format="json",
        )

    def test_pull_pages_through_outbox(self):
        first = self._pull(0, 2).json()

        self.assertTrue(first["has_more"])
        self.assertEqual([update["payload"]["index"] for update in first["updates"]], [0, 1])
        self.assertEqual(first["server_cursor"], self.rows[1].id)

        second = self._pull(first["server_cursor"], 2).json()

        self.assertFalse(second["has_more"])
        self.assertEqual([update["payload"]["index"] for update in second["updates"]], [2])

    def test_pull_at_head_returns_cursor(self):
        response = self._pull(self.rows[-1].id, 10).json()

        self.assertEqual(response["updates"], [])
        self.assertEqual(response["server_cursor"], self.rows[-1].id)
        self.assertFalse(response["has_more"])

    def test_pull_marks_device_seen(self):
        self._pull(0, 1)

        self.device.refresh_from_db()
        self.assertIsNotNone(self.device.last_seen_at)
