import uuid
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.test import SimpleTestCase, TestCase, override_settings
from rest_framework.test import APIClient

from core.models import AuditLog
from inventory.models import Product, StockMove
from inventory.services import (
    SALE_SOURCE_REF_TYPE,
    adjust_stock,
    apply_sale_quantity,
    decrement_stock_for_sale,
    low_stock_products,
)
from sync.models import SyncOutbox


class SaleQuantityTests(SimpleTestCase):
    def test_sale_within_stock(self):
        self.assertEqual(apply_sale_quantity(Decimal("10"), Decimal("4"), allow_negative=False), Decimal("6"))

    def test_oversell_clamps_to_zero(self):
        self.assertEqual(apply_sale_quantity(Decimal("3"), Decimal("5"), allow_negative=False), Decimal("0"))

    def test_oversell_goes_negative_when_allowed(self):
        self.assertEqual(apply_sale_quantity(Decimal("3"), Decimal("5"), allow_negative=True), Decimal("-2"))

    def test_sale_never_raises_a_negative_balance(self):
        self.assertEqual(apply_sale_quantity(Decimal("-4"), Decimal("2"), allow_negative=False), Decimal("-4"))

    def test_sale_from_zero_stays_at_zero(self):
        self.assertEqual(apply_sale_quantity(Decimal("0"), Decimal("2"), allow_negative=False), Decimal("0"))

    @override_settings(INVENTORY_ALLOW_NEGATIVE_STOCK=True)
    def test_policy_defaults_to_setting(self):
        self.assertEqual(apply_sale_quantity(Decimal("1"), Decimal("2")), Decimal("-1"))


class StockServiceTests(TestCase):
    def setUp(self):
        self.product = Product.objects.create(
            name="Notebook",
            sku="NB-01",
            selling_price=Decimal("40.00"),
            gst_rate=Decimal("12"),
            stock=Decimal("10"),
            low_stock_threshold=Decimal("5"),
        )

    def test_decrement_is_idempotent_per_line(self):
        line_id = uuid.uuid4()

        first = decrement_stock_for_sale(self.product.id, Decimal("3"), source_ref_id=line_id)
        second = decrement_stock_for_sale(self.product.id, Decimal("3"), source_ref_id=line_id)

        self.assertIsNotNone(first)
        self.assertIsNone(second)
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock, Decimal("7"))
        move = StockMove.objects.get(product=self.product)
        self.assertEqual(move.quantity, Decimal("-3"))
        self.assertEqual(move.stock_after, Decimal("7"))
        self.assertEqual(move.source_ref_type, SALE_SOURCE_REF_TYPE)

    def test_sale_against_negative_stock_keeps_the_balance(self):
        adjust_stock(self.product, Decimal("-14"))

        with self.assertLogs("inventory.services", level="WARNING") as logs:
            move = decrement_stock_for_sale(self.product.id, Decimal("2"), source_ref_id=uuid.uuid4())

        self.product.refresh_from_db()
        self.assertEqual(self.product.stock, Decimal("-4"))
        self.assertEqual(move.stock_after, Decimal("-4"))
        self.assertTrue(any("stock_oversold_clamped" in line for line in logs.output))

    def test_decrement_for_missing_product_is_skipped(self):
        with self.assertLogs("inventory.services", level="WARNING"):
            move = decrement_stock_for_sale(uuid.uuid4(), Decimal("1"), source_ref_id=uuid.uuid4())

        self.assertIsNone(move)
        self.assertEqual(StockMove.objects.count(), 0)

    def test_adjust_stock_records_move(self):
        move = adjust_stock(self.product, Decimal("-2.5"))

        self.product.refresh_from_db()
        self.assertEqual(self.product.stock, Decimal("7.5"))
        self.assertEqual(move.reason, StockMove.Reason.ADJUSTMENT)
        self.assertEqual(move.stock_after, Decimal("7.5"))

    def test_low_stock_uses_threshold_and_skips_inactive(self):
        low = Product.objects.create(
            name="Eraser", selling_price=Decimal("5"), stock=Decimal("2"), low_stock_threshold=Decimal("5")
        )
        Product.objects.create(
            name="Retired pen",
            selling_price=Decimal("5"),
            stock=Decimal("0"),
            low_stock_threshold=Decimal("5"),
            is_active=False,
        )
        Product.objects.create(
            name="Exactly at threshold",
            selling_price=Decimal("5"),
            stock=Decimal("5"),
            low_stock_threshold=Decimal("5"),
        )

        names = [product.name for product in low_stock_products()]

        self.assertEqual(names, [low.name, "Exactly at threshold"])


class ProductApiTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        user_model = get_user_model()
        self.staff = user_model.objects.create_user(username="staff", password="pass1234", role="staff")
        self.admin = user_model.objects.create_user(username="owner", password="pass1234", role="admin")
        self.product = Product.objects.create(
            name="Basmati Rice 5kg",
            sku="RICE-5",
            hsn_code="1006",
            selling_price=Decimal("640.00"),
            gst_rate=Decimal("5"),
            stock=Decimal("20"),
            unit="Bag",
        )

    def _payload(self, **overrides):
        payload = {
            "name": "Toor Dal 1kg",
            "sku": "DAL-1",
            "hsn_code": "0713",
            "gst_rate": "5.00",
            "selling_price": "160.00",
            "purchase_price": "140.00",
            "stock": "50",
            "low_stock_threshold": "10",
            "unit": "Kg",
        }
        payload.update(overrides)
        return payload

    def test_staff_can_list_products(self):
        self.client.force_authenticate(user=self.staff)

        response = self.client.get("/api/v1/products/")

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(sorted(payload.keys()), ["count", "next", "previous", "results"])
        self.assertEqual(payload["results"][0]["id"], str(self.product.id))

    def test_staff_cannot_create_product(self):
        self.client.force_authenticate(user=self.staff)

        with self.assertLogs("security.authorization", level="WARNING"):
            response = self.client.post("/api/v1/products/", self._payload(), format="json")

        self.assertEqual(response.status_code, 403)
        self.assertFalse(Product.objects.filter(sku="DAL-1").exists())

    def test_admin_create_emits_outbox_and_audit(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.post("/api/v1/products/", self._payload(), format="json")

        self.assertEqual(response.status_code, 201)
        product = Product.objects.get(sku="DAL-1")
        self.assertEqual(product.gst_rate, Decimal("5.00"))
        self.assertTrue(SyncOutbox.objects.filter(entity="product", entity_id=product.id, op="upsert").exists())
        self.assertTrue(AuditLog.objects.filter(action="product.create", entity_id=product.id).exists())

    def test_duplicate_sku_is_rejected(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.post("/api/v1/products/", self._payload(sku="RICE-5"), format="json")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "validation_error")
        self.assertIn("sku", response.json()["errors"])

    def test_blank_sku_is_stored_as_null(self):
        self.client.force_authenticate(user=self.admin)

        first = self.client.post("/api/v1/products/", self._payload(name="Loose A", sku=""), format="json")
        second = self.client.post("/api/v1/products/", self._payload(name="Loose B", sku=""), format="json")

        self.assertEqual(first.status_code, 201)
        self.assertEqual(second.status_code, 201)
        self.assertEqual(Product.objects.filter(sku__isnull=True).count(), 2)

    def test_gst_rate_out_of_range_is_rejected(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.post("/api/v1/products/", self._payload(gst_rate="120"), format="json")

        self.assertEqual(response.status_code, 400)
        self.assertIn("gst_rate", response.json()["errors"])

    def test_search_matches_name_or_sku(self):
        Product.objects.create(name="Sugar 1kg", sku="SUG-1", selling_price=Decimal("48.00"))
        self.client.force_authenticate(user=self.staff)

        by_name = self.client.get("/api/v1/products/", {"search": "basmati"})
        by_sku = self.client.get("/api/v1/products/", {"search": "SUG"})

        self.assertEqual([item["sku"] for item in by_name.json()["results"]], ["RICE-5"])
        self.assertEqual([item["sku"] for item in by_sku.json()["results"]], ["SUG-1"])

    def test_low_stock_listing(self):
        Product.objects.create(
            name="Salt", selling_price=Decimal("20"), stock=Decimal("3"), low_stock_threshold=Decimal("10")
        )
        self.client.force_authenticate(user=self.staff)

        response = self.client.get("/api/v1/products/low-stock/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual([item["name"] for item in response.json()], ["Salt"])
        self.assertTrue(response.json()[0]["is_low_stock"])

    def test_adjust_stock(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.post(
            f"/api/v1/products/{self.product.id}/adjust-stock/", {"delta": "-4"}, format="json"
        )

        self.assertEqual(response.status_code, 201)
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock, Decimal("16"))
        self.assertTrue(AuditLog.objects.filter(action="product.stock_adjust", entity_id=self.product.id).exists())

        moves = self.client.get(f"/api/v1/products/{self.product.id}/stock-moves/")
        self.assertEqual(moves.json()["count"], 1)

    def test_zero_adjustment_is_rejected(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.post(
            f"/api/v1/products/{self.product.id}/adjust-stock/", {"delta": "0"}, format="json"
        )

        self.assertEqual(response.status_code, 400)

    def test_delete_unused_product(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.delete(f"/api/v1/products/{self.product.id}/")

        self.assertEqual(response.status_code, 204)
        self.assertFalse(Product.objects.filter(id=self.product.id).exists())
        self.assertTrue(SyncOutbox.objects.filter(entity="product", entity_id=self.product.id, op="delete").exists())

    def test_delete_product_with_history_deactivates_it(self):
        adjust_stock(self.product, Decimal("1"))
        self.client.force_authenticate(user=self.admin)

        response = self.client.delete(f"/api/v1/products/{self.product.id}/")

        self.assertEqual(response.status_code, 204)
        self.product.refresh_from_db()
        self.assertFalse(self.product.is_active)
        self.assertTrue(AuditLog.objects.filter(action="product.deactivate", entity_id=self.product.id).exists())
