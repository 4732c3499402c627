from io import StringIO

from django.contrib.auth import get_user_model
from django.core.management import call_command
from django.test import TestCase
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import AccessToken

from core.models import ApprovedEmail, AuditLog, Device, ShopSettings
from inventory.models import Product
from sales.models import Customer


class RegistrationTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        ApprovedEmail.objects.create(email="Owner@Example.com", role="admin")

    def _register(self, email):
        return self.client.post(
            "/api/v1/register/",
            {"username": "new-user", "email": email, "password": "billing-pass-2024"},
            format="json",
        )

    def test_approved_email_registers_with_role_from_allowlist(self):
        response = self._register("owner@example.com")

        self.assertEqual(response.status_code, 201)
        user = get_user_model().objects.get(username="new-user")
        self.assertEqual(user.role, "admin")
        self.assertEqual(user.email, "owner@example.com")
        self.assertTrue(AuditLog.objects.filter(action="user.create", entity_id=user.id).exists())

    def test_unapproved_email_is_rejected(self):
        response = self._register("stranger@example.com")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "validation_error")
        self.assertIn("email", response.json()["errors"])
        self.assertFalse(get_user_model().objects.filter(username="new-user").exists())

    def test_duplicate_email_is_rejected_case_insensitively(self):
        get_user_model().objects.create_user(username="existing", email="owner@example.com", password="x")

        response = self._register("OWNER@example.com")

        self.assertEqual(response.status_code, 400)


class TokenTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user = get_user_model().objects.create_user(
            username="cashier",
            email="cashier@example.com",
            password="pass1234",
            role="staff",
        )

    def test_login_by_username_embeds_role_claim(self):
        response = self.client.post("/api/v1/token/", {"username": "cashier", "password": "pass1234"}, format="json")

        self.assertEqual(response.status_code, 200)
        token = AccessToken(response.json()["access"])
        self.assertEqual(token["role"], "staff")

    def test_login_by_email(self):
        response = self.client.post(
            "/api/v1/token/", {"username": "Cashier@Example.com", "password": "pass1234"}, format="json"
        )

        self.assertEqual(response.status_code, 200)
        self.assertIn("refresh", response.json())

    def test_wrong_password_uses_error_envelope(self):
        response = self.client.post("/api/v1/token/", {"username": "cashier", "password": "nope"}, format="json")

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["code"], "authentication_failed")

    def test_me_returns_current_user(self):
        self.client.force_authenticate(user=self.user)

        response = self.client.get("/api/v1/me/")

        self.assertEqual(response.json()["username"], "cashier")
        self.assertNotIn("password", response.json())


class UserManagementTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        user_model = get_user_model()
        self.staff = user_model.objects.create_user(username="staff", password="pass1234", role="staff")
        self.admin = user_model.objects.create_user(username="owner", password="pass1234", role="admin")

    def test_staff_cannot_manage_users_and_denial_is_logged(self):
        self.client.force_authenticate(user=self.staff)

        with self.assertLogs("security.authorization", level="WARNING") as cm:
            response = self.client.get("/api/v1/admin/users/")

        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["code"], "permission_denied")
        self.assertTrue(any("permission_denied" in message for message in cm.output))

    def test_admin_creates_user_with_hashed_password(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.post(
            "/api/v1/admin/users/",
            {"username": "counter-2", "password": "counter-pass-99", "role": "staff"},
            format="json",
        )

        self.assertEqual(response.status_code, 201)
        user = get_user_model().objects.get(username="counter-2")
        self.assertTrue(user.check_password("counter-pass-99"))
        self.assertTrue(AuditLog.objects.filter(action="user.create", entity_id=user.id).exists())

    def test_admin_promotes_user(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.patch(f"/api/v1/admin/users/{self.staff.id}/", {"role": "admin"}, format="json")

        self.assertEqual(response.status_code, 200)
        self.staff.refresh_from_db()
        self.assertEqual(self.staff.role, "admin")

    def test_deleting_user_deactivates(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.delete(f"/api/v1/admin/users/{self.staff.id}/")

        self.assertEqual(response.status_code, 204)
        self.staff.refresh_from_db()
        self.assertFalse(self.staff.is_active)

    def test_admin_manages_allowlist(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.post(
            "/api/v1/admin/approved-emails/", {"email": " Clerk@Example.com ", "role": "staff"}, format="json"
        )
        duplicate = self.client.post(
            "/api/v1/admin/approved-emails/", {"email": "clerk@example.com", "role": "admin"}, format="json"
        )

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["email"], "clerk@example.com")
        self.assertEqual(duplicate.status_code, 400)
        entry = ApprovedEmail.objects.get(email="clerk@example.com")
        self.assertEqual(entry.created_by, self.admin)


class DeviceTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        user_model = get_user_model()
        self.staff = user_model.objects.create_user(username="staff", password="pass1234", role="staff")
        self.admin = user_model.objects.create_user(username="owner", password="pass1234", role="admin")

    def test_staff_can_list_devices(self):
        Device.objects.create(name="Counter 1", identifier="counter-1")
        self.client.force_authenticate(user=self.staff)

        response = self.client.get("/api/v1/devices/")

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(sorted(payload.keys()), ["count", "next", "previous", "results"])
        self.assertEqual(payload["count"], 1)

    def test_staff_cannot_register_device(self):
        self.client.force_authenticate(user=self.staff)

        with self.assertLogs("security.authorization", level="WARNING"):
            response = self.client.post(
                "/api/v1/devices/", {"name": "Rogue", "identifier": "rogue"}, format="json"
            )

        self.assertEqual(response.status_code, 403)

    def test_device_create_writes_audit_log_with_request_id(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.post(
            "/api/v1/devices/",
            {"name": "Counter 2", "identifier": "counter-2", "is_active": True},
            format="json",
            HTTP_X_REQUEST_ID="req-123",
        )

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response["X-Request-ID"], "req-123")
        self.assertTrue(AuditLog.objects.filter(action="device.create", entity="device", request_id="req-123").exists())

    def test_deleting_device_deactivates(self):
        device = Device.objects.create(name="Counter 3", identifier="counter-3")
        self.client.force_authenticate(user=self.admin)

        response = self.client.delete(f"/api/v1/devices/{device.id}/")

        self.assertEqual(response.status_code, 204)
        device.refresh_from_db()
        self.assertFalse(device.is_active)


class ShopSettingsTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        user_model = get_user_model()
        self.staff = user_model.objects.create_user(username="staff", password="pass1234", role="staff")
        self.admin = user_model.objects.create_user(username="owner", password="pass1234", role="admin")

    def test_settings_are_created_from_configured_defaults(self):
        self.client.force_authenticate(user=self.staff)

        response = self.client.get("/api/v1/settings/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["state_code"], "27")
        self.assertEqual(response.json()["invoice_prefix"], "INV")
        self.assertEqual(response.json()["next_invoice_number"], 1)
        self.assertEqual(response.json()["terminal_id"], "01")

    def test_staff_cannot_change_numbering(self):
        self.client.force_authenticate(user=self.staff)

        with self.assertLogs("security.authorization", level="WARNING"):
            response = self.client.patch("/api/v1/settings/", {"invoice_prefix": "HACK"}, format="json")

        self.assertEqual(response.status_code, 403)
        self.assertEqual(ShopSettings.load().invoice_prefix, "INV")

    def test_admin_updates_settings(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.patch(
            "/api/v1/settings/",
            {"invoice_prefix": "SHOP", "next_invoice_number": 500, "gstin": "27aapfu0939f1zv"},
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        shop = ShopSettings.load()
        self.assertEqual(shop.invoice_prefix, "SHOP")
        self.assertEqual(shop.next_invoice_number, 500)
        self.assertEqual(shop.gstin, "27AAPFU0939F1ZV")
        self.assertTrue(AuditLog.objects.filter(action="settings.update").exists())

    def test_invalid_state_code_is_rejected(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.patch("/api/v1/settings/", {"state_code": "MH"}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertIn("state_code", response.json()["errors"])


class AuditLogTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        user_model = get_user_model()
        self.staff = user_model.objects.create_user(username="staff", password="pass1234", role="staff")
        self.admin = user_model.objects.create_user(username="owner", password="pass1234", role="admin")

    def test_audit_logs_are_read_only(self):
        self.client.force_authenticate(user=self.admin)
        log = AuditLog.objects.create(action="test.action", entity="test", actor=self.admin)

        patch_res = self.client.patch(f"/api/v1/admin/audit-logs/{log.id}/", {"action": "changed"}, format="json")
        delete_res = self.client.delete(f"/api/v1/admin/audit-logs/{log.id}/")

        self.assertEqual(patch_res.status_code, 405)
        self.assertEqual(delete_res.status_code, 405)

    def test_filter_and_export(self):
        AuditLog.objects.create(action="invoice.create", entity="invoice", actor=self.staff)
        AuditLog.objects.create(action="product.update", entity="product", actor=self.admin)
        self.client.force_authenticate(user=self.admin)

        listing = self.client.get("/api/v1/admin/audit-logs/", {"entity": "invoice"})
        export = self.client.get("/api/v1/admin/audit-logs/export/")

        self.assertEqual([row["action"] for row in listing.json()["results"]], ["invoice.create"])
        self.assertEqual(export["Content-Type"], "text/csv")
        self.assertIn("product.update", export.content.decode())

    def test_staff_cannot_read_audit_logs(self):
        self.client.force_authenticate(user=self.staff)

        with self.assertLogs("security.authorization", level="WARNING"):
            response = self.client.get("/api/v1/admin/audit-logs/")

        self.assertEqual(response.status_code, 403)


class HealthTests(TestCase):
    def test_health_endpoints_are_public(self):
        client = APIClient()

        self.assertEqual(client.get("/api/v1/healthz/").json()["status"], "ok")
        self.assertEqual(client.get("/api/v1/readyz/").json()["status"], "ready")


class SeedDemoDataTests(TestCase):
    def test_seeding_is_idempotent(self):
        call_command("seed_demo_data", stdout=StringIO())
        call_command("seed_demo_data", stdout=StringIO())

        user_model = get_user_model()
        self.assertEqual(user_model.objects.get(username="admin").role, "admin")
        self.assertEqual(user_model.objects.get(username="cashier").role, "staff")
        self.assertEqual(ApprovedEmail.objects.count(), 2)
        self.assertEqual(Device.objects.count(), 1)
        self.assertEqual(Product.objects.count(), 8)
        self.assertEqual(Customer.objects.count(), 3)
        self.assertEqual(ShopSettings.load().shop_name, "Demo Kirana & General")
