from decimal import Decimal

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand
from django.db import transaction

from core.models import ApprovedEmail, Device, ShopSettings
from inventory.models import Product
from sales.models import Customer

DEMO_PRODUCTS = [
    # name, sku, hsn, gst, selling price, stock, unit
    ("Basmati Rice 5kg", "RICE-5", "1006", "5", "640.00", "40", "Bag"),
    ("Toor Dal 1kg", "DAL-1", "0713", "5", "160.00", "60", "Kg"),
    ("Sunflower Oil 1L", "OIL-1", "1512", "5", "145.00", "8", "Btl"),
    ("Bath Soap 100g", "SOAP-100", "3401", "18", "42.00", "120", "Pcs"),
    ("Notebook A4", "NB-A4", "4820", "12", "55.00", "3", "Pcs"),
    ("Steel Tiffin Box", "TIFFIN-3", "7323", "12", "499.00", "15", "Pcs"),
    ("LED Bulb 9W", "LED-9", "8539", "18", "99.00", "50", "Pcs"),
    ("Wrist Watch", "WATCH-01", "9102", "18", "1499.00", "5", "Pcs"),
]

DEMO_CUSTOMERS = [
    # name, phone, gstin, state code, state name
    ("Patil General Stores", "9822000001", "27AAPFU0939F1ZV", "27", "Maharashtra"),
    ("Sharma Traders", "9811000002", "07AAACS1234A1Z5", "07", "Delhi"),
    ("Ramesh Kulkarni", "9850000003", "", "27", "Maharashtra"),
]


class Command(BaseCommand):
    help = "Seed demo shop data (settings, users, a terminal, products, customers) for local development."

    @transaction.atomic
    def handle(self, *args, **options):
        User = get_user_model()

        shop = ShopSettings.load()
        if shop.shop_name == "My Shop":
            shop.shop_name = "Demo Kirana & General"
            shop.address = "12 Station Road, Pune"
            shop.phone = "020-2555-0101"
            shop.gstin = "27AABCD1234E1Z5"
            shop.save(update_fields=["shop_name", "address", "phone", "gstin", "updated_at"])

        users = [
            ("admin", "admin@example.com", User.Role.ADMIN, "admin1234"),
            ("cashier", "cashier@example.com", User.Role.STAFF, "cashier1234"),
        ]
        for username, email, role, password in users:
            ApprovedEmail.objects.get_or_create(email=email, defaults={"role": role})
            user, created = User.objects.get_or_create(
                username=username,
                defaults={
                    "email": email,
                    "role": role,
                    "is_staff": role == User.Role.ADMIN,
                    "is_superuser": role == User.Role.ADMIN,
                    "is_active": True,
                },
            )
            if created:
                user.set_password(password)
                user.save(update_fields=["password"])

        Device.objects.get_or_create(
            identifier="counter-1",
            defaults={"name": "Billing Counter 1", "is_active": True},
        )

        for name, sku, hsn, gst_rate, price, stock, unit in DEMO_PRODUCTS:
            Product.objects.get_or_create(
                sku=sku,
                defaults={
                    "name": name,
                    "hsn_code": hsn,
                    "gst_rate": Decimal(gst_rate),
                    "selling_price": Decimal(price),
                    "purchase_price": (Decimal(price) * Decimal("0.8")).quantize(Decimal("0.01")),
                    "stock": Decimal(stock),
                    "unit": unit,
                },
            )

        for name, phone, gstin, state_code, state_name in DEMO_CUSTOMERS:
            Customer.objects.get_or_create(
                name=name,
                phone=phone,
                defaults={"gstin": gstin or None, "state_code": state_code, "state_name": state_name},
            )

        self.stdout.write(self.style.SUCCESS("Demo data seeded."))
