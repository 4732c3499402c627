import uuid

from django.conf import settings
from django.contrib.auth.models import AbstractUser
from django.db import models
from django.db.models import Q
from django.db.models.functions import Lower


class User(AbstractUser):
    class Role(models.TextChoices):
        STAFF = "staff", "Staff"
        ADMIN = "admin", "Admin"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    email = models.EmailField(blank=True)
    role = models.CharField(max_length=16, choices=Role.choices, default=Role.STAFF)

    class Meta(AbstractUser.Meta):
        constraints = [
            models.UniqueConstraint(
                Lower("email"),
                condition=~Q(email=""),
                name="core_user_email_ci_unique",
            )
        ]

    def save(self, *args, **kwargs):
        if self.email:
            self.email = self.email.strip().lower()
        super().save(*args, **kwargs)


class ApprovedEmail(models.Model):
    """Allowlist consulted before an account is created for an externally-authenticated email."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    email = models.EmailField(unique=True)
    role = models.CharField(max_length=16, choices=User.Role.choices, default=User.Role.STAFF)
    created_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name="+")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["email"]

    def save(self, *args, **kwargs):
        self.email = self.email.strip().lower()
        super().save(*args, **kwargs)

    @classmethod
    def lookup(cls, email):
        if not email:
            return None
        return cls.objects.filter(email=email.strip().lower()).first()


class Device(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=255)
    identifier = models.CharField(max_length=255, unique=True)
    last_seen_at = models.DateTimeField(null=True, blank=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=["is_active"], name="device_active_idx"),
        ]


class ShopSettings(models.Model):
    """Single-row shop configuration; also holds the invoice number counter."""

    SINGLETON_ID = 1

    id = models.PositiveSmallIntegerField(primary_key=True, default=SINGLETON_ID, editable=False)
    shop_name = models.CharField(max_length=255, default="My Shop")
    address = models.TextField(blank=True, default="")
    phone = models.CharField(max_length=64, blank=True, default="")
    email = models.EmailField(blank=True, default="")
    gstin = models.CharField(max_length=15, blank=True, default="")
    state_code = models.CharField(max_length=2)
    state_name = models.CharField(max_length=64, blank=True, default="")
    invoice_prefix = models.CharField(max_length=16)
    next_invoice_number = models.PositiveIntegerField(default=1)
    logo_url = models.URLField(blank=True, default="")
    bank_name = models.CharField(max_length=128, blank=True, default="")
    bank_account = models.CharField(max_length=64, blank=True, default="")
    bank_ifsc = models.CharField(max_length=16, blank=True, default="")
    upi_id = models.CharField(max_length=128, blank=True, default="")
    terms_and_conditions = models.TextField(blank=True, default="")
    location_code = models.CharField(max_length=16, blank=True, default="")
    terminal_id = models.CharField(max_length=16, blank=True, default="")
    current_shift = models.CharField(max_length=16, blank=True, default="")
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name_plural = "shop settings"

    @classmethod
    def load(cls):
        shop, _ = cls.objects.get_or_create(pk=cls.SINGLETON_ID, defaults=cls.initial_values())
        return shop

    @staticmethod
    def initial_values():
        return {
            "state_code": settings.GST_DEFAULT_STATE_CODE,
            "state_name": settings.GST_DEFAULT_STATE_NAME,
            "invoice_prefix": settings.INVOICE_DEFAULT_PREFIX,
            "location_code": settings.POS_DEFAULT_LOCATION_CODE,
            "terminal_id": settings.POS_DEFAULT_TERMINAL_ID,
            "current_shift": settings.POS_DEFAULT_SHIFT_NO,
        }


class AuditLog(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    actor = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True)
    device = models.ForeignKey(Device, on_delete=models.SET_NULL, null=True, blank=True)
    action = models.CharField(max_length=64)
    entity = models.CharField(max_length=64)
    entity_id = models.UUIDField(null=True, blank=True)
    before_snapshot = models.JSONField(null=True, blank=True)
    after_snapshot = models.JSONField(null=True, blank=True)
    event_id = models.UUIDField(null=True, blank=True)
    request_id = models.CharField(max_length=255, null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=["created_at"], name="auditlog_created_idx"),
            models.Index(fields=["action", "created_at"], name="auditlog_action_created_idx"),
            models.Index(fields=["entity", "created_at"], name="auditlog_entity_created_idx"),
            models.Index(fields=["actor", "created_at"], name="auditlog_actor_created_idx"),
        ]
