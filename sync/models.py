import uuid

from django.db import models

from core.models import Device, User


class SyncEvent(models.Model):
    """An event pushed by an offline terminal, kept so replays are answered from the stored outcome."""

    class Status(models.TextChoices):
        ACCEPTED = "accepted", "Accepted"
        REJECTED = "rejected", "Rejected"
        PROCESSED = "processed", "Processed"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    device = models.ForeignKey(Device, on_delete=models.PROTECT)
    user = models.ForeignKey(User, on_delete=models.PROTECT)
    event_id = models.UUIDField()
    event_type = models.CharField(max_length=64)
    payload = models.JSONField()
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.ACCEPTED)
    outcome = models.JSONField(null=True, blank=True)
    client_created_at = models.DateTimeField(null=True, blank=True)
    processed_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=["device", "created_at"], name="syncevent_device_created_idx"),
        ]
        constraints = [
            models.UniqueConstraint(fields=["event_id", "device"], name="uniq_syncevent_event_device"),
        ]


class SyncOutbox(models.Model):
    id = models.BigAutoField(primary_key=True)
    entity = models.CharField(max_length=64)
    entity_id = models.UUIDField()
    op = models.CharField(max_length=16)
    payload = models.JSONField()
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=["entity", "id"], name="syncoutbox_entity_id_idx"),
        ]
