from common.audit import create_audit_log_from_request
from common.utils import emit_outbox


class OutboxMutationMixin:
    """Write an outbox row and an audit entry for every create, update and delete."""

    outbox_entity = None
    audit_entity = None

    def _audit(self, *, action, instance, before_snapshot=None, after_snapshot=None, event_id=None):
        create_audit_log_from_request(
            self.request,
            action=action,
            entity=self.audit_entity,
            entity_id=instance.id,
            before_snapshot=before_snapshot,
            after_snapshot=after_snapshot,
            event_id=event_id,
            device=getattr(instance, "device", None),
        )

    def _emit(self, instance, op, payload=None):
        emit_outbox(
            entity=self.outbox_entity,
            entity_id=instance.id,
            op=op,
            payload=payload if payload is not None else self.get_serializer(instance).data,
        )

    def perform_create(self, serializer):
        instance = serializer.save()
        snapshot = self.get_serializer(instance).data
        self._emit(instance, "upsert", snapshot)
        self._audit(action=f"{self.audit_entity}.create", instance=instance, after_snapshot=snapshot)

    def perform_update(self, serializer):
        before_snapshot = self.get_serializer(serializer.instance).data
        instance = serializer.save()
        snapshot = self.get_serializer(instance).data
        self._emit(instance, "upsert", snapshot)
        self._audit(
            action=f"{self.audit_entity}.update",
            instance=instance,
            before_snapshot=before_snapshot,
            after_snapshot=snapshot,
        )

    def perform_destroy(self, instance):
        before_snapshot = self.get_serializer(instance).data
        self._emit(instance, "delete", {"id": str(instance.id)})
        self._audit(action=f"{self.audit_entity}.delete", instance=instance, before_snapshot=before_snapshot)
        instance.delete()
