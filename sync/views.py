import logging

from django.db import IntegrityError, transaction
from django.utils import timezone
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from common.permissions import RoleCapabilityPermission
from sync.models import SyncEvent, SyncOutbox
from sync.permissions import (
    get_permitted_device,
    validation_failed_response,
)
from sync.serializers import SyncPullSerializer, SyncPushSerializer
from sync.services import (
    REJECT_CODE_CONFLICT,
    process_sync_event,
)

logger = logging.getLogger(__name__)


def _rejection(event_id, reason, details):
    return {
        "event_id": str(event_id),
        "reason": reason,
        "code": reason,
        "details": details or {},
    }


def _acknowledgement(event_id, details, *, duplicate=False):
    return {
        "event_id": str(event_id),
        "duplicate": duplicate,
        "details": details or {},
    }


class SyncPushView(APIView):
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"post": "sync.access"}

    def post(self, request):
        serializer = SyncPushSerializer(data=request.data)
        if not serializer.is_valid():
            return validation_failed_response(serializer.errors)

        device_id = serializer.validated_data["device_id"]
        events = serializer.validated_data["events"]
        validate_only = serializer.validated_data.get("validate_only", False)

        device, error_response = get_permitted_device(device_id)
        if error_response is not None:
            return error_response

        acknowledged = []
        rejected = []

        for event in events:
            try:
                with transaction.atomic():
                    if validate_only:
                        sync_event = SyncEvent(
                            event_id=event["event_id"],
                            device=device,
                            user=request.user,
                            event_type=event["event_type"],
                            payload=event["payload"],
                        )
                    else:
                        sync_event, created = SyncEvent.objects.get_or_create(
                            event_id=event["event_id"],
                            device=device,
                            defaults={
                                "user": request.user,
                                "event_type": event["event_type"],
                                "payload": event["payload"],
                                "client_created_at": event.get("created_at"),
                            },
                        )
                        if not created:
                            # Replays answer with the first outcome.
                            outcome = sync_event.outcome or {}
                            if sync_event.status == SyncEvent.Status.REJECTED:
                                rejected.append(_rejection(event["event_id"], outcome.get("reason"), outcome.get("details")))
                            else:
                                acknowledged.append(_acknowledgement(event["event_id"], outcome.get("details"), duplicate=True))
                            continue

                    result = process_sync_event(sync_event, validate_only=validate_only)
                    if not validate_only:
                        sync_event.processed_at = timezone.now()
                        sync_event.status = SyncEvent.Status.PROCESSED if result.accepted else SyncEvent.Status.REJECTED
                        sync_event.outcome = {"reason": result.reason, "details": result.details or {}}
                        sync_event.save(update_fields=["status", "outcome", "processed_at"])

                    if result.accepted:
                        acknowledged.append(_acknowledgement(event["event_id"], result.details))
                    else:
                        rejected.append(_rejection(event["event_id"], result.reason, result.details))

            except IntegrityError as exc:
                logger.warning("sync_push_integrity_error", extra={"event_id": event["event_id"]})
                rejected.append(_rejection(event["event_id"], REJECT_CODE_CONFLICT, {"error": str(exc)}))

        logger.info(
            "sync_push device=%s acknowledged=%s rejected=%s validate_only=%s",
            device.identifier,
            len(acknowledged),
            len(rejected),
            validate_only,
        )
        latest_outbox = SyncOutbox.objects.order_by("-id").first()
        server_cursor = latest_outbox.id if latest_outbox else 0

        return Response(
            {
                "acknowledged": acknowledged,
                "rejected": rejected,
                "server_cursor": server_cursor,
                "validate_only": validate_only,
            }
        )


class SyncPullView(APIView):
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"post": "sync.access"}

    def post(self, request):
        serializer = SyncPullSerializer(data=request.data)
        if not serializer.is_valid():
            return validation_failed_response(serializer.errors)

        device_id = serializer.validated_data["device_id"]
        cursor = serializer.validated_data["cursor"]
        limit = serializer.validated_data["limit"]

        device, error_response = get_permitted_device(device_id)
        if error_response is not None:
            return error_response

        updates = list(SyncOutbox.objects.filter(id__gt=cursor).order_by("id")[: limit + 1])
        has_more = len(updates) > limit
        updates = updates[:limit]
        server_cursor = updates[-1].id if updates else cursor

        return Response(
            {
                "server_cursor": server_cursor,
                "updates": [
                    {
                        "cursor": update.id,
                        "entity": (update.payload or {}).get("entity", update.entity),
                        "op": (update.payload or {}).get("op", update.op),
                        "entity_id": (update.payload or {}).get("entity_id", str(update.entity_id)),
                        "payload": (update.payload or {}).get("payload", update.payload),
                    }
                    for update in updates
                ],
                "has_more": has_more,
            }
        )
