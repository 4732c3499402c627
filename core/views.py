import csv
import logging

from django.contrib.auth import get_user_model
from django.db import connections, transaction
from django.http import HttpResponse
from django.utils.dateparse import parse_datetime
from rest_framework import generics, viewsets
from rest_framework.decorators import action, api_view, permission_classes
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView
from rest_framework_simplejwt.views import TokenObtainPairView

from common.audit import create_audit_log_from_request
from common.exceptions import error_response
from common.permissions import RoleCapabilityPermission
from core.models import ApprovedEmail, AuditLog, Device, ShopSettings
from core.serializers import (
    ApprovedEmailSerializer,
    AuditLogSerializer,
    DeviceSerializer,
    EmailOrUsernameTokenObtainPairSerializer,
    ShopSettingsSerializer,
    UserRegistrationSerializer,
    UserSerializer,
)

User = get_user_model()
logger = logging.getLogger(__name__)


class AuditedModelViewSet(viewsets.ModelViewSet):
    """ModelViewSet that records an audit entry for every write."""

    audit_entity = None

    def _audit(self, action, instance, before_snapshot=None, after_snapshot=None):
        create_audit_log_from_request(
            self.request,
            action=f"{self.audit_entity}.{action}",
            entity=self.audit_entity,
            entity_id=instance.id,
            before_snapshot=before_snapshot,
            after_snapshot=after_snapshot,
        )

    def perform_create(self, serializer):
        instance = serializer.save()
        self._audit("create", instance, after_snapshot=self.get_serializer(instance).data)

    def perform_update(self, serializer):
        before_snapshot = self.get_serializer(serializer.instance).data
        instance = serializer.save()
        self._audit("update", instance, before_snapshot, self.get_serializer(instance).data)

    def perform_destroy(self, instance):
        self._audit("delete", instance, before_snapshot=self.get_serializer(instance).data)
        instance.delete()


class RegisterView(generics.CreateAPIView):
    serializer_class = UserRegistrationSerializer
    permission_classes = [AllowAny]
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "auth"

    def perform_create(self, serializer):
        user = serializer.save()
        logger.info("user_registered", extra={"user_id": str(user.id), "role": user.role})
        create_audit_log_from_request(
            self.request,
            action="user.create",
            entity="user",
            entity_id=user.id,
            after_snapshot={
                "id": str(user.id),
                "username": user.username,
                "email": user.email,
                "role": user.role,
            },
        )


class EmailOrUsernameTokenObtainPairView(TokenObtainPairView):
    serializer_class = EmailOrUsernameTokenObtainPairSerializer
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "auth"


class MeView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        return Response(UserSerializer(request.user).data)


class UserViewSet(AuditedModelViewSet):
    queryset = User.objects.order_by("username")
    serializer_class = UserSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "user.manage",
        "retrieve": "user.manage",
        "create": "user.manage",
        "update": "user.manage",
        "partial_update": "user.manage",
        "destroy": "user.manage",
    }
    audit_entity = "user"

    def perform_destroy(self, instance):
        # Users are referenced by invoices; deactivate rather than delete.
        before_snapshot = self.get_serializer(instance).data
        instance.is_active = False
        instance.save(update_fields=["is_active"])
        self._audit("deactivate", instance, before_snapshot, self.get_serializer(instance).data)


class ApprovedEmailViewSet(AuditedModelViewSet):
    queryset = ApprovedEmail.objects.select_related("created_by")
    serializer_class = ApprovedEmailSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "user.manage",
        "retrieve": "user.manage",
        "create": "user.manage",
        "update": "user.manage",
        "partial_update": "user.manage",
        "destroy": "user.manage",
    }
    audit_entity = "approved_email"

    def perform_create(self, serializer):
        instance = serializer.save(created_by=self.request.user)
        self._audit("create", instance, after_snapshot=self.get_serializer(instance).data)


class DeviceViewSet(AuditedModelViewSet):
    queryset = Device.objects.order_by("name")
    serializer_class = DeviceSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "device.read",
        "retrieve": "device.read",
        "create": "device.manage",
        "update": "device.manage",
        "partial_update": "device.manage",
        "destroy": "device.manage",
    }
    audit_entity = "device"

    def perform_destroy(self, instance):
        before_snapshot = self.get_serializer(instance).data
        instance.is_active = False
        instance.save(update_fields=["is_active", "updated_at"])
        self._audit("deactivate", instance, before_snapshot, self.get_serializer(instance).data)


class ShopSettingsView(APIView):
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "get": "settings.view",
        "patch": "settings.manage",
    }

    def get(self, request):
        return Response(ShopSettingsSerializer(ShopSettings.load()).data)

    def patch(self, request):
        with transaction.atomic():
            ShopSettings.load()
            # Same row lock the invoice number allocator takes.
            shop = ShopSettings.objects.select_for_update().get(pk=ShopSettings.SINGLETON_ID)
            before_snapshot = ShopSettingsSerializer(shop).data
            serializer = ShopSettingsSerializer(shop, data=request.data, partial=True)
            serializer.is_valid(raise_exception=True)
            serializer.save()
            create_audit_log_from_request(
                request,
                action="settings.update",
                entity="settings",
                before_snapshot=before_snapshot,
                after_snapshot=serializer.data,
            )
        return Response(serializer.data)


class AuditLogViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = AuditLog.objects.select_related("actor", "device")
    serializer_class = AuditLogSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"list": "audit.view", "retrieve": "audit.view", "export": "audit.view"}

    def get_queryset(self):
        qs = self.queryset.order_by("-created_at")

        start_date = self.request.query_params.get("start_date")
        end_date = self.request.query_params.get("end_date")
        actor_id = self.request.query_params.get("actor_id")
        action = self.request.query_params.get("action")
        entity = self.request.query_params.get("entity")

        if start_date:
            dt = parse_datetime(start_date)
            if dt:
                qs = qs.filter(created_at__gte=dt)
        if end_date:
            dt = parse_datetime(end_date)
            if dt:
                qs = qs.filter(created_at__lte=dt)
        if actor_id:
            qs = qs.filter(actor_id=actor_id)
        if action:
            qs = qs.filter(action=action)
        if entity:
            qs = qs.filter(entity=entity)

        return qs

    @action(detail=False, methods=["get"], url_path="export")
    def export(self, request):
        response = HttpResponse(content_type="text/csv")
        response["Content-Disposition"] = 'attachment; filename="audit-logs.csv"'

        writer = csv.writer(response)
        writer.writerow(["id", "created_at", "actor", "device", "action", "entity", "entity_id", "event_id", "request_id"])
        for log in self.get_queryset():
            writer.writerow(
                [
                    log.id,
                    log.created_at.isoformat(),
                    getattr(log.actor, "username", ""),
                    getattr(log.device, "name", ""),
                    log.action,
                    log.entity,
                    log.entity_id,
                    log.event_id,
                    log.request_id,
                ]
            )
        return response


@api_view(["GET"])
@permission_classes([AllowAny])
def healthz(request):
    return Response({"status": "ok", "request_id": getattr(request, "request_id", None)})


@api_view(["GET"])
@permission_classes([AllowAny])
def readyz(request):
    try:
        with connections["default"].cursor() as cursor:
            cursor.execute("SELECT 1")
            cursor.fetchone()
    except Exception:
        logger.exception("readiness_check_failed")
        return error_response(
            code="not_ready",
            message="Database is unavailable.",
            status_code=503,
        )

    return Response({"status": "ready", "request_id": getattr(request, "request_id", None)})
