from django.urls import path
from rest_framework.routers import DefaultRouter

from core.views import (
    ApprovedEmailViewSet,
    AuditLogViewSet,
    DeviceViewSet,
    MeView,
    RegisterView,
    ShopSettingsView,
    UserViewSet,
    healthz,
    readyz,
)

router = DefaultRouter()
router.register(r"devices", DeviceViewSet, basename="device")
router.register(r"admin/users", UserViewSet, basename="user")
router.register(r"admin/approved-emails", ApprovedEmailViewSet, basename="approved-email")
router.register(r"admin/audit-logs", AuditLogViewSet, basename="audit-log")

urlpatterns = router.urls + [
    path("register/", RegisterView.as_view(), name="register"),
    path("me/", MeView.as_view(), name="me"),
    path("settings/", ShopSettingsView.as_view(), name="shop-settings"),
    path("healthz/", healthz, name="healthz"),
    path("readyz/", readyz, name="readyz"),
]
