from __future__ import annotations

from typing import Any

from django.utils import timezone
from rest_framework import status
from rest_framework.response import Response

from common.exceptions import error_response
from core.models import Device


FORBIDDEN_DEVICE_CODE = "forbidden_device"
DEVICE_NOT_FOUND_CODE = "device_not_found"
VALIDATION_FAILED_CODE = "validation_error"


def _device_error_details(message: str) -> dict[str, list[str]]:
    return {"device_id": [message]}


def validation_failed_response(errors: dict[str, Any], *, status_code: int = status.HTTP_422_UNPROCESSABLE_ENTITY) -> Response:
    return error_response(
        code=VALIDATION_FAILED_CODE,
        message="Validation failed.",
        errors=errors,
        status_code=status_code,
    )


def forbidden_device_response(errors: dict[str, Any], *, status_code: int = status.HTTP_403_FORBIDDEN) -> Response:
    code = FORBIDDEN_DEVICE_CODE if status_code == status.HTTP_403_FORBIDDEN else DEVICE_NOT_FOUND_CODE
    message = "Device access is not allowed." if status_code == status.HTTP_403_FORBIDDEN else "Device was not found."
    return error_response(
        code=code,
        message=message,
        errors=errors,
        status_code=status_code,
    )


def resolve_device(device_id) -> tuple[Device | None, str | None, int | None]:
    """Resolve an active device, returning an error message and status code on failure."""
    device = Device.objects.filter(id=device_id).first()
    if device is None:
        return None, "Device was not found.", status.HTTP_404_NOT_FOUND

    if not device.is_active:
        return None, "Device is inactive.", status.HTTP_403_FORBIDDEN

    return device, None, None


def get_permitted_device(device_id) -> tuple[Device | None, Response | None]:
    """Resolve a device for a sync request and mark it as seen."""
    device, error_message, status_code = resolve_device(device_id)
    if device is None:
        return None, forbidden_device_response(_device_error_details(error_message), status_code=status_code)

    Device.objects.filter(id=device.id).update(last_seen_at=timezone.now())
    return device, None
