import logging
import uuid
from dataclasses import dataclass

from django.db import transaction
from rest_framework.exceptions import ValidationError

from common.audit import create_audit_log
from common.exceptions import Conflict
from common.permissions import user_has_capability
from common.utils import emit_outbox, to_decimal
from inventory.models import Product
from inventory.serializers import ProductSerializer
from sales.models import Customer, Invoice
from sales.serializers import CustomerSerializer, InvoiceCreateSerializer, InvoiceSerializer, PaymentCreateSerializer, PaymentSerializer
from sales.services import apply_payment, commit_invoice

logger = logging.getLogger(__name__)

REJECT_CODE_VALIDATION_FAILED = "validation_failed"
REJECT_CODE_FORBIDDEN = "forbidden"
REJECT_CODE_CONFLICT = "conflict"


@dataclass
class EventResult:
    accepted: bool
    reason: str | None = None
    details: dict | None = None


class EventRejectError(Exception):
    def __init__(self, reason: str, details: dict | None = None):
        self.reason = reason
        self.details = details or {}
        super().__init__(reason)


def process_sync_event(sync_event, *, validate_only=False):
    """
    Apply one pushed event through the same services the online API uses.

    With `validate_only` the handler runs to completion and its writes are
    rolled back, so a terminal can check a queued event before committing it.
    """
    handler = EVENT_HANDLERS.get(sync_event.event_type)
    if handler is None:
        return EventResult(
            accepted=False,
            reason=REJECT_CODE_VALIDATION_FAILED,
            details={"event_type": f"Unsupported event_type '{sync_event.event_type}'"},
        )

    try:
        with transaction.atomic():
            details = handler(sync_event) or {}
            if validate_only:
                transaction.set_rollback(True)
    except EventRejectError as exc:
        logger.info(
            "sync_event_rejected reason=%s",
            exc.reason,
            extra={"event_id": sync_event.event_id, "event_type": sync_event.event_type},
        )
        return EventResult(accepted=False, reason=exc.reason, details=exc.details)
    except Conflict as exc:
        logger.warning("sync_event_conflict", extra={"event_id": sync_event.event_id})
        return EventResult(accepted=False, reason=REJECT_CODE_CONFLICT, details={"detail": str(exc.detail)})

    return EventResult(accepted=True, details=details)


def _validate_required(payload, fields):
    missing = [field for field in fields if payload.get(field) in (None, "")]
    if missing:
        raise EventRejectError(REJECT_CODE_VALIDATION_FAILED, {"missing_fields": missing})


def _parse_uuid(payload, field):
    try:
        return uuid.UUID(str(payload[field]))
    except ValueError:
        raise EventRejectError(REJECT_CODE_VALIDATION_FAILED, {field: "Must be a valid UUID."}) from None


def _require_capability(sync_event, capability):
    if not user_has_capability(sync_event.user, capability):
        raise EventRejectError(REJECT_CODE_FORBIDDEN, {"capability": f"'{capability}' is required."})


def _validated(serializer):
    if not serializer.is_valid():
        raise EventRejectError(REJECT_CODE_VALIDATION_FAILED, serializer.errors)
    return serializer


def _record(sync_event, *, entity, entity_id, op, payload, action):
    emit_outbox(entity=entity, entity_id=entity_id, op=op, payload=payload)
    create_audit_log(
        actor=sync_event.user,
        device=sync_event.device,
        action=action,
        entity=entity,
        entity_id=entity_id,
        after_snapshot=payload,
        event_id=sync_event.event_id,
    )


def _handle_invoice_create(sync_event):
    payload = dict(sync_event.payload)
    client_grand_total = payload.pop("grand_total", None)
    # The event itself identifies the terminal and the idempotency key.
    payload.pop("device", None)
    payload.pop("event_id", None)

    serializer = _validated(InvoiceCreateSerializer(data=payload))
    invoice, created = commit_invoice(
        serializer.validated_data["draft"],
        user=sync_event.user,
        device=sync_event.device,
        event_id=sync_event.event_id,
    )
    if created:
        _record(
            sync_event,
            entity="invoice",
            entity_id=invoice.id,
            op="upsert",
            payload=InvoiceSerializer(invoice).data,
            action="invoice.create",
        )

    details = {
        "invoice_id": str(invoice.id),
        "invoice_number": invoice.invoice_number,
        "grand_total": str(invoice.grand_total),
    }
    # Totals are always recomputed; a differing client total is reported, not rejected.
    if client_grand_total not in (None, ""):
        try:
            client_total = to_decimal(client_grand_total)
        except ArithmeticError:
            client_total = None
        if client_total is None or client_total != invoice.grand_total:
            details["grand_total_mismatch"] = {
                "client": str(client_grand_total),
                "server": str(invoice.grand_total),
            }
            logger.warning(
                "sync_invoice_total_mismatch client=%s server=%s",
                client_grand_total,
                invoice.grand_total,
                extra={"invoice_number": invoice.invoice_number, "event_id": sync_event.event_id},
            )
    return details


def _handle_payment_create(sync_event):
    payload = sync_event.payload
    _validate_required(payload, ["invoice_id", "amount", "mode"])
    serializer = _validated(PaymentCreateSerializer(data=payload))
    data = serializer.validated_data

    invoice = Invoice.objects.filter(id=_parse_uuid(payload, "invoice_id")).first()
    if invoice is None:
        raise EventRejectError(REJECT_CODE_VALIDATION_FAILED, {"invoice_id": "Invoice not found."})

    try:
        payment, created = apply_payment(
            invoice,
            data["amount"],
            data["mode"],
            paid_at=data.get("paid_at"),
            notes=data.get("notes", ""),
            device=sync_event.device,
            event_id=sync_event.event_id,
        )
    except ValidationError as exc:
        raise EventRejectError(REJECT_CODE_VALIDATION_FAILED, exc.detail) from exc

    invoice = Invoice.objects.prefetch_related("lines", "payments").get(pk=invoice.pk)
    if created:
        _record(
            sync_event,
            entity="payment",
            entity_id=payment.id,
            op="upsert",
            payload=PaymentSerializer(payment).data,
            action="payment.create",
        )
        emit_outbox(entity="invoice", entity_id=invoice.id, op="upsert", payload=InvoiceSerializer(invoice).data)
    return {"payment_id": str(payment.id), "due_amount": str(invoice.due_amount), "status": invoice.status}


def _handle_customer_upsert(sync_event):
    payload = dict(sync_event.payload)
    _validate_required(payload, ["customer_id", "name"])
    customer_id = _parse_uuid(payload, "customer_id")
    payload.pop("customer_id")

    customer = Customer.objects.filter(id=customer_id).first()
    if customer is None:
        _require_capability(sync_event, "customers.create")
        serializer = _validated(CustomerSerializer(data=payload))
        customer = serializer.save(id=customer_id)
        action = "customer.create"
    else:
        _require_capability(sync_event, "customers.manage")
        serializer = _validated(CustomerSerializer(customer, data=payload, partial=True))
        customer = serializer.save()
        action = "customer.update"

    _record(
        sync_event,
        entity="customer",
        entity_id=customer.id,
        op="upsert",
        payload=CustomerSerializer(customer).data,
        action=action,
    )
    return {"customer_id": str(customer.id)}


def _handle_customer_delete(sync_event):
    payload = sync_event.payload
    _validate_required(payload, ["customer_id"])
    customer_id = _parse_uuid(payload, "customer_id")
    _require_capability(sync_event, "customers.manage")

    customer = Customer.objects.filter(id=customer_id).first()
    if customer is None:
        raise EventRejectError(REJECT_CODE_VALIDATION_FAILED, {"customer_id": "Customer not found."})

    customer.delete()
    _record(
        sync_event,
        entity="customer",
        entity_id=customer_id,
        op="delete",
        payload={"id": str(customer_id)},
        action="customer.delete",
    )
    return {"customer_id": str(customer_id)}


def _handle_product_upsert(sync_event):
    payload = dict(sync_event.payload)
    _validate_required(payload, ["product_id"])
    _require_capability(sync_event, "catalog.manage")
    product_id = _parse_uuid(payload, "product_id")
    payload.pop("product_id")

    product = Product.objects.filter(id=product_id).first()
    if product is None:
        serializer = _validated(ProductSerializer(data=payload))
        product = serializer.save(id=product_id)
        action = "product.create"
    else:
        serializer = _validated(ProductSerializer(product, data=payload, partial=True))
        product = serializer.save()
        action = "product.update"

    _record(
        sync_event,
        entity="product",
        entity_id=product.id,
        op="upsert",
        payload=ProductSerializer(product).data,
        action=action,
    )
    return {"product_id": str(product.id)}


EVENT_HANDLERS = {
    "invoice.create": _handle_invoice_create,
    "payment.create": _handle_payment_create,
    "customer.upsert": _handle_customer_upsert,
    "customer.delete": _handle_customer_delete,
    "product.upsert": _handle_product_upsert,
}
