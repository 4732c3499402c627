import datetime
import decimal
import uuid
from decimal import Decimal

from sync.models import SyncOutbox


def to_decimal(value, default="0"):
    """Coerce request/JSON input to Decimal without passing through float."""
    if value is None or value == "":
        return Decimal(default)
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def to_json_compatible(value):
    if isinstance(value, dict):
        return {key: to_json_compatible(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [to_json_compatible(item) for item in value]
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, decimal.Decimal):
        return str(value)
    if isinstance(value, (datetime.date, datetime.datetime, datetime.time)):
        return value.isoformat()
    return value


def emit_outbox(entity, entity_id, op, payload):
    """Queue a change for offline terminals to pick up via `/sync/pull`."""
    envelope = {
        "entity": entity,
        "op": op,
        "entity_id": str(entity_id),
        "payload": to_json_compatible(dict(payload or {})),
    }

    return SyncOutbox.objects.create(
        entity=entity,
        entity_id=entity_id,
        op=op,
        payload=envelope,
    )
