"""
procurement_tracker/serializers.py

JSON boundary: domain records -> camelCase dicts, camelCase payloads -> patches.

Money values (Decimal) are emitted as strings with two decimals so no
precision is lost in transit.
"""

from __future__ import annotations

import re
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional

from .domain import ItemPatch, ProcurementRequest, RequestFile, RequestItem, RequestPatch
from .errors import MutationResult, ValidationError
from .security import public_files

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def to_camel(name: str) -> str:
    head, *tail = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in tail)


def to_snake(name: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", name).lower()


def camelize(data: Mapping[str, Any]) -> Dict[str, Any]:
    return {to_camel(k): v for k, v in data.items()}


def _money(value: Optional[Decimal]) -> Optional[str]:
    return None if value is None else f"{value:.2f}"


# ---------------------------------------------------------------------
# Records -> JSON
# ---------------------------------------------------------------------
def item_to_dict(item: RequestItem) -> Dict[str, Any]:
    return {
        "id": item.id,
        "line": item.line,
        "itemNumber": item.item_number,
        "description": item.description,
        "qtyRequested": item.qty_requested,
        "qtyDelivered": item.qty_delivered,
        "qtyPending": item.qty_pending,
        "unitPrice": _money(item.unit_price),
        "totalPrice": _money(item.total_price),
        "overDelivered": item.over_delivered,
    }


def file_to_dict(f: RequestFile) -> Dict[str, Any]:
    return {
        "id": f.id,
        "name": f.name,
        "url": f.url,
        "size": f.size,
        "type": f.type,
        "uploadedAt": f.uploaded_at,
        "isPublic": f.is_public,
        "uploadedBy": f.uploaded_by,
    }


_REQUEST_SCALARS = (
    "id",
    "rfq_number",
    "po_number",
    "entity",
    "description",
    "vendor",
    "place_of_delivery",
    "place_of_arrival",
    "po_date",
    "mgp_eta",
    "exp_delivery_date",
    "date_delivered",
    "date_due",
    "lead_time_days",
    "days_count",
    "aging",
    "priority",
    "buyer",
    "action_items",
    "responsible",
    "qty_requested",
    "qty_delivered",
    "qty_pending",
    "stage",
    "status",
    "client_id",
    "buyer_id",
    "is_public",
    "created_at",
    "updated_at",
    "version",
)


def request_to_dict(record: ProcurementRequest, user: Any = None) -> Dict[str, Any]:
    """
    Full request payload. With `user`, files are filtered for that user
    (clients only get public files).
    """
    data = {to_camel(name): getattr(record, name) for name in _REQUEST_SCALARS}
    files = public_files(record, user) if user is not None else record.files
    data.update(
        {
            "items": [item_to_dict(i) for i in record.items],
            "files": [file_to_dict(f) for f in files],
            "totalValue": _money(record.total_value),
            "hasOverDelivery": record.has_over_delivery,
        }
    )
    return data


def result_to_dict(result: MutationResult, data: Any = None) -> Dict[str, Any]:
    """Envelope for mutation responses: data + notification + sync state."""
    return {
        "data": data,
        "synced": result.synced,
        "notification": result.notification.to_dict() if result.notification else None,
    }


# ---------------------------------------------------------------------
# JSON -> patches
# ---------------------------------------------------------------------
def snake_payload(payload: Any) -> Dict[str, Any]:
    if payload is None:
        return {}
    if not isinstance(payload, Mapping):
        raise ValidationError("Request body must be a JSON object")
    return {to_snake(k): v for k, v in payload.items()}


def request_patch_from_payload(payload: Any) -> RequestPatch:
    return RequestPatch.from_dict(snake_payload(payload))


def item_patch_from_payload(payload: Any) -> ItemPatch:
    return ItemPatch.from_dict(snake_payload(payload))


def create_data_from_payload(payload: Any) -> Dict[str, Any]:
    """snake_case create data; nested items converted too."""
    data = snake_payload(payload)
    items = data.get("items")
    if items is not None:
        if not isinstance(items, list):
            raise ValidationError("items must be a list")
        data["items"] = [snake_payload(item) for item in items]
    return data
