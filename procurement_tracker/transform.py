"""
procurement_tracker/transform.py

Record transformer: backend rows <-> domain records.

Rules:
- Item sums are authoritative. The request row's own qty_* columns are ignored.
- Numeric coercion is best-effort: anything that is not a number becomes 0.
- A request always carries at least one item; a row without item rows gets
  one synthesized item covering the whole stored quantity.

All functions here are pure (no I/O, no store access).
"""

from __future__ import annotations

import logging
import math
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .domain import (
    STAGE_NEW,
    STATUS_PENDING,
    ProcurementRequest,
    RequestFile,
    RequestItem,
    line_total,
    new_id,
)

logger = logging.getLogger(__name__)

REQUEST_COLUMNS = (
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
    "version",
    "created_at",
    "updated_at",
)


# ---------------------------------------------------------------------
# Coercion helpers
# ---------------------------------------------------------------------
def to_number(value: Any) -> float:
    """Coerce to float. None, blanks and non-numeric input give 0.0."""
    if value is None:
        return 0.0
    try:
        if isinstance(value, str):
            raw = value.strip().replace(",", ".")
            if raw == "":
                return 0.0
            number = float(raw)
        else:
            number = float(value)
    except (TypeError, ValueError):
        logger.debug("Non-numeric quantity %r coerced to 0", value)
        return 0.0
    if math.isnan(number) or math.isinf(number):
        return 0.0
    return number


def to_optional_decimal(value: Any) -> Optional[Decimal]:
    """Coerce a price to Decimal; missing or invalid input gives None."""
    if value is None:
        return None
    raw = str(value).strip().replace(",", ".")
    if raw == "":
        return None
    try:
        number = Decimal(raw)
    except (InvalidOperation, ValueError):
        logger.debug("Non-numeric price %r ignored", value)
        return None
    if not number.is_finite():
        return None
    return number


def to_optional_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value)
    return text if text != "" else None


# ---------------------------------------------------------------------
# Derived values
# ---------------------------------------------------------------------
def recompute_item(item: RequestItem) -> RequestItem:
    item.qty_pending = item.qty_requested - item.qty_delivered
    item.total_price = line_total(item.unit_price, item.qty_requested)
    return item


def recompute_totals(request: ProcurementRequest) -> ProcurementRequest:
    """
    Enforce the quantity invariant:
      qty_requested = Σ item.qty_requested
      qty_delivered = Σ item.qty_delivered
      qty_pending   = qty_requested - qty_delivered
    """
    for item in request.items:
        recompute_item(item)
    request.qty_requested = sum(item.qty_requested for item in request.items)
    request.qty_delivered = sum(item.qty_delivered for item in request.items)
    request.qty_pending = request.qty_requested - request.qty_delivered
    return request


def renumber_lines(items: List[RequestItem]) -> List[RequestItem]:
    """Make line numbers contiguous 1..n, keeping current order."""
    for index, item in enumerate(items, start=1):
        item.line = index
    return items


def synthesized_item(request_id: str, description: str, qty_requested: float, qty_delivered: float = 0.0) -> RequestItem:
    """Single item standing in for a request stored without item rows."""
    return recompute_item(
        RequestItem(
            id=f"{request_id}-item-1",
            description=description or "",
            qty_requested=qty_requested,
            qty_delivered=qty_delivered,
            line=1,
        )
    )


# ---------------------------------------------------------------------
# Backend row -> domain
# ---------------------------------------------------------------------
def transform_item_row(row: Mapping[str, Any], line: Optional[int] = None) -> RequestItem:
    item = RequestItem(
        id=str(row.get("id") or new_id()),
        item_number=_optional_str(row.get("item_number")),
        description=str(row.get("description") or ""),
        qty_requested=to_number(row.get("qty_requested")),
        qty_delivered=to_number(row.get("qty_delivered")),
        line=line if line is not None else (to_optional_int(row.get("line")) or 1),
        unit_price=to_optional_decimal(row.get("unit_price")),
    )
    return recompute_item(item)


def transform_file_row(row: Mapping[str, Any]) -> RequestFile:
    return RequestFile(
        id=str(row.get("id") or new_id()),
        name=str(row.get("name") or ""),
        url=str(row.get("url") or ""),
        size=to_optional_int(row.get("size")) or 0,
        type=str(row.get("type") or ""),
        uploaded_at=str(row.get("uploaded_at") or ""),
        is_public=bool(row.get("is_public")),
        uploaded_by=_optional_str(row.get("uploaded_by")),
    )


def _item_sort_key(row: Mapping[str, Any]):
    line = to_optional_int(row.get("line"))
    return (line is None, line or 0, str(row.get("created_at") or ""))


def transform_request_row(
    row: Mapping[str, Any],
    item_rows: Iterable[Mapping[str, Any]] = (),
    file_rows: Iterable[Mapping[str, Any]] = (),
) -> ProcurementRequest:
    """Build the canonical ProcurementRequest from one request row and its children."""
    request_id = str(row.get("id") or new_id())

    ordered = sorted(item_rows, key=_item_sort_key)
    items = [transform_item_row(item_row, line=index) for index, item_row in enumerate(ordered, start=1)]
    if not items:
        items = [
            synthesized_item(
                request_id,
                str(row.get("description") or ""),
                to_number(row.get("qty_requested")),
                to_number(row.get("qty_delivered")),
            )
        ]

    request = ProcurementRequest(
        id=request_id,
        client_id=str(row.get("client_id") or ""),
        rfq_number=str(row.get("rfq_number") or ""),
        po_number=str(row.get("po_number") or ""),
        entity=str(row.get("entity") or ""),
        description=str(row.get("description") or ""),
        vendor=_optional_str(row.get("vendor")),
        place_of_delivery=str(row.get("place_of_delivery") or ""),
        place_of_arrival=_optional_str(row.get("place_of_arrival")),
        po_date=_optional_str(row.get("po_date")),
        mgp_eta=_optional_str(row.get("mgp_eta")),
        exp_delivery_date=_optional_str(row.get("exp_delivery_date")),
        date_delivered=_optional_str(row.get("date_delivered")),
        date_due=_optional_str(row.get("date_due")),
        lead_time_days=to_optional_int(row.get("lead_time_days")),
        days_count=to_optional_int(row.get("days_count")),
        aging=to_optional_int(row.get("aging")),
        priority=_optional_str(row.get("priority")),
        buyer=_optional_str(row.get("buyer")),
        action_items=_optional_str(row.get("action_items")),
        responsible=_optional_str(row.get("responsible")),
        stage=str(row.get("stage") or STAGE_NEW),
        status=str(row.get("status") or STATUS_PENDING),
        buyer_id=_optional_str(row.get("buyer_id")),
        is_public=bool(row.get("is_public")),
        created_at=str(row.get("created_at") or ""),
        updated_at=str(row.get("updated_at") or ""),
        items=items,
        files=[transform_file_row(file_row) for file_row in file_rows],
        version=to_optional_int(row.get("version")) or 1,
    )
    return recompute_totals(request)


# ---------------------------------------------------------------------
# Domain -> backend row
# ---------------------------------------------------------------------
def request_to_row(request: ProcurementRequest) -> Dict[str, Any]:
    return {column: getattr(request, column) for column in REQUEST_COLUMNS}


def item_to_row(item: RequestItem, request_id: str) -> Dict[str, Any]:
    return {
        "id": item.id,
        "request_id": request_id,
        "line": item.line,
        "item_number": item.item_number,
        "description": item.description,
        "qty_requested": item.qty_requested,
        "qty_delivered": item.qty_delivered,
        "unit_price": item.unit_price,
        "total_price": item.total_price,
    }


def file_to_row(f: RequestFile, request_id: str) -> Dict[str, Any]:
    return {
        "id": f.id,
        "request_id": request_id,
        "name": f.name,
        "url": f.url,
        "size": f.size,
        "type": f.type,
        "is_public": f.is_public,
        "uploaded_by": f.uploaded_by,
        "uploaded_at": f.uploaded_at,
    }
