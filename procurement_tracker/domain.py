"""
Procurement Request Tracker – Domain Records

In-memory records held by the RequestStore:
- ProcurementRequest (one workflow instance)
- RequestItem (line item, owned by a request)
- RequestFile (attachment metadata, owned by a request)

Patches:
- RequestPatch / ItemPatch enumerate every updatable field. Derived fields
  (quantities, totals, line numbers, version) are never patchable.

IMPORTANT:
- Quantity totals are recomputed by transform.recompute_totals(); never
  assign them by hand outside that function.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional


# ---------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------
ROLE_ADMIN = "admin"
ROLE_BUYER = "buyer"
ROLE_CLIENT = "client"
ROLES = (ROLE_ADMIN, ROLE_BUYER, ROLE_CLIENT)

STATUS_PENDING = "pending"
STATUS_ACCEPTED = "accepted"
STATUS_DECLINED = "declined"
STATUS_COMPLETED = "completed"
STATUSES = (STATUS_PENDING, STATUS_ACCEPTED, STATUS_DECLINED, STATUS_COMPLETED)

STAGE_NEW = "New Request"
STAGE_DELIVERED = "Delivered"
STAGES = (STAGE_NEW, "Resourcing", "CO/CE", "Customs", "Logistics", STAGE_DELIVERED)

PERFORMANCE_PERIODS = ("weekly", "monthly", "quarterly", "yearly")


# ---------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------
def utc_now_iso() -> str:
    """ISO-8601 UTC timestamp with a Z suffix."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def new_id() -> str:
    return uuid.uuid4().hex


def _money(x: Decimal) -> Decimal:
    return x.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def line_total(unit_price: Optional[Decimal], qty_requested: float) -> Optional[Decimal]:
    """unit_price × qty_requested, or None when no unit price is known."""
    if unit_price is None:
        return None
    return _money(Decimal(str(unit_price)) * Decimal(str(qty_requested)))


# ---------------------------------------------------------------------
# Actors
# ---------------------------------------------------------------------
@dataclass
class Actor:
    """A user as seen by the store (no database row required)."""

    id: str
    name: str
    email: str = ""
    role: str = ROLE_CLIENT
    avatar: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


# ---------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------
@dataclass
class RequestItem:
    id: str
    description: str = ""
    qty_requested: float = 0.0
    qty_delivered: float = 0.0
    qty_pending: float = 0.0
    line: int = 1
    item_number: Optional[str] = None
    unit_price: Optional[Decimal] = None
    total_price: Optional[Decimal] = None

    @property
    def over_delivered(self) -> bool:
        return self.qty_delivered > self.qty_requested


@dataclass
class RequestFile:
    id: str
    name: str
    url: str
    size: int = 0
    type: str = ""
    uploaded_at: str = ""
    is_public: bool = False
    uploaded_by: Optional[str] = None


@dataclass
class ProcurementRequest:
    id: str
    client_id: str
    rfq_number: str = ""
    po_number: str = ""
    entity: str = ""
    description: str = ""
    vendor: Optional[str] = None
    place_of_delivery: str = ""
    place_of_arrival: Optional[str] = None

    po_date: Optional[str] = None
    mgp_eta: Optional[str] = None
    exp_delivery_date: Optional[str] = None
    date_delivered: Optional[str] = None
    date_due: Optional[str] = None

    lead_time_days: Optional[int] = None
    days_count: Optional[int] = None
    aging: Optional[int] = None
    priority: Optional[str] = None
    buyer: Optional[str] = None
    action_items: Optional[str] = None
    responsible: Optional[str] = None

    qty_requested: float = 0.0
    qty_delivered: float = 0.0
    qty_pending: float = 0.0

    stage: str = STAGE_NEW
    status: str = STATUS_PENDING
    buyer_id: Optional[str] = None
    is_public: bool = False

    created_at: str = ""
    updated_at: str = ""

    items: List[RequestItem] = field(default_factory=list)
    files: List[RequestFile] = field(default_factory=list)

    version: int = 1

    @property
    def total_value(self) -> Decimal:
        total = Decimal("0.00")
        for item in self.items:
            if item.total_price is not None:
                total += item.total_price
        return _money(total)

    @property
    def has_over_delivery(self) -> bool:
        return any(item.over_delivered for item in self.items)

    def find_item(self, item_id: str) -> Optional[RequestItem]:
        for item in self.items:
            if item.id == item_id:
                return item
        return None

    def find_file(self, file_id: str) -> Optional[RequestFile]:
        for f in self.files:
            if f.id == file_id:
                return f
        return None


# ---------------------------------------------------------------------
# Patches
# ---------------------------------------------------------------------
class _Unset:
    """Marker for 'field not provided' (None is a legitimate value)."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "UNSET"


UNSET: Any = _Unset()


class _Patch:
    """Shared behaviour: iterate provided fields, apply onto a record."""

    def provided(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self) if getattr(self, f.name) is not UNSET}

    def is_empty(self) -> bool:
        return not self.provided()

    def apply_to(self, record: Any) -> None:
        for name, value in self.provided().items():
            setattr(record, name, value)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]):
        """Build from a snake_case mapping; unknown keys are ignored."""
        names = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in names})


@dataclass
class RequestPatch(_Patch):
    """Every request field a caller may change directly."""

    rfq_number: Any = UNSET
    po_number: Any = UNSET
    entity: Any = UNSET
    description: Any = UNSET
    vendor: Any = UNSET
    place_of_delivery: Any = UNSET
    place_of_arrival: Any = UNSET
    po_date: Any = UNSET
    mgp_eta: Any = UNSET
    exp_delivery_date: Any = UNSET
    date_delivered: Any = UNSET
    date_due: Any = UNSET
    lead_time_days: Any = UNSET
    days_count: Any = UNSET
    aging: Any = UNSET
    priority: Any = UNSET
    buyer: Any = UNSET
    action_items: Any = UNSET
    responsible: Any = UNSET


@dataclass
class ItemPatch(_Patch):
    """Every item field a caller may change directly."""

    item_number: Any = UNSET
    description: Any = UNSET
    qty_requested: Any = UNSET
    qty_delivered: Any = UNSET
    unit_price: Any = UNSET
