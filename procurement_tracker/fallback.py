"""
procurement_tracker/fallback.py

Static demo dataset.

Used when the backend reports that its tables are missing (degraded mode),
and by `flask seed-demo` to populate a fresh database.

Guarantees:
- fallback_requests() is non-empty and deterministic.
- Every request has at least one item (rows without items get one
  synthesized item through transform.transform_request_row).
"""

from __future__ import annotations

import copy
from typing import Any, Dict, List

from .domain import Actor, ProcurementRequest
from .transform import transform_request_row


DEMO_USERS = [
    # id, name, email, role
    ("admin1", "Admin User", "admin@example.com", "admin"),
    ("buyer1", "Gabriel Procurement", "gabriel@example.com", "buyer"),
    ("buyer2", "Sara Logistics", "sara@example.com", "buyer"),
    ("client1", "Client Account", "client@example.com", "client"),
]

AVATAR_URL = "https://api.dicebear.com/7.x/avataaars/svg?seed={seed}"


def _item(item_id, item_number, description, requested, delivered=0):
    return {
        "id": item_id,
        "item_number": item_number,
        "description": description,
        "qty_requested": requested,
        "qty_delivered": delivered,
    }


DEMO_REQUEST_ROWS: List[Dict[str, Any]] = [
    {
        "id": "req1",
        "rfq_number": "RFQ-2023-001",
        "po_number": "PO-001",
        "entity": "MGP Investments",
        "description": "Office equipment procurement",
        "vendor": "OfficeMax",
        "place_of_delivery": "New York Headquarters",
        "place_of_arrival": "New York Port",
        "po_date": "2023-12-15",
        "mgp_eta": "2024-01-15",
        "exp_delivery_date": "2024-01-20",
        "date_delivered": "2024-01-22",
        "lead_time_days": 30,
        "days_count": 38,
        "aging": 8,
        "priority": "Medium",
        "buyer": "Gabriel Procurement",
        "stage": "Delivered",
        "action_items": "Final inspection needed",
        "responsible": "QA Team",
        "date_due": "2024-01-25",
        "status": "completed",
        "created_at": "2023-12-10T10:00:00Z",
        "updated_at": "2024-01-22T15:30:00Z",
        "client_id": "client1",
        "buyer_id": "buyer1",
        "is_public": True,
        "items": [
            _item("item1-1", "SKU-001", "Office desks", 10, 10),
            _item("item1-2", "SKU-002", "Office chairs", 20, 20),
        ],
    },
    {
        "id": "req2",
        "rfq_number": "RFQ-2023-002",
        "po_number": "PO-002",
        "entity": "MGP Investments",
        "description": "IT hardware procurement",
        "vendor": "TechSupplies Inc.",
        "place_of_delivery": "Los Angeles Office",
        "place_of_arrival": "Los Angeles Port",
        "po_date": "2023-12-20",
        "mgp_eta": "2024-02-10",
        "exp_delivery_date": "2024-02-15",
        "lead_time_days": 45,
        "days_count": 25,
        "aging": 0,
        "priority": "High",
        "buyer": "Sara Logistics",
        "stage": "Logistics",
        "action_items": "Customs clearance in progress",
        "responsible": "Logistics Team",
        "date_due": "2024-02-05",
        "status": "accepted",
        "created_at": "2023-12-15T09:00:00Z",
        "updated_at": "2024-01-20T11:45:00Z",
        "client_id": "client1",
        "buyer_id": "buyer2",
        "is_public": True,
        "items": [
            _item("item2-1", "IT-001", "Laptops", 15),
            _item("item2-2", "IT-002", "Monitors", 15),
        ],
    },
    {
        "id": "req3",
        "rfq_number": "RFQ-2023-003",
        "po_number": "PO-003",
        "entity": "MGP Investments",
        "description": "Office supplies quarterly order",
        "vendor": "SupplyCo",
        "place_of_delivery": "Chicago Office",
        "place_of_arrival": "Chicago Distribution Center",
        "po_date": "2023-12-25",
        "mgp_eta": "2024-01-25",
        "exp_delivery_date": "2024-01-30",
        "lead_time_days": 25,
        "days_count": 15,
        "aging": 0,
        "priority": "Low",
        "buyer": "Gabriel Procurement",
        "stage": "Customs",
        "action_items": "Documentation review",
        "responsible": "Documentation Team",
        "date_due": "2024-01-20",
        "status": "accepted",
        "created_at": "2023-12-20T14:00:00Z",
        "updated_at": "2024-01-15T09:30:00Z",
        "client_id": "client1",
        "buyer_id": "buyer1",
        "is_public": True,
        "items": [
            _item("item3-1", "SUP-001", "Paper supplies", 100),
        ],
    },
    {
        "id": "req4",
        "rfq_number": "RFQ-2023-004",
        "po_number": "PO-004",
        "entity": "MGP Investments",
        "description": "Server equipment",
        "vendor": "ServerTech Solutions",
        "place_of_delivery": "Data Center",
        "place_of_arrival": "Miami Port",
        "po_date": "2024-01-05",
        "mgp_eta": "2024-02-20",
        "exp_delivery_date": "2024-02-25",
        "lead_time_days": 40,
        "days_count": 10,
        "aging": 0,
        "priority": "Critical",
        "buyer": "Sara Logistics",
        "stage": "CO/CE",
        "action_items": "Technical review",
        "responsible": "IT Team",
        "date_due": "2024-02-10",
        "status": "accepted",
        "created_at": "2024-01-01T11:00:00Z",
        "updated_at": "2024-01-10T16:15:00Z",
        "client_id": "client1",
        "buyer_id": "buyer2",
        "is_public": False,
        "items": [
            _item("item4-1", "SRV-001", "Server racks", 5),
            _item("item4-2", "SRV-002", "Network switches", 10),
            _item("item4-3", "SRV-003", "UPS systems", 5),
        ],
    },
    {
        "id": "req5",
        "rfq_number": "RFQ-2023-005",
        "po_number": "PO-005",
        "entity": "MGP Investments",
        "description": "Marketing materials for Q1 campaign",
        "vendor": "PrintPro Graphics",
        "place_of_delivery": "Marketing Department",
        "place_of_arrival": "Dallas Distribution Center",
        "po_date": "2024-01-10",
        "mgp_eta": "2024-01-25",
        "exp_delivery_date": "2024-01-30",
        "lead_time_days": 15,
        "days_count": 5,
        "aging": 0,
        "priority": "Medium",
        "buyer": "Gabriel Procurement",
        "stage": "Resourcing",
        "action_items": "Design approval",
        "responsible": "Marketing Team",
        "date_due": "2024-01-15",
        "status": "accepted",
        "created_at": "2024-01-05T13:30:00Z",
        "updated_at": "2024-01-12T10:00:00Z",
        "client_id": "client1",
        "buyer_id": "buyer1",
        "is_public": True,
        "items": [
            _item("item5-1", "MKT-001", "Brochures", 1000),
            _item("item5-2", "MKT-002", "Posters", 50),
        ],
    },
    {
        "id": "req6",
        "rfq_number": "RFQ-2023-006",
        "po_number": "",
        "entity": "MGP Investments",
        "description": "Office furniture for new branch",
        "place_of_delivery": "Boston Branch",
        "qty_requested": 25,
        "qty_delivered": 0,
        "stage": "New Request",
        "status": "pending",
        "created_at": "2024-01-15T15:45:00Z",
        "updated_at": "2024-01-15T15:45:00Z",
        "client_id": "client1",
        "is_public": False,
        "items": [
            _item("item6-1", None, "Executive desks", 5),
            _item("item6-2", None, "Conference table", 1),
            _item("item6-3", None, "Office chairs", 20),
        ],
    },
]


DEMO_BUYER_PERFORMANCE: List[Dict[str, Any]] = [
    {
        "buyer_id": "buyer1",
        "buyer_name": "Gabriel Procurement",
        "total_lines": 120,
        "pending_lines": 30,
        "delivered_on_time": 80,
        "delivered_late": 10,
        "delivered_total": 90,
        "lines_partially_delivered": 20,
        "delivered_on_time_percentage": 88.9,
        "total_delivered_percentage": 75,
        "period": "quarterly",
    },
    {
        "buyer_id": "buyer2",
        "buyer_name": "Sara Logistics",
        "total_lines": 90,
        "pending_lines": 25,
        "delivered_on_time": 55,
        "delivered_late": 10,
        "delivered_total": 65,
        "lines_partially_delivered": 15,
        "delivered_on_time_percentage": 84.6,
        "total_delivered_percentage": 72.2,
        "period": "quarterly",
    },
]


def fallback_users() -> List[Actor]:
    return [
        Actor(id=uid, name=name, email=email, role=role, avatar=AVATAR_URL.format(seed=uid))
        for uid, name, email, role in DEMO_USERS
    ]


def fallback_requests() -> List[ProcurementRequest]:
    """Fresh copies of the demo requests, totals recomputed from items."""
    records = []
    for row in DEMO_REQUEST_ROWS:
        row = copy.deepcopy(row)
        item_rows = row.pop("items", None) or []
        records.append(transform_request_row(row, item_rows))
    return records


def fallback_buyer_performance() -> List[Dict[str, Any]]:
    return copy.deepcopy(DEMO_BUYER_PERFORMANCE)
