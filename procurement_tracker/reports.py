"""
procurement_tracker/reports.py

Read-only aggregates over the requests a user can see.

- group_requests(): the pending / active / completed tabs of the request list
- dashboard_stats(): headline counters and the stage distribution
- buyer_performance(): externally supplied rows, filtered by period
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

from .domain import (
    PERFORMANCE_PERIODS,
    STAGE_DELIVERED,
    STAGES,
    STATUS_ACCEPTED,
    STATUS_COMPLETED,
    STATUS_PENDING,
    ProcurementRequest,
)
from .errors import ValidationError
from .fallback import fallback_buyer_performance

GROUP_PENDING = "pending"
GROUP_ACTIVE = "active"
GROUP_COMPLETED = "completed"
GROUPS = (GROUP_PENDING, GROUP_ACTIVE, GROUP_COMPLETED)

PRIORITY_FLAGS = ("High", "Critical")


def is_completed(request: ProcurementRequest) -> bool:
    return request.status == STATUS_COMPLETED or request.stage == STAGE_DELIVERED


def group_requests(requests: Iterable[ProcurementRequest], group: str) -> List[ProcurementRequest]:
    if group not in GROUPS:
        raise ValidationError(f"Unknown request group: {group}")

    if group == GROUP_PENDING:
        return [r for r in requests if r.status == STATUS_PENDING]
    if group == GROUP_ACTIVE:
        return [r for r in requests if r.status == STATUS_ACCEPTED and r.stage != STAGE_DELIVERED]
    return [r for r in requests if is_completed(r)]


def stage_distribution(requests: Iterable[ProcurementRequest]) -> Dict[str, int]:
    counts = {stage: 0 for stage in STAGES}
    for r in requests:
        counts[r.stage] = counts.get(r.stage, 0) + 1
    return counts


def _delivered_on_time(request: ProcurementRequest) -> Optional[bool]:
    # ISO dates compare lexically; the date part is enough.
    if not request.date_delivered or not request.exp_delivery_date:
        return None
    return request.date_delivered[:10] <= request.exp_delivery_date[:10]


def dashboard_stats(requests: Iterable[ProcurementRequest]) -> Dict[str, Any]:
    requests = list(requests)
    completed = [r for r in requests if is_completed(r)]

    on_time = 0
    late = 0
    for r in completed:
        outcome = _delivered_on_time(r)
        if outcome is True:
            on_time += 1
        elif outcome is False:
            late += 1

    return {
        "totalRequests": len(requests),
        "pendingRequests": sum(1 for r in requests if r.status == STATUS_PENDING),
        "completedRequests": len(completed),
        "onTimeDelivery": on_time,
        "lateDelivery": late,
        "onTimeDeliveryRate": round(on_time * 100 / len(completed)) if completed else 0,
        "priorityItems": sum(1 for r in requests if r.priority in PRIORITY_FLAGS and not is_completed(r)),
        "overDeliveredRequests": sum(1 for r in requests if r.has_over_delivery),
        "stageDistribution": stage_distribution(requests),
    }


def buyer_performance(period: Optional[str] = None, buyer_id: Optional[str] = None) -> List[Dict[str, Any]]:
    if period is not None and period not in PERFORMANCE_PERIODS:
        raise ValidationError(f"Unknown performance period: {period}")

    rows = fallback_buyer_performance()
    if period is not None:
        rows = [row for row in rows if row.get("period") == period]
    if buyer_id is not None:
        rows = [row for row in rows if row.get("buyer_id") == buyer_id]
    return rows
