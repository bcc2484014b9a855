"""
procurement_tracker/blueprints/reports/routes.py

Reporting routes (JSON).

- GET /reports/dashboard   counters + stage distribution over visible requests
- GET /reports/buyers      buyer performance rows (?period=, ?buyerId=)

Buyers only get their own performance rows; clients get none.
"""

from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user

from ...domain import ROLE_ADMIN, ROLE_BUYER
from ...reports import buyer_performance, dashboard_stats
from ...security import role_required
from ...serializers import camelize

reports_bp = Blueprint("reports", __name__, url_prefix="/reports")


@reports_bp.get("/dashboard")
@role_required()
async def dashboard():
    service = current_app.extensions["procurement"]
    await service.ensure_loaded()
    stats = dashboard_stats(service.user_requests(current_user.to_actor()))
    return jsonify({"stats": stats, "source": service.store.source})


@reports_bp.get("/buyers")
@role_required(ROLE_ADMIN, ROLE_BUYER)
async def buyers():
    period = request.args.get("period") or None
    buyer_id = request.args.get("buyerId") or None
    if current_user.role == ROLE_BUYER:
        buyer_id = current_user.id

    rows = buyer_performance(period=period, buyer_id=buyer_id)
    return jsonify({"performance": [camelize(row) for row in rows]})
