"""
procurement_tracker/blueprints/activity/routes.py

Activity log view (admin only).

Query:
    limit: max entries (default 100, capped at 500)
    entityId: only entries about one request/item/file
"""

from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from ...security import admin_required

activity_bp = Blueprint("activity", __name__, url_prefix="/activity")

MAX_LIMIT = 500


@activity_bp.get("/")
@admin_required
async def list_activity():
    try:
        limit = int(request.args.get("limit", 100))
    except ValueError:
        limit = 100
    limit = max(1, min(limit, MAX_LIMIT))

    service = current_app.extensions["procurement"]
    entries = service.activity.recent_activity(limit=limit, entity_id=request.args.get("entityId") or None)
    return jsonify({"activity": entries, "count": len(entries)})
