"""
procurement_tracker/audit.py

Activity log sink.

Goals:
- Capture WHO did WHAT to WHICH entity, with a small details payload.
- Store user name and role snapshots to preserve identity even if the user
  changes later.

IMPORTANT:
- Fire-and-forget: a failing insert is logged locally and never propagates
  to the operation that triggered it.
- Each write runs in its own application context and commits on its own.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

from flask import Flask
from sqlalchemy.exc import SQLAlchemyError

from .extensions import db
from .models import ActivityLog

logger = logging.getLogger(__name__)


class LogActions:
    CREATE_REQUEST = "CREATE_REQUEST"
    UPDATE_REQUEST = "UPDATE_REQUEST"
    ACCEPT_REQUEST = "ACCEPT_REQUEST"
    DECLINE_REQUEST = "DECLINE_REQUEST"
    UPDATE_STAGE = "UPDATE_STAGE"
    TOGGLE_VISIBILITY = "TOGGLE_VISIBILITY"
    UPLOAD_FILE = "UPLOAD_FILE"
    TOGGLE_FILE_VISIBILITY = "TOGGLE_FILE_VISIBILITY"
    ADD_ITEM = "ADD_ITEM"
    UPDATE_ITEM = "UPDATE_ITEM"
    DELETE_ITEM = "DELETE_ITEM"


def _details_json(details: Optional[Dict[str, Any]]) -> Optional[str]:
    """Stable JSON text; Decimal/datetime/etc fall back to str()."""
    if not details:
        return None
    return json.dumps(details, ensure_ascii=False, default=str)


def activity_to_dict(entry: ActivityLog) -> Dict[str, Any]:
    return {
        "id": entry.id,
        "userId": entry.user_id,
        "userName": entry.user_name,
        "userRole": entry.user_role,
        "action": entry.action,
        "entityType": entry.entity_type,
        "entityId": entry.entity_id,
        "details": json.loads(entry.details) if entry.details else None,
        "createdAt": entry.created_at,
    }


class ActivityLogger:
    """Writes ActivityLog rows; never raises."""

    def __init__(self, app: Optional[Flask] = None):
        self.app = app

    def init_app(self, app: Flask) -> None:
        self.app = app

    def log_activity(
        self,
        actor: Any,
        action: str,
        entity_type: str,
        entity_id: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """
        Add an ActivityLog entry.

        Parameters:
            actor: object with id / name / role (User row or domain Actor), may be None
            action: one of LogActions
            entity_type: "request" / "item" / "file"
            entity_id: id of the affected entity
            details: JSON-serializable payload (optional)
        """
        if self.app is None:
            logger.warning("Activity %s on %s %s dropped: no application bound", action, entity_type, entity_id)
            return False

        with self.app.app_context():
            try:
                db.session.add(
                    ActivityLog(
                        user_id=getattr(actor, "id", None),
                        user_name=getattr(actor, "name", None),
                        user_role=getattr(actor, "role", None),
                        action=action,
                        entity_type=entity_type,
                        entity_id=str(entity_id),
                        details=_details_json(details),
                    )
                )
                db.session.commit()
            except SQLAlchemyError as exc:
                db.session.rollback()
                logger.warning("Error logging activity %s on %s %s: %s", action, entity_type, entity_id, exc)
                return False
        return True

    def recent_activity(self, limit: int = 100, entity_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """Newest first; an unreadable log gives an empty list."""
        if self.app is None:
            return []

        with self.app.app_context():
            try:
                q = ActivityLog.query
                if entity_id:
                    q = q.filter(ActivityLog.entity_id == entity_id)
                entries = q.order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc()).limit(limit).all()
                return [activity_to_dict(entry) for entry in entries]
            except SQLAlchemyError as exc:
                db.session.rollback()
                logger.warning("Error fetching activity logs: %s", exc)
                return []
