"""
procurement_tracker/seed.py

Seed the demo users and requests.

Rules:
- Safe to run multiple times (idempotent).
- Users are matched by id; an existing user keeps its password.
- Requests are matched by id; existing requests (and their items/files) are
  left untouched so local edits survive a re-seed.

NOTE:
- The request data is the same dataset served in degraded mode
  (see fallback.py), so a seeded database and the fallback look alike.
"""

from __future__ import annotations

import logging
from typing import Tuple

from .extensions import db
from .fallback import DEMO_USERS, fallback_requests, fallback_users
from .models import ProcurementRequestRow, RequestFileRow, RequestItemRow, User
from .transform import file_to_row, item_to_row, request_to_row

logger = logging.getLogger(__name__)

DEMO_PASSWORD = "demo1234"


def seed_demo_users(password: str = DEMO_PASSWORD) -> int:
    """Create missing demo users. Returns the number created."""
    created = 0
    for actor in fallback_users():
        if db.session.get(User, actor.id) is not None:
            continue
        user = User(
            id=actor.id,
            name=actor.name,
            email=actor.email,
            role=actor.role,
            avatar=actor.avatar,
            is_active=True,
        )
        user.set_password(password)
        db.session.add(user)
        created += 1

    db.session.flush()
    return created


def seed_demo_requests() -> int:
    """Create missing demo requests with their items. Returns the number created."""
    created = 0
    for record in fallback_requests():
        if db.session.get(ProcurementRequestRow, record.id) is not None:
            continue

        db.session.add(ProcurementRequestRow(**request_to_row(record)))
        for item in record.items:
            db.session.add(RequestItemRow(**item_to_row(item, record.id)))
        for f in record.files:
            db.session.add(RequestFileRow(**file_to_row(f, record.id)))
        created += 1

    db.session.flush()
    return created


def seed_demo_data(password: str = DEMO_PASSWORD) -> Tuple[int, int]:
    """Seed users then requests in one transaction."""
    users = seed_demo_users(password)
    requests = seed_demo_requests()
    db.session.commit()
    logger.info("Seeded %d of %d demo users and %d demo requests", users, len(DEMO_USERS), requests)
    return users, requests
