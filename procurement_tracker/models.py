"""
Procurement Request Tracker – Persistence Tables

Backend shape of the records held in memory by the RequestStore:
- users (login + role)
- procurement_requests (one row per request, excluding items/files)
- request_items (one row per line item, FK -> procurement_requests)
- request_files (attachment metadata, FK -> procurement_requests)
- activity_logs (activity sink)

IMPORTANT:
- Rows are read through backend.SqlBackend as plain dicts and mapped by
  transform.py. The stored request-level quantity columns are informational
  only; item sums are authoritative.
- Timestamps and business dates are stored as ISO-8601 strings, unchanged.
"""

from __future__ import annotations

from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash

from .domain import Actor, ROLE_ADMIN, ROLE_CLIENT, STAGE_NEW, STATUS_PENDING, utc_now_iso
from .extensions import db


# ---------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------
class User(UserMixin, db.Model):
    """System login user."""

    __tablename__ = "users"

    id = db.Column(db.String(64), primary_key=True)

    name = db.Column(db.String(150), nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    role = db.Column(db.String(20), nullable=False, default=ROLE_CLIENT, index=True)
    avatar = db.Column(db.String(500), nullable=True)

    password_hash = db.Column(db.String(255), nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    created_at = db.Column(db.String(40), default=utc_now_iso)

    def set_password(self, password: str):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return check_password_hash(self.password_hash, password)

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    def to_actor(self) -> Actor:
        return Actor(id=self.id, name=self.name, email=self.email, role=self.role, avatar=self.avatar)

    def __repr__(self):
        return f"<User {self.email} ({self.role})>"


# ---------------------------------------------------------------------
# Procurement requests
# ---------------------------------------------------------------------
class ProcurementRequestRow(db.Model):
    __tablename__ = "procurement_requests"

    id = db.Column(db.String(64), primary_key=True)

    rfq_number = db.Column(db.String(50), nullable=False, default="", index=True)
    po_number = db.Column(db.String(50), nullable=True, index=True)
    entity = db.Column(db.String(255), nullable=False, default="")
    description = db.Column(db.Text, nullable=False, default="")
    vendor = db.Column(db.String(255), nullable=True)
    place_of_delivery = db.Column(db.String(255), nullable=False, default="")
    place_of_arrival = db.Column(db.String(255), nullable=True)

    po_date = db.Column(db.String(40), nullable=True)
    mgp_eta = db.Column(db.String(40), nullable=True)
    exp_delivery_date = db.Column(db.String(40), nullable=True)
    date_delivered = db.Column(db.String(40), nullable=True)
    date_due = db.Column(db.String(40), nullable=True)

    lead_time_days = db.Column(db.Integer, nullable=True)
    days_count = db.Column(db.Integer, nullable=True)
    aging = db.Column(db.Integer, nullable=True)
    priority = db.Column(db.String(50), nullable=True)
    buyer = db.Column(db.String(150), nullable=True)
    action_items = db.Column(db.Text, nullable=True)
    responsible = db.Column(db.String(150), nullable=True)

    # informational copies, recomputed from items on load
    qty_requested = db.Column(db.Float, nullable=False, default=0)
    qty_delivered = db.Column(db.Float, nullable=False, default=0)
    qty_pending = db.Column(db.Float, nullable=False, default=0)

    stage = db.Column(db.String(40), nullable=False, default=STAGE_NEW, index=True)
    status = db.Column(db.String(20), nullable=False, default=STATUS_PENDING, index=True)

    client_id = db.Column(db.String(64), nullable=False, index=True)
    buyer_id = db.Column(db.String(64), nullable=True, index=True)
    is_public = db.Column(db.Boolean, nullable=False, default=False)

    version = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.String(40), nullable=False, default=utc_now_iso, index=True)
    updated_at = db.Column(db.String(40), nullable=False, default=utc_now_iso)

    items = db.relationship(
        "RequestItemRow",
        back_populates="request",
        cascade="all, delete-orphan",
        order_by="RequestItemRow.line",
    )

    files = db.relationship(
        "RequestFileRow",
        back_populates="request",
        cascade="all, delete-orphan",
    )

    def __repr__(self):
        return f"<ProcurementRequestRow {self.rfq_number or self.id}>"


class RequestItemRow(db.Model):
    __tablename__ = "request_items"

    id = db.Column(db.String(64), primary_key=True)

    request_id = db.Column(
        db.String(64),
        db.ForeignKey("procurement_requests.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    line = db.Column(db.Integer, nullable=True)
    item_number = db.Column(db.String(100), nullable=True)
    description = db.Column(db.Text, nullable=False, default="")

    qty_requested = db.Column(db.Float, nullable=False, default=0)
    qty_delivered = db.Column(db.Float, nullable=False, default=0)

    unit_price = db.Column(db.Numeric(12, 2), nullable=True)
    total_price = db.Column(db.Numeric(12, 2), nullable=True)

    created_at = db.Column(db.String(40), nullable=False, default=utc_now_iso)
    updated_at = db.Column(db.String(40), nullable=False, default=utc_now_iso)

    request = db.relationship("ProcurementRequestRow", back_populates="items")


class RequestFileRow(db.Model):
    __tablename__ = "request_files"

    id = db.Column(db.String(64), primary_key=True)

    request_id = db.Column(
        db.String(64),
        db.ForeignKey("procurement_requests.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    name = db.Column(db.String(255), nullable=False)
    url = db.Column(db.String(1000), nullable=False)
    size = db.Column(db.Integer, nullable=False, default=0)
    type = db.Column(db.String(150), nullable=False, default="")
    is_public = db.Column(db.Boolean, nullable=False, default=False)
    uploaded_by = db.Column(db.String(64), nullable=True)
    uploaded_at = db.Column(db.String(40), nullable=False, default=utc_now_iso)

    request = db.relationship("ProcurementRequestRow", back_populates="files")


# ---------------------------------------------------------------------
# Activity log
# ---------------------------------------------------------------------
class ActivityLog(db.Model):
    """Who did what to which entity (fire-and-forget sink)."""

    __tablename__ = "activity_logs"

    id = db.Column(db.Integer, primary_key=True)

    user_id = db.Column(db.String(64), nullable=True, index=True)
    user_name = db.Column(db.String(150), nullable=True)
    user_role = db.Column(db.String(20), nullable=True)

    action = db.Column(db.String(50), nullable=False, index=True)
    entity_type = db.Column(db.String(50), nullable=False, index=True)
    entity_id = db.Column(db.String(64), nullable=False, index=True)

    details = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.String(40), nullable=False, default=utc_now_iso, index=True)
