"""
procurement_tracker/backend.py

Backend persistence service over the procurement tables.

Operations consumed by the store:
- select_requests()            bulk select of procurement_requests
- select_items(request_id)     request_items by foreign key
- select_files(request_id)     request_files by foreign key
- insert_request(record)       insert, returning the stored row
- save_request(record)         upsert request + items + files

Errors:
- A missing table/relation is raised as TableMissingError (the caller falls
  back to demo data).
- Every other SQLAlchemy failure is raised as BackendError.

IMPORTANT:
- Each call runs inside its own application context, so the store can call
  the backend from any coroutine without a request context.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional, TypeVar

from flask import Flask
from sqlalchemy.exc import SQLAlchemyError

from .domain import ProcurementRequest
from .errors import BackendError, SyncError, TableMissingError
from .extensions import db
from .models import ProcurementRequestRow, RequestFileRow, RequestItemRow
from .transform import file_to_row, item_to_row, request_to_row

T = TypeVar("T")

_MISSING_TABLE_MARKERS = (
    "no such table",  # SQLite
    "does not exist",  # PostgreSQL: relation "x" does not exist
    "doesn't exist",  # MySQL: Table 'x' doesn't exist
    "undefined table",
)


def row_to_dict(instance: Any) -> Dict[str, Any]:
    """Snapshot of a model instance's column values (relationships excluded)."""
    return {column.name: getattr(instance, column.name) for column in instance.__table__.columns}


def classify_error(operation: str, exc: SQLAlchemyError) -> SyncError:
    message = str(getattr(exc, "orig", None) or exc)
    lowered = message.lower()
    if any(marker in lowered for marker in _MISSING_TABLE_MARKERS):
        return TableMissingError(f"{operation}: table missing ({message})", original=exc)
    return BackendError(f"{operation} failed: {message}", original=exc)


class SqlBackend:
    """Row-level CRUD over procurement_requests / request_items / request_files."""

    def __init__(self, app: Optional[Flask] = None):
        self.app = app

    def init_app(self, app: Flask) -> None:
        self.app = app

    def _call(self, operation: str, fn: Callable[[], T]) -> T:
        if self.app is None:
            raise BackendError(f"{operation}: backend is not bound to an application")
        with self.app.app_context():
            try:
                return fn()
            except SQLAlchemyError as exc:
                db.session.rollback()
                raise classify_error(operation, exc) from exc

    # -----------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------
    def select_requests(self) -> List[Dict[str, Any]]:
        def _select():
            rows = ProcurementRequestRow.query.order_by(ProcurementRequestRow.created_at.asc()).all()
            return [row_to_dict(row) for row in rows]

        return self._call("select requests", _select)

    def select_items(self, request_id: str) -> List[Dict[str, Any]]:
        def _select():
            rows = (
                RequestItemRow.query.filter_by(request_id=request_id)
                .order_by(RequestItemRow.line.asc(), RequestItemRow.created_at.asc())
                .all()
            )
            return [row_to_dict(row) for row in rows]

        return self._call("select items", _select)

    def select_files(self, request_id: str) -> List[Dict[str, Any]]:
        def _select():
            rows = (
                RequestFileRow.query.filter_by(request_id=request_id)
                .order_by(RequestFileRow.uploaded_at.asc())
                .all()
            )
            return [row_to_dict(row) for row in rows]

        return self._call("select files", _select)

    # -----------------------------------------------------------------
    # Writes
    # -----------------------------------------------------------------
    def insert_request(self, record: ProcurementRequest) -> Dict[str, Any]:
        def _insert():
            row = ProcurementRequestRow(**request_to_row(record))
            db.session.add(row)
            for item in record.items:
                db.session.add(RequestItemRow(**item_to_row(item, record.id)))
            for f in record.files:
                db.session.add(RequestFileRow(**file_to_row(f, record.id)))
            db.session.commit()
            return row_to_dict(row)

        return self._call("insert request", _insert)

    def save_request(self, record: ProcurementRequest) -> Dict[str, Any]:
        """Upsert the request row and make its item/file rows match the record."""

        def _save():
            row = db.session.get(ProcurementRequestRow, record.id)
            if row is None:
                row = ProcurementRequestRow(id=record.id)
                db.session.add(row)
            for column, value in request_to_row(record).items():
                setattr(row, column, value)

            _sync_children(
                RequestItemRow,
                record.id,
                {item.id: item_to_row(item, record.id) for item in record.items},
            )
            _sync_children(
                RequestFileRow,
                record.id,
                {f.id: file_to_row(f, record.id) for f in record.files},
            )

            db.session.commit()
            return row_to_dict(row)

        return self._call("save request", _save)


def _sync_children(model, request_id: str, wanted: Dict[str, Dict[str, Any]]) -> None:
    """Delete rows not in `wanted`, update the rest, insert new ones."""
    existing = {row.id: row for row in model.query.filter_by(request_id=request_id).all()}

    for row_id, row in existing.items():
        if row_id not in wanted:
            db.session.delete(row)

    for row_id, values in wanted.items():
        row = existing.get(row_id)
        if row is None:
            db.session.add(model(**values))
            continue
        for column, value in values.items():
            setattr(row, column, value)
