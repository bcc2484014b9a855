"""
procurement_tracker/security.py

Access control helpers for the Procurement Request Tracker.

Key rules:
- UI is never trusted; all permission checks are server-side.
- Admin: sees and manages every request.
- Buyer: sees the requests assigned to them (buyer_id) and works them
  (accept/decline/stage/items/files).
- Client: sees the requests they own (client_id); may create requests and
  edit their own while still pending. Clients only see public files.
- Only admins toggle request visibility or accept on behalf of another buyer.

IMPORTANT:
- Decorators must preserve wrapped function metadata to avoid Flask endpoint collisions.
  We use functools.wraps everywhere.
- Views are coroutines; the wrappers are async too and await them.
"""

from __future__ import annotations

from functools import wraps
from typing import Any, Callable, Iterable, List, Optional, Tuple

from flask import jsonify
from flask_login import current_user

from .domain import (
    ROLE_ADMIN,
    ROLE_BUYER,
    ROLE_CLIENT,
    STATUS_PENDING,
    ProcurementRequest,
    RequestFile,
)

STAFF_ROLES = (ROLE_ADMIN, ROLE_BUYER)


# ---------------------------------------------------------------------
# View filter (pure)
# ---------------------------------------------------------------------
def _role(user: Any) -> Optional[str]:
    if user is None or not getattr(user, "id", None):
        return None
    return getattr(user, "role", None)


def visible_requests(requests: Iterable[ProcurementRequest], user: Any) -> List[ProcurementRequest]:
    """
    Requests the user may see.

    admin -> all, buyer -> assigned to them, client -> owned by them,
    no user (or unknown role) -> nothing.
    """
    role = _role(user)
    if role == ROLE_ADMIN:
        return list(requests)
    if role == ROLE_BUYER:
        return [r for r in requests if r.buyer_id == user.id]
    if role == ROLE_CLIENT:
        return [r for r in requests if r.client_id == user.id]
    return []


def client_view_requests(requests: Iterable[ProcurementRequest], user: Any) -> List[ProcurementRequest]:
    """The client-facing subset: visible AND published."""
    return [r for r in visible_requests(requests, user) if r.is_public]


def can_view_request(request: ProcurementRequest, user: Any) -> bool:
    return bool(visible_requests([request], user))


def public_files(request: ProcurementRequest, user: Any) -> List[RequestFile]:
    if _role(user) == ROLE_CLIENT:
        return [f for f in request.files if f.is_public]
    return list(request.files)


# ---------------------------------------------------------------------
# Mutation permissions
# ---------------------------------------------------------------------
def can_edit_request(request: ProcurementRequest, user: Any) -> bool:
    """Staff may edit what they can see; clients only their own pending requests."""
    role = _role(user)
    if role in STAFF_ROLES:
        return can_view_request(request, user)
    if role == ROLE_CLIENT:
        return request.client_id == user.id and request.status == STATUS_PENDING
    return False


def can_work_request(request: ProcurementRequest, user: Any) -> bool:
    """
    Buyer-side actions (accept/decline/stage/items/files).

    Admins: any request. Buyers: their own, plus unassigned pending requests
    they are picking up.
    """
    role = _role(user)
    if role == ROLE_ADMIN:
        return True
    if role == ROLE_BUYER:
        return request.buyer_id in (None, user.id)
    return False


# ---------------------------------------------------------------------
# Decorators
# ---------------------------------------------------------------------
def _json_error(message: str, status: int, error_code: str) -> Tuple[Any, int]:
    return jsonify({"error": error_code, "message": message}), status


def role_required(*roles: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """
    Decorator factory: authenticated user with one of `roles`.

    With no roles, any authenticated user passes.

    Usage:
        @requests_bp.post("/<request_id>/accept")
        @role_required(ROLE_ADMIN, ROLE_BUYER)
        async def accept(request_id): ...
    """
    def decorator(view_func: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(view_func)
        async def wrapper(*args: Any, **kwargs: Any):
            if not current_user.is_authenticated:
                return _json_error("Authentication required", 401, "UNAUTHORIZED")
            if roles and getattr(current_user, "role", None) not in roles:
                return _json_error("Permission denied", 403, "PERMISSION_DENIED")
            return await view_func(*args, **kwargs)

        return wrapper

    return decorator


def admin_required(view_func: Callable[..., Any]) -> Callable[..., Any]:
    """Decorator: admin-only."""
    return role_required(ROLE_ADMIN)(view_func)
