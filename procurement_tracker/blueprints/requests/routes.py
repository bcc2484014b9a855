"""
procurement_tracker/blueprints/requests/routes.py

Procurement request routes (JSON).

Includes:
- Visible list (optionally grouped: pending / active / completed)
- Client view (published requests only)
- Detail
- Every mutation: create, update, accept, decline, stage, visibility,
  files, items
- Manual re-sync of requests saved locally only

IMPORTANT:
- UI is never trusted. Access control and validations are server-side.
- A request the user cannot see answers 404, never 403, so ids do not leak.
- Views hand the service a plain Actor, not the current_user proxy.
"""

from __future__ import annotations

from typing import Any, Callable, Optional

from flask import Blueprint, abort, current_app, jsonify, request, send_from_directory
from flask_login import current_user

from ...domain import ROLE_ADMIN, ROLE_BUYER, Actor, ProcurementRequest
from ...errors import MutationResult, PermissionDenied, RequestNotFound, ValidationError
from ...reports import group_requests
from ...security import (
    admin_required,
    can_edit_request,
    can_view_request,
    can_work_request,
    client_view_requests,
    public_files,
    role_required,
)
from ...serializers import (
    create_data_from_payload,
    file_to_dict,
    item_to_dict,
    item_patch_from_payload,
    request_patch_from_payload,
    request_to_dict,
    result_to_dict,
    snake_payload,
)
from ...service import ProcurementService

requests_bp = Blueprint("requests", __name__, url_prefix="/requests")
files_bp = Blueprint("files", __name__, url_prefix="/files")

TRUTHY = {"1", "true", "yes", "on"}


# ---------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------
def _service() -> ProcurementService:
    return current_app.extensions["procurement"]


def _actor() -> Actor:
    return current_user.to_actor()


def _payload() -> dict:
    return request.get_json(silent=True) or {}


async def _load_visible(request_id: str, actor: Actor) -> ProcurementRequest:
    service = _service()
    await service.ensure_loaded()
    record = service.get_by_id(request_id)
    if record is None or not can_view_request(record, actor):
        raise RequestNotFound(request_id)
    return record


async def _load_workable(request_id: str, actor: Actor) -> ProcurementRequest:
    """Buyer-side actions: admins on anything, buyers on their own or unassigned requests."""
    service = _service()
    await service.ensure_loaded()
    record = service.get_by_id(request_id)
    if record is None:
        raise RequestNotFound(request_id)
    if not can_work_request(record, actor):
        if not can_view_request(record, actor):
            raise RequestNotFound(request_id)
        raise PermissionDenied("This request is assigned to another buyer")
    return record


def _respond(result: MutationResult, serialize: Optional[Callable[[Any], Any]] = None, status: int = 200):
    if not result:
        error = result.error
        body = {
            "error": error.error_code,
            "message": error.message,
            "notification": result.notification.to_dict() if result.notification else None,
        }
        return jsonify(body), error.status_code

    data = serialize(result.value) if serialize is not None and result.value is not None else None
    return jsonify(result_to_dict(result, data)), status


def _request_serializer(actor: Actor) -> Callable[[ProcurementRequest], dict]:
    return lambda record: request_to_dict(record, actor)


# ---------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------
@requests_bp.get("/")
@role_required()
async def list_requests():
    """
    Requests visible to the current user.

    Query:
        group: pending | active | completed (optional)
    """
    actor = _actor()
    service = _service()
    await service.ensure_loaded()

    records = service.user_requests(actor)
    group = request.args.get("group")
    if group:
        records = group_requests(records, group)

    return jsonify(
        {
            "requests": [request_to_dict(r, actor) for r in records],
            "count": len(records),
            "source": service.store.source,
        }
    )


@requests_bp.get("/client-view")
@role_required()
async def client_view():
    actor = _actor()
    service = _service()
    await service.ensure_loaded()
    records = client_view_requests(service.store.all(), actor)
    return jsonify({"requests": [request_to_dict(r, actor) for r in records], "count": len(records)})


@requests_bp.get("/<request_id>")
@role_required()
async def request_detail(request_id: str):
    actor = _actor()
    record = await _load_visible(request_id, actor)
    return jsonify({"request": request_to_dict(record, actor), "synced": _service().store.is_synced(request_id)})


# ---------------------------------------------------------------------
# Request mutations
# ---------------------------------------------------------------------
@requests_bp.post("/")
@role_required()
async def create_request():
    actor = _actor()
    service = _service()
    await service.ensure_loaded()

    data = create_data_from_payload(_payload())
    result = await service.create_request(actor, data)
    return _respond(result, _request_serializer(actor), status=201)


@requests_bp.patch("/<request_id>")
@role_required()
async def update_request(request_id: str):
    actor = _actor()
    record = await _load_visible(request_id, actor)
    if not can_edit_request(record, actor):
        raise PermissionDenied("Only pending requests can be edited by their owner")

    payload = _payload()
    items = payload.get("items")
    if items is not None:
        items = create_data_from_payload({"items": items})["items"]

    result = await _service().update_request(actor, request_id, request_patch_from_payload(payload), items=items)
    return _respond(result, _request_serializer(actor))


@requests_bp.post("/<request_id>/accept")
@role_required(ROLE_ADMIN, ROLE_BUYER)
async def accept_request(request_id: str):
    """
    Body:
        buyerId: required for admins; buyers may only accept for themselves
        any other request field: admin-only adjustments applied on accept
    """
    actor = _actor()
    await _load_workable(request_id, actor)

    payload = snake_payload(_payload())
    buyer_id = payload.pop("buyer_id", None)
    patch = request_patch_from_payload(payload)

    if actor.role == ROLE_BUYER:
        if buyer_id and buyer_id != actor.id:
            raise PermissionDenied("Only admins may assign another buyer")
        if not patch.is_empty():
            raise PermissionDenied("Only admins may change request details on accept")
        buyer_id = actor.id

    result = await _service().accept_request(actor, request_id, buyer_id, patch=None if patch.is_empty() else patch)
    return _respond(result, _request_serializer(actor))


@requests_bp.post("/<request_id>/decline")
@role_required(ROLE_ADMIN, ROLE_BUYER)
async def decline_request(request_id: str):
    actor = _actor()
    await _load_workable(request_id, actor)
    result = await _service().decline_request(actor, request_id)
    return _respond(result, _request_serializer(actor))


@requests_bp.post("/<request_id>/stage")
@role_required(ROLE_ADMIN, ROLE_BUYER)
async def update_stage(request_id: str):
    actor = _actor()
    await _load_workable(request_id, actor)

    stage = (_payload().get("stage") or "").strip()
    if not stage:
        raise ValidationError("stage is required")

    result = await _service().update_stage(actor, request_id, stage)
    return _respond(result, _request_serializer(actor))


@requests_bp.post("/<request_id>/visibility")
@admin_required
async def toggle_visibility(request_id: str):
    actor = _actor()
    await _load_visible(request_id, actor)
    result = await _service().toggle_public_status(actor, request_id)
    return _respond(result, _request_serializer(actor))


# ---------------------------------------------------------------------
# Files
# ---------------------------------------------------------------------
@requests_bp.post("/<request_id>/files")
@role_required(ROLE_ADMIN, ROLE_BUYER)
async def upload_file(request_id: str):
    """multipart/form-data: file (required), isPublic (optional flag)."""
    actor = _actor()
    await _load_workable(request_id, actor)

    upload = request.files.get("file")
    if upload is None or not upload.filename:
        raise ValidationError("A file is required")
    is_public = (request.form.get("isPublic") or "").strip().lower() in TRUTHY

    result = await _service().upload_file(
        actor,
        request_id,
        upload.filename,
        upload.stream,
        content_type=upload.mimetype or "",
        is_public=is_public,
    )
    return _respond(result, file_to_dict, status=201)


@requests_bp.post("/<request_id>/files/<file_id>/visibility")
@role_required(ROLE_ADMIN, ROLE_BUYER)
async def toggle_file_visibility(request_id: str, file_id: str):
    actor = _actor()
    await _load_workable(request_id, actor)
    result = await _service().toggle_file_visibility(actor, request_id, file_id)
    return _respond(result, file_to_dict)


# ---------------------------------------------------------------------
# Items
# ---------------------------------------------------------------------
@requests_bp.post("/<request_id>/items")
@role_required(ROLE_ADMIN, ROLE_BUYER)
async def add_item(request_id: str):
    actor = _actor()
    await _load_workable(request_id, actor)
    result = await _service().add_request_item(actor, request_id, item_patch_from_payload(_payload()))
    return _respond(result, item_to_dict, status=201)


@requests_bp.patch("/<request_id>/items/<item_id>")
@role_required(ROLE_ADMIN, ROLE_BUYER)
async def update_item(request_id: str, item_id: str):
    actor = _actor()
    await _load_workable(request_id, actor)
    result = await _service().update_request_item(actor, request_id, item_id, item_patch_from_payload(_payload()))
    return _respond(result, item_to_dict)


@requests_bp.delete("/<request_id>/items/<item_id>")
@role_required(ROLE_ADMIN, ROLE_BUYER)
async def delete_item(request_id: str, item_id: str):
    actor = _actor()
    await _load_workable(request_id, actor)
    result = await _service().delete_request_item(actor, request_id, item_id)
    return _respond(result, _request_serializer(actor))


# ---------------------------------------------------------------------
# Sync
# ---------------------------------------------------------------------
@requests_bp.post("/sync")
@admin_required
async def retry_sync():
    remaining = await _service().retry_pending_sync()
    return jsonify({"unsynced": remaining, "synced": not remaining})


# ---------------------------------------------------------------------
# Stored blobs
# ---------------------------------------------------------------------
@files_bp.get("/<path:filename>")
@role_required()
async def serve_file(filename: str):
    """Serve a stored attachment if it belongs to a request (and file) the user may see."""
    actor = _actor()
    service = _service()
    await service.ensure_loaded()

    url = f"{service.storage.url_prefix}/{filename}"
    for record in service.user_requests(actor):
        for f in public_files(record, actor):
            if f.url == url:
                return send_from_directory(service.storage.root, filename, download_name=f.name)
    abort(404)
