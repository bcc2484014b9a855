"""
procurement_tracker/service.py

Procurement service: the mutation operations over the RequestStore.

Every operation follows the same contract:
  1) validate preconditions against a snapshot (store untouched on failure)
  2) await the configured operation delay
  3) build the new record from the snapshot
  4) compare-and-swap it into the store
  5) persist it remotely, tolerating failure (marks the request unsynced)
  6) emit exactly one notification and write an activity entry
  7) return a MutationResult

IMPORTANT:
- Remote failures never undo the local change. They are reported through
  MutationResult.sync_error and a "saved locally, not yet synced" message.
- Quantities are only ever recomputed through transform.recompute_totals().
"""

from __future__ import annotations

import asyncio
import logging
import math
import random
import threading
from decimal import Decimal, InvalidOperation
from typing import Any, BinaryIO, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from flask import Flask

from .audit import ActivityLogger, LogActions
from .backend import SqlBackend
from .domain import (
    ROLE_ADMIN,
    STAGE_DELIVERED,
    STAGE_NEW,
    STAGES,
    STATUS_ACCEPTED,
    STATUS_COMPLETED,
    STATUS_DECLINED,
    STATUS_PENDING,
    ItemPatch,
    ProcurementRequest,
    RequestFile,
    RequestItem,
    RequestPatch,
    new_id,
    utc_now_iso,
)
from .errors import (
    BackendError,
    FileNotFound,
    InvalidStateTransition,
    ItemNotFound,
    MutationResult,
    Notification,
    ProcurementError,
    RequestNotFound,
    SyncError,
    TableMissingError,
    ValidationError,
)
from .fallback import fallback_requests
from .notifications import FlashNotifier
from .security import visible_requests
from .storage import LocalBlobStorage
from .store import SOURCE_BACKEND, SOURCE_FALLBACK, RequestStore
from .transform import recompute_totals, renumber_lines, transform_request_row

logger = logging.getLogger(__name__)

DEFAULT_DELAYS = {"create": 1.0, "upload": 1.5, "default": 0.8}


# ---------------------------------------------------------------------
# Input helpers
# ---------------------------------------------------------------------
def _quantity(value: Any, field_name: str) -> float:
    """Strict quantity parsing for caller input (backend rows use transform.to_number)."""
    if isinstance(value, bool):
        raise ValidationError(f"{field_name} must be a number")
    try:
        number = float(str(value).strip().replace(",", ".")) if isinstance(value, str) else float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field_name} must be a number")
    if not math.isfinite(number) or number < 0:
        raise ValidationError(f"{field_name} must be a non-negative number")
    return number


def _price(value: Any) -> Optional[Decimal]:
    if value is None or (isinstance(value, str) and value.strip() == ""):
        return None
    try:
        number = Decimal(str(value).strip().replace(",", "."))
    except (InvalidOperation, ValueError):
        raise ValidationError("Unit price must be a number")
    if not number.is_finite() or number < 0:
        raise ValidationError("Unit price must be a non-negative number")
    return number


def _clean_item_patch(patch: ItemPatch) -> Dict[str, Any]:
    """Validated, normalized values of the provided item fields."""
    values = patch.provided()
    if "qty_requested" in values:
        values["qty_requested"] = _quantity(values["qty_requested"], "Requested quantity")
    if "qty_delivered" in values:
        values["qty_delivered"] = _quantity(values["qty_delivered"], "Delivered quantity")
    if "unit_price" in values:
        values["unit_price"] = _price(values["unit_price"])
    if "description" in values:
        values["description"] = str(values["description"] or "")
    if "item_number" in values:
        values["item_number"] = str(values["item_number"]) if values["item_number"] else None
    return values


# columns declared NOT NULL in models.ProcurementRequestRow
REQUIRED_TEXT_FIELDS = ("rfq_number", "entity", "description", "place_of_delivery")
INTEGER_FIELDS = ("lead_time_days", "days_count", "aging")


def _label(field_name: str) -> str:
    return field_name.replace("_", " ").capitalize()


def _text(value: Any, field_name: str) -> str:
    if isinstance(value, bool) or not isinstance(value, (str, int, float, Decimal)):
        raise ValidationError(f"{_label(field_name)} must be text")
    return str(value)


def _integer(value: Any, field_name: str) -> Optional[int]:
    if value is None or (isinstance(value, str) and value.strip() == ""):
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{_label(field_name)} must be a whole number")
    try:
        number = float(value.strip()) if isinstance(value, str) else float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{_label(field_name)} must be a whole number")
    if not math.isfinite(number) or number != int(number):
        raise ValidationError(f"{_label(field_name)} must be a whole number")
    return int(number)


def _clean_request_patch(patch: RequestPatch) -> RequestPatch:
    """Validated copy of `patch`; raises ValidationError before anything is applied."""
    values = patch.provided()
    for name, value in values.items():
        if name in INTEGER_FIELDS:
            values[name] = _integer(value, name)
        elif value is None:
            if name in REQUIRED_TEXT_FIELDS:
                raise ValidationError(f"{_label(name)} cannot be empty")
        else:
            values[name] = _text(value, name)
    return RequestPatch(**values)


def _new_item(values: Mapping[str, Any], line: int, description_default: str = "") -> RequestItem:
    return RequestItem(
        id=new_id(),
        item_number=values.get("item_number"),
        description=values.get("description", description_default) or "",
        qty_requested=values.get("qty_requested", 1.0),
        qty_delivered=values.get("qty_delivered", 0.0),
        unit_price=values.get("unit_price"),
        line=line,
    )


def generate_rfq_number() -> str:
    return f"REQ{random.randint(0, 999999):06d}"


# ---------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------
class ProcurementService:
    """Owns the RequestStore and every operation that changes it."""

    def __init__(
        self,
        store: Optional[RequestStore] = None,
        backend: Optional[SqlBackend] = None,
        storage: Optional[LocalBlobStorage] = None,
        activity: Optional[ActivityLogger] = None,
        notifier: Optional[FlashNotifier] = None,
        delays: Optional[Dict[str, float]] = None,
        default_entity: str = "MGP Investments",
    ):
        self.store = store or RequestStore()
        self.backend = backend
        self.storage = storage
        self.activity = activity
        self.notifier = notifier or FlashNotifier()
        self.delays = dict(delays if delays is not None else DEFAULT_DELAYS)
        self.default_entity = default_entity
        self._load_lock = threading.Lock()

    def init_app(self, app: Flask) -> None:
        """Bind the collaborators to `app` and register under app.extensions."""
        if self.backend is None:
            self.backend = SqlBackend()
        self.backend.init_app(app)

        if self.storage is None:
            self.storage = LocalBlobStorage()
        self.storage.init_app(app)

        if self.activity is None:
            self.activity = ActivityLogger()
        self.activity.init_app(app)

        self.delays = dict(app.config.get("OPERATION_DELAYS", DEFAULT_DELAYS))
        self.default_entity = app.config.get("DEFAULT_ENTITY", self.default_entity)

        app.extensions["procurement"] = self

    # -----------------------------------------------------------------
    # Plumbing
    # -----------------------------------------------------------------
    async def _delay(self, operation: str) -> None:
        await asyncio.sleep(self.delays.get(operation, self.delays.get("default", 0.0)))

    def _persist(self, record: ProcurementRequest, insert: bool = False) -> Optional[SyncError]:
        if self.backend is None:
            return None
        try:
            if insert:
                self.backend.insert_request(record)
            else:
                self.backend.save_request(record)
        except SyncError as exc:
            logger.warning("Remote persistence failed for request %s: %s", record.id, exc)
            return exc
        return None

    def _commit(
        self,
        record: ProcurementRequest,
        expected_version: int,
        insert: bool = False,
    ) -> Tuple[ProcurementRequest, Optional[SyncError]]:
        if record.has_over_delivery:
            logger.warning("Request %s records more delivered than requested", record.id)

        stored = self.store.add(record) if insert else self.store.replace(record, expected_version)
        self.store.mark_unsynced(stored.id)

        sync_error = self._persist(stored, insert=insert)
        if sync_error is None:
            self.store.mark_synced(stored.id)
        return stored, sync_error

    def _log(self, actor: Any, action: str, entity_type: str, entity_id: str, details: Optional[Dict[str, Any]] = None):
        if self.activity is not None:
            self.activity.log_activity(actor, action, entity_type, entity_id, details)

    def _success(
        self,
        value: Any,
        title: str,
        message: str,
        sync_error: Optional[SyncError] = None,
    ) -> MutationResult:
        if sync_error is not None:
            notification = Notification(title, f"{message}. Saved locally, not yet synced.", "warning")
        else:
            notification = Notification(title, f"{message}.", "success")
        self.notifier.notify(notification)
        return MutationResult(value=value, sync_error=sync_error, notification=notification)

    def _failure(self, error: ProcurementError, title: str = "Error") -> MutationResult:
        notification = Notification(title, error.message, "danger")
        self.notifier.notify(notification)
        return MutationResult(error=error, notification=notification)

    def _snapshot(self, request_id: str) -> ProcurementRequest:
        record = self.store.get_by_id(request_id)
        if record is None:
            raise RequestNotFound(request_id)
        return record

    # -----------------------------------------------------------------
    # Loading / reads
    # -----------------------------------------------------------------
    async def load(self) -> str:
        """
        Fill the store from the backend.

        - Missing tables: demo data (degraded mode).
        - Any other backend error: logged, store left as it was.
        - Unsynced local records are persisted first; those that still fail
          are carried over into the reloaded store.
        Returns the store source.
        """
        return self._reload(force=True)

    async def ensure_loaded(self) -> None:
        if not self.store.loaded:
            self._reload(force=False)

    def _reload(self, force: bool) -> str:
        with self._load_lock:
            if not force and self.store.loaded:
                return self.store.source

            pending = self.store.unsynced_records()
            if self.backend is None:
                self.store.load(fallback_requests(), SOURCE_FALLBACK, carry_over=pending)
                return self.store.source

            still_pending = []
            for record in pending:
                if self._persist(record) is None:
                    self.store.mark_synced(record.id)
                else:
                    still_pending.append(record)
            pending = still_pending

            try:
                records = []
                for row in self.backend.select_requests():
                    records.append(
                        transform_request_row(
                            row,
                            self.backend.select_items(row["id"]),
                            self.backend.select_files(row["id"]),
                        )
                    )
            except TableMissingError as exc:
                logger.warning("Procurement tables missing, serving fallback data: %s", exc)
                self.store.load(fallback_requests(), SOURCE_FALLBACK, carry_over=pending)
                return self.store.source
            except SyncError as exc:
                logger.error("Error fetching procurement requests: %s", exc)
                return self.store.source

            if pending:
                logger.warning("%d unsynced requests kept over the reload", len(pending))
            self.store.load(records, SOURCE_BACKEND, carry_over=pending)
            return self.store.source

    def get_by_id(self, request_id: str) -> Optional[ProcurementRequest]:
        return self.store.get_by_id(request_id)

    def user_requests(self, user: Any) -> List[ProcurementRequest]:
        return visible_requests(self.store.all(), user)

    # -----------------------------------------------------------------
    # Requests
    # -----------------------------------------------------------------
    def _items_from_input(self, raw_items: Iterable[Mapping[str, Any]]) -> List[RequestItem]:
        items = []
        for line, raw in enumerate(raw_items, start=1):
            values = _clean_item_patch(ItemPatch.from_dict(dict(raw)))
            items.append(_new_item(values, line))
        return items

    async def create_request(self, actor: Any, data: Mapping[str, Any]) -> MutationResult:
        """
        Create a pending request in stage 'New Request'.

        Admins may set entity, RFQ number, place of arrival and the owning
        client; for everyone else those come from defaults and the actor.
        """
        title = "Failed to create request"
        try:
            if actor is None or not getattr(actor, "id", None):
                raise ValidationError("A signed-in user is required to create a request")
            is_admin = getattr(actor, "role", None) == ROLE_ADMIN
            client_id = (data.get("client_id") or actor.id) if is_admin else actor.id

            patch = _clean_request_patch(RequestPatch.from_dict(dict(data)))

            raw_items = data.get("items") or []
            if raw_items:
                items = self._items_from_input(raw_items)
            else:
                # absent quantity means one unit; an explicit 0 is kept
                values = {"description": str(data.get("description") or "")}
                if data.get("qty_requested") not in (None, ""):
                    values["qty_requested"] = _quantity(data.get("qty_requested"), "Requested quantity")
                items = [_new_item(values, 1)]
        except ProcurementError as exc:
            return self._failure(exc, title)

        await self._delay("create")

        now = utc_now_iso()
        record = ProcurementRequest(
            id=new_id(),
            client_id=client_id,
            stage=STAGE_NEW,
            status=STATUS_PENDING,
            is_public=False,
            created_at=now,
            updated_at=now,
            items=items,
        )
        patch.apply_to(record)

        if is_admin:
            record.entity = record.entity or self.default_entity
            record.rfq_number = record.rfq_number or generate_rfq_number()
        else:
            record.entity = self.default_entity
            record.rfq_number = generate_rfq_number()
            record.place_of_arrival = None

        recompute_totals(record)

        try:
            stored, sync_error = self._commit(record, 0, insert=True)
        except ProcurementError as exc:
            return self._failure(exc, title)

        self._log(actor, LogActions.CREATE_REQUEST, "request", stored.id, {"rfqNumber": stored.rfq_number})
        return self._success(stored, "Request Created", "Your procurement request has been successfully created", sync_error)

    async def update_request(
        self,
        actor: Any,
        request_id: str,
        patch: RequestPatch,
        items: Optional[Iterable[Mapping[str, Any]]] = None,
    ) -> MutationResult:
        """Apply `patch` (and optionally replace the whole item list)."""
        try:
            snapshot = self._snapshot(request_id)
            patch = _clean_request_patch(patch)
            new_items = None
            if items is not None:
                new_items = self._items_from_input(items)
                if not new_items:
                    raise ValidationError("A request must have at least one item")
        except ProcurementError as exc:
            return self._failure(exc)

        await self._delay("update")

        record = snapshot
        patch.apply_to(record)
        if new_items is not None:
            record.items = new_items
        record.updated_at = utc_now_iso()
        recompute_totals(record)

        try:
            stored, sync_error = self._commit(record, snapshot.version)
        except ProcurementError as exc:
            return self._failure(exc)

        self._log(actor, LogActions.UPDATE_REQUEST, "request", stored.id, {"fields": sorted(patch.provided())})
        return self._success(stored, "Request Updated", "The request has been successfully updated", sync_error)

    def _require_pending(self, record: ProcurementRequest, verb: str) -> None:
        if record.status != STATUS_PENDING:
            raise InvalidStateTransition(f"Only pending requests can be {verb} (status is {record.status})")

    async def accept_request(
        self,
        actor: Any,
        request_id: str,
        buyer_id: str,
        patch: Optional[RequestPatch] = None,
    ) -> MutationResult:
        title = "Failed to accept request"
        try:
            snapshot = self._snapshot(request_id)
            if not buyer_id:
                raise ValidationError("A buyer must be assigned to accept a request")
            self._require_pending(snapshot, "accepted")
            if patch is not None:
                patch = _clean_request_patch(patch)
        except ProcurementError as exc:
            return self._failure(exc, title)

        await self._delay("accept")

        record = snapshot
        if patch is not None:
            patch.apply_to(record)
        record.status = STATUS_ACCEPTED
        record.buyer_id = buyer_id
        record.updated_at = utc_now_iso()
        recompute_totals(record)

        try:
            stored, sync_error = self._commit(record, snapshot.version)
        except ProcurementError as exc:
            return self._failure(exc, title)

        self._log(actor, LogActions.ACCEPT_REQUEST, "request", stored.id, {"buyerId": buyer_id})
        return self._success(stored, "Request Accepted", "The procurement request has been accepted", sync_error)

    async def decline_request(self, actor: Any, request_id: str) -> MutationResult:
        title = "Failed to decline request"
        try:
            snapshot = self._snapshot(request_id)
            self._require_pending(snapshot, "declined")
        except ProcurementError as exc:
            return self._failure(exc, title)

        await self._delay("decline")

        record = snapshot
        record.status = STATUS_DECLINED
        record.updated_at = utc_now_iso()

        try:
            stored, sync_error = self._commit(record, snapshot.version)
        except ProcurementError as exc:
            return self._failure(exc, title)

        self._log(actor, LogActions.DECLINE_REQUEST, "request", stored.id)
        return self._success(stored, "Request Declined", "The procurement request has been declined", sync_error)

    async def update_stage(self, actor: Any, request_id: str, stage: str) -> MutationResult:
        """Any stage may be selected; 'Delivered' also completes the request."""
        title = "Failed to update stage"
        try:
            snapshot = self._snapshot(request_id)
            if stage not in STAGES:
                raise ValidationError(f"Unknown stage: {stage}")
            if snapshot.status == STATUS_DECLINED:
                raise InvalidStateTransition("Declined requests cannot change stage")
        except ProcurementError as exc:
            return self._failure(exc, title)

        await self._delay("stage")

        record = snapshot
        previous = record.stage
        record.stage = stage
        if stage == STAGE_DELIVERED:
            record.status = STATUS_COMPLETED
        record.updated_at = utc_now_iso()

        try:
            stored, sync_error = self._commit(record, snapshot.version)
        except ProcurementError as exc:
            return self._failure(exc, title)

        self._log(actor, LogActions.UPDATE_STAGE, "request", stored.id, {"from": previous, "to": stage})
        return self._success(stored, "Stage Updated", f"Request stage updated to {stage}", sync_error)

    async def toggle_public_status(self, actor: Any, request_id: str) -> MutationResult:
        title = "Failed to update visibility"
        try:
            snapshot = self._snapshot(request_id)
        except ProcurementError as exc:
            return self._failure(exc, title)

        await self._delay("visibility")

        record = snapshot
        record.is_public = not record.is_public
        record.updated_at = utc_now_iso()

        try:
            stored, sync_error = self._commit(record, snapshot.version)
        except ProcurementError as exc:
            return self._failure(exc, title)

        self._log(actor, LogActions.TOGGLE_VISIBILITY, "request", stored.id, {"isPublic": stored.is_public})
        message = "Request is now visible to the client" if stored.is_public else "Request is now hidden from the client"
        return self._success(stored, "Visibility Updated", message, sync_error)

    # -----------------------------------------------------------------
    # Files
    # -----------------------------------------------------------------
    async def upload_file(
        self,
        actor: Any,
        request_id: str,
        filename: str,
        data: Union[bytes, BinaryIO],
        content_type: str = "",
        is_public: bool = False,
    ) -> MutationResult:
        """
        Store the blob and attach its metadata.

        A storage failure does not fail the operation: the file gets a
        local:// placeholder URL and the result carries a sync error.
        """
        try:
            snapshot = self._snapshot(request_id)
            if not filename:
                raise ValidationError("A file name is required")
        except ProcurementError as exc:
            return self._failure(exc, "Failed to upload file")

        await self._delay("upload")

        file_id = new_id()
        blob = self.storage.upload(request_id, filename, data) if self.storage is not None else None
        storage_error = None
        if blob is None:
            storage_error = BackendError(f"File storage unavailable for {filename}")
            url = f"local://{file_id}/{filename}"
            size = len(data) if isinstance(data, (bytes, bytearray)) else 0
        else:
            url = blob.url
            size = blob.size

        new_file = RequestFile(
            id=file_id,
            name=filename,
            url=url,
            size=size,
            type=content_type or "",
            uploaded_at=utc_now_iso(),
            is_public=bool(is_public),
            uploaded_by=getattr(actor, "id", None),
        )

        record = snapshot
        record.files.append(new_file)
        record.updated_at = utc_now_iso()

        try:
            stored, sync_error = self._commit(record, snapshot.version)
        except ProcurementError as exc:
            if blob is not None:
                self.storage.delete(blob.path)
            return self._failure(exc, "Failed to upload file")

        self._log(actor, LogActions.UPLOAD_FILE, "file", file_id, {"requestId": request_id, "fileName": filename})
        return self._success(
            stored.find_file(file_id),
            "File Uploaded",
            f"{filename} has been successfully uploaded",
            sync_error or storage_error,
        )

    async def toggle_file_visibility(self, actor: Any, request_id: str, file_id: str) -> MutationResult:
        title = "Failed to update file visibility"
        try:
            snapshot = self._snapshot(request_id)
            if snapshot.find_file(file_id) is None:
                raise FileNotFound(file_id)
        except ProcurementError as exc:
            return self._failure(exc, title)

        await self._delay("file_visibility")

        record = snapshot
        target = record.find_file(file_id)
        target.is_public = not target.is_public
        record.updated_at = utc_now_iso()

        try:
            stored, sync_error = self._commit(record, snapshot.version)
        except ProcurementError as exc:
            return self._failure(exc, title)

        updated = stored.find_file(file_id)
        self._log(actor, LogActions.TOGGLE_FILE_VISIBILITY, "file", file_id, {"isPublic": updated.is_public})
        message = "File is now visible to the client" if updated.is_public else "File is now hidden from the client"
        return self._success(updated, "File Visibility Updated", message, sync_error)

    # -----------------------------------------------------------------
    # Items
    # -----------------------------------------------------------------
    async def add_or_update_request_item(
        self,
        actor: Any,
        request_id: str,
        patch: ItemPatch,
        item_id: Optional[str] = None,
    ) -> MutationResult:
        """
        With item_id: update that item in place.
        Without: append a new item at line max(line) + 1.
        """
        title = "Failed to save item"
        try:
            snapshot = self._snapshot(request_id)
            if item_id is not None and snapshot.find_item(item_id) is None:
                raise ItemNotFound(item_id)
            values = _clean_item_patch(patch)
        except ProcurementError as exc:
            return self._failure(exc, title)

        await self._delay("item")

        record = snapshot
        if item_id is not None:
            target = record.find_item(item_id)
            for name, value in values.items():
                setattr(target, name, value)
            action, heading, message = LogActions.UPDATE_ITEM, "Item Updated", "Item has been successfully updated"
        else:
            next_line = max((item.line for item in record.items), default=0) + 1
            target = _new_item(values, next_line)
            record.items.append(target)
            action, heading, message = LogActions.ADD_ITEM, "Item Added", "New item has been added to the request"

        record.updated_at = utc_now_iso()
        recompute_totals(record)

        try:
            stored, sync_error = self._commit(record, snapshot.version)
        except ProcurementError as exc:
            return self._failure(exc, title)

        self._log(actor, action, "item", target.id, {"requestId": request_id, "fields": sorted(values)})
        return self._success(stored.find_item(target.id), heading, message, sync_error)

    async def add_request_item(self, actor: Any, request_id: str, patch: ItemPatch) -> MutationResult:
        return await self.add_or_update_request_item(actor, request_id, patch)

    async def update_request_item(self, actor: Any, request_id: str, item_id: str, patch: ItemPatch) -> MutationResult:
        return await self.add_or_update_request_item(actor, request_id, patch, item_id=item_id)

    async def delete_request_item(self, actor: Any, request_id: str, item_id: str) -> MutationResult:
        """Remove an item and renumber lines 1..n. The last item cannot be removed."""
        title = "Failed to delete item"
        try:
            snapshot = self._snapshot(request_id)
            if snapshot.find_item(item_id) is None:
                raise ItemNotFound(item_id)
            if len(snapshot.items) <= 1:
                raise ValidationError("Cannot delete the only item in a request")
        except ProcurementError as exc:
            return self._failure(exc, title)

        await self._delay("item")

        record = snapshot
        record.items = renumber_lines([item for item in record.items if item.id != item_id])
        record.updated_at = utc_now_iso()
        recompute_totals(record)

        try:
            stored, sync_error = self._commit(record, snapshot.version)
        except ProcurementError as exc:
            return self._failure(exc, title)

        self._log(actor, LogActions.DELETE_ITEM, "item", item_id, {"requestId": request_id})
        return self._success(stored, "Item Deleted", "Item has been removed from the request", sync_error)

    # -----------------------------------------------------------------
    # Reconciliation
    # -----------------------------------------------------------------
    async def retry_pending_sync(self) -> List[str]:
        """Persist every unsynced request again; returns the ids still unsynced."""
        for request_id in self.store.unsynced_ids():
            record = self.store.get_by_id(request_id)
            if record is None:
                self.store.mark_synced(request_id)
                continue
            if self._persist(record) is None:
                self.store.mark_synced(request_id)
        remaining = self.store.unsynced_ids()
        if remaining:
            logger.warning("%d requests still not synced", len(remaining))
        return remaining
