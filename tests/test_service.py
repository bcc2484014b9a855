"""Mutation operations against the seeded in-memory database."""

import asyncio

import pytest
import pytest_asyncio

from procurement_tracker.audit import LogActions
from procurement_tracker.domain import ItemPatch, RequestPatch
from procurement_tracker.errors import (
    BackendError,
    ConflictError,
    FileNotFound,
    InvalidStateTransition,
    ItemNotFound,
    RequestNotFound,
    ValidationError,
)
from procurement_tracker.store import SOURCE_BACKEND, SOURCE_FALLBACK


@pytest_asyncio.fixture
async def loaded(service):
    await service.load()
    return service


def _assert_totals(record):
    assert record.qty_requested == sum(i.qty_requested for i in record.items)
    assert record.qty_delivered == sum(i.qty_delivered for i in record.items)
    assert record.qty_pending == record.qty_requested - record.qty_delivered


# ---------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------
class TestLoad:
    @pytest.mark.asyncio
    async def test_loads_seeded_rows_from_backend(self, service):
        source = await service.load()

        assert source == SOURCE_BACKEND
        assert len(service.store) == 6
        for record in service.store.all():
            assert record.items
            _assert_totals(record)

    @pytest.mark.asyncio
    async def test_missing_tables_fall_back_to_demo_data(self, bare_app):
        service = bare_app.extensions["procurement"]

        source = await service.load()

        assert source == SOURCE_FALLBACK
        assert [r.id for r in service.store.all()] == ["req1", "req2", "req3", "req4", "req5", "req6"]

    @pytest.mark.asyncio
    async def test_other_backend_errors_leave_store_empty(self, service, monkeypatch):
        def broken():
            raise BackendError("connection refused")

        monkeypatch.setattr(service.backend, "select_requests", broken)

        await service.load()

        assert len(service.store) == 0
        assert service.store.loaded is False

    @pytest.mark.asyncio
    async def test_ensure_loaded_only_loads_once(self, service, monkeypatch):
        calls = []
        original = service.backend.select_requests

        def counting():
            calls.append(1)
            return original()

        monkeypatch.setattr(service.backend, "select_requests", counting)

        await service.ensure_loaded()
        await service.ensure_loaded()

        assert len(calls) == 1


# ---------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------
class TestCreateRequest:
    @pytest.mark.asyncio
    async def test_client_request_gets_defaults(self, loaded, actors):
        result = await loaded.create_request(
            actors["client1"],
            {
                "description": "Safety helmets",
                "qty_requested": 40,
                "entity": "Someone Else Ltd",
                "rfq_number": "MINE-1",
                "place_of_arrival": "Port",
                "client_id": "client2",
                "place_of_delivery": "Warehouse 3",
            },
        )

        assert result
        record = result.value
        assert record.status == "pending"
        assert record.stage == "New Request"
        assert record.client_id == "client1"
        assert record.entity == "MGP Investments"
        assert record.rfq_number.startswith("REQ") and len(record.rfq_number) == 9
        assert record.place_of_arrival is None
        assert record.place_of_delivery == "Warehouse 3"
        assert record.is_public is False
        assert len(record.items) == 1
        assert record.items[0].qty_requested == 40
        assert record.qty_pending == 40
        assert loaded.get_by_id(record.id) is not None
        assert result.notification.category == "success"
        assert result.synced

    @pytest.mark.asyncio
    async def test_synthesized_item_defaults_to_one(self, loaded, actors):
        result = await loaded.create_request(actors["client1"], {"description": "Pens"})

        assert result.value.items[0].qty_requested == 1
        assert result.value.qty_requested == 1

    @pytest.mark.asyncio
    async def test_explicit_zero_quantity_is_kept(self, loaded, actors):
        result = await loaded.create_request(actors["client1"], {"description": "Samples", "qty_requested": 0})

        assert result.value.items[0].qty_requested == 0
        assert result.value.qty_pending == 0

    @pytest.mark.asyncio
    async def test_null_description_rejected(self, loaded, actors):
        before = len(loaded.store)

        result = await loaded.create_request(actors["client1"], {"description": None, "qty_requested": 2})

        assert isinstance(result.error, ValidationError)
        assert len(loaded.store) == before

    @pytest.mark.asyncio
    async def test_admin_may_choose_entity_and_client(self, loaded, actors):
        result = await loaded.create_request(
            actors["admin1"],
            {
                "description": "Generators",
                "entity": "MGP Energy",
                "rfq_number": "RFQ-2024-777",
                "client_id": "client1",
                "items": [
                    {"description": "Generator 50kVA", "qty_requested": 2, "unit_price": "1500.00"},
                    {"description": "Cables", "qty_requested": "10"},
                ],
            },
        )

        record = result.unwrap()
        assert record.entity == "MGP Energy"
        assert record.rfq_number == "RFQ-2024-777"
        assert record.client_id == "client1"
        assert [i.line for i in record.items] == [1, 2]
        assert record.qty_requested == 12
        assert str(record.total_value) == "3000.00"

    @pytest.mark.asyncio
    async def test_created_request_is_persisted(self, loaded, actors):
        result = await loaded.create_request(actors["client1"], {"description": "Chairs", "qty_requested": 3})

        rows = loaded.backend.select_requests()
        assert result.value.id in {row["id"] for row in rows}
        assert len(loaded.backend.select_items(result.value.id)) == 1

    @pytest.mark.asyncio
    async def test_negative_quantity_rejected(self, loaded, actors):
        before = len(loaded.store)

        result = await loaded.create_request(actors["client1"], {"description": "Bad", "qty_requested": -1})

        assert not result
        assert isinstance(result.error, ValidationError)
        assert len(loaded.store) == before

    @pytest.mark.asyncio
    async def test_requires_actor(self, loaded):
        result = await loaded.create_request(None, {"description": "Nobody"})

        assert not result
        assert result.notification.category == "danger"


class TestUpdateRequest:
    @pytest.mark.asyncio
    async def test_applies_patch_and_restamps(self, loaded, actors):
        before = loaded.get_by_id("req2")

        result = await loaded.update_request(actors["admin1"], "req2", RequestPatch(vendor="New Vendor", priority="Low"))

        record = result.unwrap()
        assert record.vendor == "New Vendor"
        assert record.priority == "Low"
        assert record.updated_at != before.updated_at
        assert record.version == before.version + 1
        assert record.qty_requested == before.qty_requested

    @pytest.mark.asyncio
    async def test_replacing_items_recomputes_totals(self, loaded, actors):
        result = await loaded.update_request(
            actors["admin1"],
            "req3",
            RequestPatch(),
            items=[{"description": "A4 paper", "qty_requested": 60}, {"description": "Toner", "qty_requested": 4}],
        )

        record = result.unwrap()
        assert record.qty_requested == 64
        _assert_totals(record)

    @pytest.mark.asyncio
    async def test_null_required_fields_rejected(self, loaded, actors):
        before = loaded.get_by_id("req2")

        result = await loaded.update_request(actors["admin1"], "req2", RequestPatch(description=None, rfq_number=None))

        assert not result
        assert isinstance(result.error, ValidationError)
        assert result.notification.category == "danger"
        assert loaded.get_by_id("req2") == before
        assert loaded.store.unsynced_ids() == []

    @pytest.mark.asyncio
    async def test_non_scalar_values_rejected(self, loaded, actors):
        result = await loaded.update_request(actors["admin1"], "req2", RequestPatch(vendor={"name": "ACME"}))

        assert isinstance(result.error, ValidationError)
        assert loaded.get_by_id("req2").vendor != {"name": "ACME"}

    @pytest.mark.asyncio
    async def test_integer_fields_are_coerced(self, loaded, actors):
        result = await loaded.update_request(
            actors["admin1"], "req2", RequestPatch(lead_time_days="14", aging=3.0, days_count=None, po_number=42)
        )

        record = result.unwrap()
        assert record.lead_time_days == 14
        assert record.aging == 3
        assert record.days_count is None
        assert record.po_number == "42"
        assert loaded.store.unsynced_ids() == []

    @pytest.mark.asyncio
    async def test_non_numeric_integer_field_rejected(self, loaded, actors):
        for value in ("soon", 2.5, True):
            result = await loaded.update_request(actors["admin1"], "req2", RequestPatch(days_count=value))
            assert isinstance(result.error, ValidationError)

    @pytest.mark.asyncio
    async def test_unknown_request(self, loaded, actors):
        result = await loaded.update_request(actors["admin1"], "missing", RequestPatch(vendor="x"))

        assert not result
        with pytest.raises(RequestNotFound):
            result.unwrap()


class TestAcceptDecline:
    @pytest.mark.asyncio
    async def test_accept_sets_buyer_and_status(self, loaded, actors):
        result = await loaded.accept_request(actors["admin1"], "req6", "buyer2")

        record = result.unwrap()
        assert record.status == "accepted"
        assert record.buyer_id == "buyer2"
        assert loaded.get_by_id("req6").status == "accepted"

    @pytest.mark.asyncio
    async def test_accept_applies_admin_patch(self, loaded, actors):
        result = await loaded.accept_request(actors["admin1"], "req6", "buyer1", RequestPatch(po_number="PO-600"))

        assert result.unwrap().po_number == "PO-600"

    @pytest.mark.asyncio
    async def test_accept_rejects_invalid_patch(self, loaded, actors):
        result = await loaded.accept_request(actors["admin1"], "req6", "buyer1", RequestPatch(entity=None))

        assert isinstance(result.error, ValidationError)
        assert loaded.get_by_id("req6").status == "pending"

    @pytest.mark.asyncio
    async def test_accept_twice_is_rejected(self, loaded, actors):
        await loaded.accept_request(actors["admin1"], "req6", "buyer1")
        before = loaded.get_by_id("req6")

        result = await loaded.accept_request(actors["admin1"], "req6", "buyer2")

        assert not result
        assert isinstance(result.error, InvalidStateTransition)
        assert loaded.get_by_id("req6") == before

    @pytest.mark.asyncio
    async def test_accept_requires_buyer(self, loaded, actors):
        result = await loaded.accept_request(actors["admin1"], "req6", "")

        assert isinstance(result.error, ValidationError)
        assert loaded.get_by_id("req6").status == "pending"

    @pytest.mark.asyncio
    async def test_decline_pending(self, loaded, actors):
        result = await loaded.decline_request(actors["buyer1"], "req6")

        assert result.unwrap().status == "declined"

    @pytest.mark.asyncio
    async def test_decline_accepted_is_rejected(self, loaded, actors):
        result = await loaded.decline_request(actors["buyer1"], "req3")

        assert isinstance(result.error, InvalidStateTransition)
        assert loaded.get_by_id("req3").status == "accepted"


class TestStage:
    @pytest.mark.asyncio
    async def test_delivered_completes_request(self, loaded, actors):
        result = await loaded.update_stage(actors["buyer1"], "req3", "Delivered")

        record = result.unwrap()
        assert record.stage == "Delivered"
        assert record.status == "completed"

    @pytest.mark.asyncio
    async def test_other_stage_keeps_status(self, loaded, actors):
        result = await loaded.update_stage(actors["buyer1"], "req5", "CO/CE")

        record = result.unwrap()
        assert record.stage == "CO/CE"
        assert record.status == "accepted"

    @pytest.mark.asyncio
    async def test_unknown_stage(self, loaded, actors):
        result = await loaded.update_stage(actors["buyer1"], "req5", "Teleported")

        assert isinstance(result.error, ValidationError)
        assert loaded.get_by_id("req5").stage == "Resourcing"

    @pytest.mark.asyncio
    async def test_declined_request_is_terminal(self, loaded, actors):
        await loaded.decline_request(actors["admin1"], "req6")

        result = await loaded.update_stage(actors["admin1"], "req6", "Resourcing")

        assert isinstance(result.error, InvalidStateTransition)
        assert loaded.get_by_id("req6").stage == "New Request"


@pytest.mark.asyncio
async def test_toggle_public_status(loaded, actors):
    assert loaded.get_by_id("req4").is_public is False

    first = await loaded.toggle_public_status(actors["admin1"], "req4")
    second = await loaded.toggle_public_status(actors["admin1"], "req4")

    assert first.value.is_public is True
    assert second.value.is_public is False


# ---------------------------------------------------------------------
# Files
# ---------------------------------------------------------------------
class TestFiles:
    @pytest.mark.asyncio
    async def test_upload_stores_blob_and_metadata(self, loaded, actors):
        result = await loaded.upload_file(actors["buyer1"], "req3", "quote.pdf", b"%PDF-1.4", "application/pdf")

        f = result.unwrap()
        assert f.name == "quote.pdf"
        assert f.size == 8
        assert f.is_public is False
        assert f.uploaded_by == "buyer1"
        assert f.url.startswith("/files/req3/")
        assert loaded.storage.resolve(f.url[len("/files/"):]).read_bytes() == b"%PDF-1.4"
        assert loaded.get_by_id("req3").find_file(f.id) is not None
        assert result.synced

    @pytest.mark.asyncio
    async def test_conflicting_upload_removes_blob(self, loaded, actors, monkeypatch):
        def conflicting(record, expected_version):
            raise ConflictError(record.id, expected=expected_version, actual=expected_version + 1)

        monkeypatch.setattr(loaded.store, "replace", conflicting)

        result = await loaded.upload_file(actors["buyer1"], "req3", "quote.pdf", b"%PDF-1.4", "application/pdf")

        assert isinstance(result.error, ConflictError)
        assert [p for p in loaded.storage.root.rglob("*") if p.is_file()] == []

    @pytest.mark.asyncio
    async def test_storage_failure_uses_local_placeholder(self, loaded, actors, monkeypatch):
        monkeypatch.setattr(loaded.storage, "upload", lambda *args, **kwargs: None)

        result = await loaded.upload_file(actors["buyer1"], "req3", "scan.png", b"12345", "image/png")

        assert result
        assert result.value.url.startswith("local://")
        assert result.value.size == 5
        assert result.sync_error is not None
        assert result.notification.category == "warning"

    @pytest.mark.asyncio
    async def test_upload_to_unknown_request(self, loaded, actors):
        result = await loaded.upload_file(actors["buyer1"], "missing", "a.txt", b"x")

        assert isinstance(result.error, RequestNotFound)

    @pytest.mark.asyncio
    async def test_toggle_file_visibility(self, loaded, actors):
        uploaded = (await loaded.upload_file(actors["buyer1"], "req3", "datasheet.txt", b"sheet")).unwrap()

        result = await loaded.toggle_file_visibility(actors["buyer1"], "req3", uploaded.id)

        assert result.unwrap().is_public is True
        assert loaded.get_by_id("req3").find_file(uploaded.id).is_public is True

    @pytest.mark.asyncio
    async def test_toggle_unknown_file(self, loaded, actors):
        result = await loaded.toggle_file_visibility(actors["buyer1"], "req3", "nope")

        assert isinstance(result.error, FileNotFound)


# ---------------------------------------------------------------------
# Items
# ---------------------------------------------------------------------
class TestItems:
    @pytest.mark.asyncio
    async def test_add_item_appends_next_line(self, loaded, actors):
        result = await loaded.add_request_item(actors["buyer2"], "req2", ItemPatch(description="Docks", qty_requested=5))

        item = result.unwrap()
        assert item.line == 3
        record = loaded.get_by_id("req2")
        assert record.qty_requested == 35
        _assert_totals(record)

    @pytest.mark.asyncio
    async def test_add_item_defaults_quantity_to_one(self, loaded, actors):
        result = await loaded.add_request_item(actors["buyer2"], "req2", ItemPatch(description="Mouse"))

        assert result.unwrap().qty_requested == 1
        assert loaded.get_by_id("req2").qty_requested == 31

    @pytest.mark.asyncio
    async def test_update_item_recomputes(self, loaded, actors):
        result = await loaded.update_request_item(
            actors["buyer2"], "req2", "item2-1", ItemPatch(qty_delivered=5, unit_price="900")
        )

        item = result.unwrap()
        assert item.qty_pending == 10
        assert str(item.total_price) == "13500.00"
        record = loaded.get_by_id("req2")
        assert record.qty_delivered == 5
        assert record.qty_pending == 25

    @pytest.mark.asyncio
    async def test_over_delivery_is_allowed_and_flagged(self, loaded, actors, caplog):
        result = await loaded.update_request_item(actors["buyer2"], "req2", "item2-1", ItemPatch(qty_delivered=17))

        assert result
        assert result.value.qty_pending == -2
        assert result.value.over_delivered is True
        assert loaded.get_by_id("req2").has_over_delivery is True
        assert "more delivered than requested" in caplog.text

    @pytest.mark.asyncio
    async def test_negative_quantity_rejected(self, loaded, actors):
        before = loaded.get_by_id("req2")

        result = await loaded.update_request_item(actors["buyer2"], "req2", "item2-1", ItemPatch(qty_requested=-3))

        assert isinstance(result.error, ValidationError)
        assert loaded.get_by_id("req2") == before

    @pytest.mark.asyncio
    async def test_update_unknown_item(self, loaded, actors):
        result = await loaded.update_request_item(actors["buyer2"], "req2", "ghost", ItemPatch(qty_requested=1))

        assert isinstance(result.error, ItemNotFound)

    @pytest.mark.asyncio
    async def test_delete_renumbers_lines(self, loaded, actors):
        result = await loaded.delete_request_item(actors["buyer2"], "req4", "item4-1")

        record = result.unwrap()
        assert [i.id for i in record.items] == ["item4-2", "item4-3"]
        assert [i.line for i in record.items] == [1, 2]
        assert record.qty_requested == 15
        _assert_totals(record)

    @pytest.mark.asyncio
    async def test_add_after_delete_uses_max_line_plus_one(self, loaded, actors):
        await loaded.delete_request_item(actors["buyer2"], "req4", "item4-2")

        result = await loaded.add_request_item(actors["buyer2"], "req4", ItemPatch(description="Patch panels"))

        assert result.unwrap().line == 3

    @pytest.mark.asyncio
    async def test_last_item_cannot_be_deleted(self, loaded, actors):
        before = loaded.get_by_id("req3")
        assert len(before.items) == 1

        result = await loaded.delete_request_item(actors["buyer1"], "req3", "item3-1")

        assert not result
        assert isinstance(result.error, ValidationError)
        assert loaded.get_by_id("req3") == before

    @pytest.mark.asyncio
    async def test_item_changes_are_persisted(self, loaded, actors):
        await loaded.delete_request_item(actors["buyer2"], "req4", "item4-3")

        rows = loaded.backend.select_items("req4")
        assert sorted(row["id"] for row in rows) == ["item4-1", "item4-2"]


# ---------------------------------------------------------------------
# Remote persistence failures
# ---------------------------------------------------------------------
class TestSyncFailures:
    @pytest.mark.asyncio
    async def test_failure_keeps_local_change_and_warns(self, loaded, actors, monkeypatch):
        def failing(record):
            raise BackendError("database is locked")

        monkeypatch.setattr(loaded.backend, "save_request", failing)

        result = await loaded.update_stage(actors["buyer1"], "req5", "Customs")

        assert result
        assert isinstance(result.sync_error, BackendError)
        assert result.synced is False
        assert result.notification.category == "warning"
        assert "Saved locally, not yet synced." in result.notification.message
        assert loaded.get_by_id("req5").stage == "Customs"
        assert loaded.store.unsynced_ids() == ["req5"]

    @pytest.mark.asyncio
    async def test_retry_pending_sync(self, loaded, actors, monkeypatch):
        def failing(record):
            raise BackendError("database is locked")

        monkeypatch.setattr(loaded.backend, "save_request", failing)
        await loaded.update_stage(actors["buyer1"], "req5", "Customs")
        assert await loaded.retry_pending_sync() == ["req5"]

        monkeypatch.undo()

        assert await loaded.retry_pending_sync() == []
        stored = {row["id"]: row for row in loaded.backend.select_requests()}
        assert stored["req5"]["stage"] == "Customs"

    @pytest.mark.asyncio
    async def test_invalid_patch_never_reaches_pending_sync(self, loaded, actors):
        await loaded.update_request(actors["admin1"], "req2", RequestPatch(description=None))

        assert await loaded.retry_pending_sync() == []


class TestReloadWithUnsyncedRecords:
    @staticmethod
    def _backend_down(service, monkeypatch, *operations):
        def down(*args, **kwargs):
            raise BackendError("connection refused")

        for name in operations:
            monkeypatch.setattr(service.backend, name, down)

    async def _create_offline(self, service, actors, monkeypatch):
        self._backend_down(service, monkeypatch, "select_requests", "insert_request", "save_request")
        await service.ensure_loaded()
        assert service.store.loaded is False

        created = (await service.create_request(actors["client1"], {"description": "Offline order"})).unwrap()
        assert service.store.unsynced_ids() == [created.id]
        monkeypatch.undo()
        return created

    @pytest.mark.asyncio
    async def test_reload_persists_local_records_first(self, service, actors, monkeypatch):
        created = await self._create_offline(service, actors, monkeypatch)

        await service.ensure_loaded()

        assert service.store.source == SOURCE_BACKEND
        assert len(service.store) == 7
        assert service.get_by_id(created.id) is not None
        assert service.store.unsynced_ids() == []
        assert created.id in {row["id"] for row in service.backend.select_requests()}

    @pytest.mark.asyncio
    async def test_reload_keeps_records_that_still_fail(self, service, actors, monkeypatch):
        created = await self._create_offline(service, actors, monkeypatch)
        self._backend_down(service, monkeypatch, "save_request")

        await service.ensure_loaded()

        assert service.store.source == SOURCE_BACKEND
        assert service.get_by_id(created.id).description == "Offline order"
        assert service.store.unsynced_ids() == [created.id]

        monkeypatch.undo()
        assert await service.retry_pending_sync() == []


# ---------------------------------------------------------------------
# Concurrency and activity
# ---------------------------------------------------------------------
@pytest.mark.asyncio
async def test_concurrent_updates_conflict(loaded, actors):
    first, second = await asyncio.gather(
        loaded.update_request(actors["admin1"], "req2", RequestPatch(vendor="First Vendor")),
        loaded.update_request(actors["admin1"], "req2", RequestPatch(vendor="Second Vendor")),
    )

    assert first
    assert not second
    assert isinstance(second.error, ConflictError)
    assert loaded.get_by_id("req2").vendor == "First Vendor"


@pytest.mark.asyncio
async def test_each_operation_emits_one_notification(loaded, actors, monkeypatch):
    sent = []
    monkeypatch.setattr(loaded.notifier, "notify", sent.append)

    await loaded.update_stage(actors["buyer1"], "req5", "Customs")
    await loaded.decline_request(actors["buyer1"], "req5")

    assert [n.category for n in sent] == ["success", "danger"]


@pytest.mark.asyncio
async def test_mutations_write_activity(loaded, actors):
    await loaded.accept_request(actors["admin1"], "req6", "buyer1")
    await loaded.add_request_item(actors["buyer1"], "req6", ItemPatch(description="Lamps", qty_requested=4))

    entries = loaded.activity.recent_activity(entity_id="req6")
    actions = [entry["action"] for entry in loaded.activity.recent_activity()]

    assert entries[0]["action"] == LogActions.ACCEPT_REQUEST
    assert entries[0]["userId"] == "admin1"
    assert entries[0]["details"] == {"buyerId": "buyer1"}
    assert LogActions.ADD_ITEM in actions
