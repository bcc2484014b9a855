"""Record transformer: coercion, ordering and the one-item rule."""

from decimal import Decimal

from procurement_tracker.domain import ProcurementRequest, RequestItem
from procurement_tracker.transform import (
    recompute_totals,
    request_to_row,
    to_number,
    transform_item_row,
    transform_request_row,
)


def _row(**overrides):
    row = {
        "id": "r1",
        "client_id": "client1",
        "description": "Desks",
        "stage": "Resourcing",
        "status": "accepted",
    }
    row.update(overrides)
    return row


class TestToNumber:
    def test_numeric_strings(self):
        assert to_number("10") == 10.0
        assert to_number("2,5") == 2.5
        assert to_number(7) == 7.0

    def test_garbage_degrades_to_zero(self):
        assert to_number("abc") == 0.0
        assert to_number(None) == 0.0
        assert to_number("") == 0.0


class TestTransformItemRow:
    def test_string_quantities_are_coerced(self):
        item = transform_item_row({"id": "i1", "qty_requested": "10", "qty_delivered": "3"}, line=1)

        assert item.qty_requested == 10.0
        assert item.qty_delivered == 3.0
        assert item.qty_pending == 7.0
        assert isinstance(item.qty_pending, float)

    def test_non_numeric_quantity_becomes_zero(self):
        item = transform_item_row({"id": "i1", "qty_requested": "abc"}, line=1)
        assert item.qty_requested == 0.0
        assert item.qty_pending == 0.0

    def test_total_price_rounds_half_up(self):
        item = transform_item_row({"id": "i1", "qty_requested": 3, "unit_price": "0.335"}, line=1)
        assert item.total_price == Decimal("1.01")

    def test_no_unit_price_means_no_total(self):
        item = transform_item_row({"id": "i1", "qty_requested": 3}, line=1)
        assert item.total_price is None


class TestTransformRequestRow:
    def test_without_items_synthesizes_one(self):
        request = transform_request_row(_row(qty_requested="12", qty_delivered="2"))

        assert len(request.items) == 1
        item = request.items[0]
        assert item.id == "r1-item-1"
        assert item.line == 1
        assert item.description == "Desks"
        assert request.qty_requested == 12.0
        assert request.qty_pending == 10.0

    def test_item_sums_override_stored_columns(self):
        request = transform_request_row(
            _row(qty_requested=999, qty_delivered=999, qty_pending=0),
            [
                {"id": "a", "line": 1, "qty_requested": 4, "qty_delivered": 1},
                {"id": "b", "line": 2, "qty_requested": "6", "qty_delivered": "2"},
            ],
        )

        assert request.qty_requested == 10.0
        assert request.qty_delivered == 3.0
        assert request.qty_pending == 7.0

    def test_items_ordered_by_line_then_renumbered(self):
        request = transform_request_row(
            _row(),
            [
                {"id": "late", "line": 7, "qty_requested": 1},
                {"id": "early", "line": 2, "qty_requested": 1},
                {"id": "unnumbered", "line": None, "qty_requested": 1},
            ],
        )

        assert [i.id for i in request.items] == ["early", "late", "unnumbered"]
        assert [i.line for i in request.items] == [1, 2, 3]

    def test_defaults_for_missing_fields(self):
        request = transform_request_row({"id": "r9", "client_id": "c"})

        assert request.stage == "New Request"
        assert request.status == "pending"
        assert request.is_public is False
        assert request.version == 1

    def test_files_are_attached(self):
        request = transform_request_row(
            _row(),
            file_rows=[{"id": "f1", "name": "quote.pdf", "url": "/files/r1/quote.pdf", "size": "120", "is_public": 1}],
        )

        assert len(request.files) == 1
        assert request.files[0].size == 120
        assert request.files[0].is_public is True


def test_recompute_totals_allows_negative_pending():
    request = ProcurementRequest(
        id="r1",
        client_id="c",
        items=[RequestItem(id="i1", qty_requested=10, qty_delivered=12)],
    )

    recompute_totals(request)

    assert request.qty_pending == -2
    assert request.has_over_delivery is True
    assert request.items[0].over_delivered is True


def test_request_to_row_round_trips_through_transformer():
    original = transform_request_row(_row(po_number="PO-9"), [{"id": "a", "line": 1, "qty_requested": 2}])
    row = request_to_row(original)

    again = transform_request_row(row, [{"id": "a", "line": 1, "qty_requested": 2}])

    assert again.po_number == "PO-9"
    assert again.qty_requested == original.qty_requested
