"""Role-based view filter and mutation permissions."""

import pytest

from procurement_tracker.domain import Actor, ProcurementRequest, RequestFile, RequestItem
from procurement_tracker.fallback import fallback_requests
from procurement_tracker.security import (
    can_edit_request,
    can_work_request,
    client_view_requests,
    public_files,
    visible_requests,
)

ADMIN = Actor(id="a1", name="Admin", role="admin")
BUYER = Actor(id="b1", name="Buyer", role="buyer")
CLIENT = Actor(id="c1", name="Client", role="client")


def _request(request_id, client_id, buyer_id=None, is_public=False, status="accepted"):
    return ProcurementRequest(
        id=request_id,
        client_id=client_id,
        buyer_id=buyer_id,
        is_public=is_public,
        status=status,
        items=[RequestItem(id=f"{request_id}-item-1", qty_requested=1)],
    )


@pytest.fixture
def requests_():
    return [
        _request("r1", "c1", "b1", is_public=True),
        _request("r2", "c1", "b2"),
        _request("r3", "c2", "b2", is_public=True),
        _request("r4", "c2", None, status="pending"),
        _request("r5", "c3", "b3"),
    ]


class TestVisibleRequests:
    def test_admin_sees_everything(self, requests_):
        assert len(visible_requests(requests_, ADMIN)) == 5

    def test_client_sees_own_requests(self, requests_):
        assert [r.id for r in visible_requests(requests_, CLIENT)] == ["r1", "r2"]

    def test_buyer_sees_assigned_requests(self, requests_):
        assert [r.id for r in visible_requests(requests_, BUYER)] == ["r1"]

    def test_no_user_sees_nothing(self, requests_):
        assert visible_requests(requests_, None) == []

    def test_unknown_role_sees_nothing(self, requests_):
        assert visible_requests(requests_, Actor(id="x", name="X", role="auditor")) == []

    def test_demo_dataset(self):
        records = fallback_requests()
        buyer1 = Actor(id="buyer1", name="Gabriel", role="buyer")
        client1 = Actor(id="client1", name="Client", role="client")

        assert [r.id for r in visible_requests(records, buyer1)] == ["req1", "req3", "req5"]
        assert len(visible_requests(records, client1)) == 6


def test_client_view_only_shows_public(requests_):
    assert [r.id for r in client_view_requests(requests_, CLIENT)] == ["r1"]


def test_clients_only_see_public_files():
    request = _request("r1", "c1")
    request.files = [
        RequestFile(id="f1", name="invoice.pdf", url="/files/r1/a", is_public=True),
        RequestFile(id="f2", name="internal.xlsx", url="/files/r1/b", is_public=False),
    ]

    assert [f.id for f in public_files(request, CLIENT)] == ["f1"]
    assert [f.id for f in public_files(request, BUYER)] == ["f1", "f2"]


class TestMutationPermissions:
    def test_client_edits_own_pending_only(self):
        assert can_edit_request(_request("r", "c1", status="pending"), CLIENT)
        assert not can_edit_request(_request("r", "c1", status="accepted"), CLIENT)
        assert not can_edit_request(_request("r", "c2", status="pending"), CLIENT)

    def test_buyer_works_own_or_unassigned(self):
        assert can_work_request(_request("r", "c1", "b1"), BUYER)
        assert can_work_request(_request("r", "c1", None, status="pending"), BUYER)
        assert not can_work_request(_request("r", "c1", "b2"), BUYER)

    def test_client_never_works_requests(self):
        assert not can_work_request(_request("r", "c1", None), CLIENT)

    def test_admin_works_everything(self):
        assert can_work_request(_request("r", "c9", "b9"), ADMIN)
