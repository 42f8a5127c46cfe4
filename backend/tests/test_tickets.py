"""
Service ticket tests.

Verifies:
- Tickets open in Queue with a yearly SRV number and an active technician
- Status changes follow the transition table and stamp first-entry times
- Parts debit stock with the ticket, and removal credits it back
- The bill is frozen once the repair is completed or cancelled
- Cancelling goes through DELETE only, never through a status change
"""

import re

import pytest

from repairdesk.extensions import db
from repairdesk.models import ServiceTicket, StockMovement
from repairdesk.services import ticket_service
from repairdesk.services.stock_ledger import MOVEMENT_SERVICE_PART, MOVEMENT_SERVICE_PART_RETURN

from conftest import movement_total, stock_of

TICKET_PATTERN = re.compile(r"^SRV-\d{7}$")


def _ticket_payload(technician_id, **overrides):
    payload = {
        "customer": {"name": "Rina", "phone": "08123456789", "type": "Student"},
        "device": {
            "type": "Laptop",
            "brand": "Lenovo",
            "model": "ThinkPad T480",
            "symptoms": "Does not power on",
        },
        "technician_id": technician_id,
        "service_fee_cents": 5000,
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def ticket(client, technician, technician_headers):
    resp = client.post("/api/tickets", json=_ticket_payload(technician.id), headers=technician_headers)
    assert resp.status_code == 201, resp.json
    return resp.json["ticket"]


def _set_status(client, headers, ticket_id, status):
    return client.patch(f"/api/tickets/{ticket_id}/status", json={"status": status}, headers=headers)


def _walk(client, headers, ticket_id, *statuses):
    for status in statuses:
        resp = _set_status(client, headers, ticket_id, status)
        assert resp.status_code == 200, resp.json
    return resp.json["ticket"]


# =============================================================================
# CREATE / QUERY
# =============================================================================


class TestCreateTicket:

    def test_new_ticket_is_queued_with_number(self, ticket, technician):
        assert TICKET_PATTERN.match(ticket["ticket_number"])
        assert ticket["ticket_number"].endswith("001")
        assert ticket["status"] == "Queue"
        assert ticket["technician"] == {"id": technician.id, "name": technician.name}
        assert ticket["service_fee_cents"] == 5000
        assert ticket["total_cost_cents"] == 5000
        assert ticket["parts_used"] == []
        assert ticket["device"]["accessories"] == "None"
        assert ticket["timestamps"]["created_at"] is not None
        assert ticket["timestamps"]["diagnosed_at"] is None

    def test_numbers_increase(self, client, technician, technician_headers, ticket):
        resp = client.post("/api/tickets", json=_ticket_payload(technician.id), headers=technician_headers)
        assert resp.json["ticket"]["ticket_number"].endswith("002")

    def test_technician_must_be_active_technician(self, client, cashier, admin_headers):
        resp = client.post("/api/tickets", json=_ticket_payload(cashier.id), headers=admin_headers)
        assert resp.status_code == 400
        assert db.session.query(ServiceTicket).count() == 0

    def test_deactivated_technician_rejected(self, client, technician, admin, admin_headers):
        technician.is_active = False
        db.session.commit()

        resp = client.post("/api/tickets", json=_ticket_payload(technician.id), headers=admin_headers)

        assert resp.status_code == 400

    @pytest.mark.parametrize(
        "override",
        [
            {"customer": {"name": "Rina", "phone": "0812", "type": "Tourist"}},
            {"customer": {"name": "", "phone": "0812", "type": "General"}},
            {"device": {"type": "Laptop"}},
            {"technician_id": None},
            {"service_fee_cents": -1},
        ],
    )
    def test_invalid_payload_rejected(self, client, technician, technician_headers, override):
        payload = _ticket_payload(technician.id)
        payload.update(override)

        resp = client.post("/api/tickets", json=payload, headers=technician_headers)
        assert resp.status_code == 400

    def test_cashier_cannot_open_ticket(self, client, technician, cashier_headers):
        resp = client.post("/api/tickets", json=_ticket_payload(technician.id), headers=cashier_headers)
        assert resp.status_code == 403

    def test_cashier_can_view_tickets(self, client, ticket, cashier_headers):
        resp = client.get(f"/api/tickets/{ticket['id']}", headers=cashier_headers)
        assert resp.status_code == 200

    def test_unknown_ticket_returns_404(self, client, technician_headers):
        assert client.get("/api/tickets/999999", headers=technician_headers).status_code == 404


class TestListTickets:

    def test_comma_separated_status_filter(self, client, technician, technician_headers, admin_headers):
        ids = []
        for _ in range(3):
            resp = client.post("/api/tickets", json=_ticket_payload(technician.id), headers=technician_headers)
            ids.append(resp.json["ticket"]["id"])
        _walk(client, technician_headers, ids[1], "Diagnosing")
        client.delete(f"/api/tickets/{ids[2]}", headers=admin_headers)

        resp = client.get("/api/tickets?status=Queue,Diagnosing", headers=technician_headers)

        assert resp.status_code == 200
        assert sorted(t["id"] for t in resp.json["tickets"]) == sorted(ids[:2])
        assert resp.json["pagination"]["total_records"] == 2

    def test_unknown_status_filter_rejected(self, client, technician_headers):
        resp = client.get("/api/tickets?status=Queue,Lost", headers=technician_headers)
        assert resp.status_code == 400

    def test_filter_by_customer_phone(self, client, technician, technician_headers, ticket):
        other = _ticket_payload(technician.id, customer={"name": "Andi", "phone": "0899", "type": "General"})
        client.post("/api/tickets", json=other, headers=technician_headers)

        resp = client.get("/api/tickets?customer_phone=0899", headers=technician_headers)

        assert [t["customer"]["name"] for t in resp.json["tickets"]] == ["Andi"]

    def test_technician_workload_counts_open_tickets(self, client, technician, technician_headers, ticket):
        second = client.post("/api/tickets", json=_ticket_payload(technician.id), headers=technician_headers)
        _walk(client, technician_headers, second.json["ticket"]["id"], "Diagnosing", "Completed")

        resp = client.get(f"/api/tickets/technicians/{technician.id}/workload", headers=technician_headers)

        assert resp.status_code == 200
        assert resp.json["total_open"] == 1
        assert resp.json["open_tickets"]["Queue"] == 1
        assert resp.json["open_tickets"]["Diagnosing"] == 0


# =============================================================================
# LIFECYCLE
# =============================================================================


class TestStatusTransitions:

    def test_diagnosed_and_completed_stamps(self, client, technician_headers, ticket):
        final = _walk(client, technician_headers, ticket["id"], "Diagnosing", "Completed")

        stamps = final["timestamps"]
        assert stamps["diagnosed_at"] is not None
        assert stamps["completed_at"] is not None
        row = db.session.get(ServiceTicket, ticket["id"])
        assert row.diagnosed_at < row.completed_at
        assert final["duration_days"] == 1

    def test_stamp_is_never_overwritten(self, db_session, technician):
        created = ticket_service.create_ticket(_ticket_payload(technician.id))
        ticket_service.update_status(created.id, "Diagnosing")
        row = db.session.get(ServiceTicket, created.id)
        first_stamp = row.diagnosed_at

        # Force a second entry into Diagnosing
        row.status = "Queue"
        ticket_service._apply_status(row, "Diagnosing")
        db.session.commit()

        assert db.session.get(ServiceTicket, created.id).diagnosed_at == first_stamp

    def test_waiting_part_round_trip(self, client, technician_headers, ticket):
        final = _walk(
            client, technician_headers, ticket["id"],
            "Diagnosing", "Waiting_Part", "In_Progress", "Waiting_Part", "In_Progress", "Completed", "Picked_Up",
        )
        assert final["status"] == "Picked_Up"
        assert final["timestamps"]["picked_up_at"] is not None

    @pytest.mark.parametrize("target", ["Completed", "In_Progress", "Picked_Up", "Queue"])
    def test_invalid_transition_from_queue(self, client, technician_headers, ticket, target):
        resp = _set_status(client, technician_headers, ticket["id"], target)

        assert resp.status_code == 400
        assert resp.json["details"] == {"current_status": "Queue", "requested_status": target}

    def test_unknown_status_rejected(self, client, technician_headers, ticket):
        assert _set_status(client, technician_headers, ticket["id"], "Lost").status_code == 400

    def test_picked_up_is_terminal(self, client, technician_headers, ticket):
        _walk(client, technician_headers, ticket["id"], "Diagnosing", "Completed", "Picked_Up")

        assert _set_status(client, technician_headers, ticket["id"], "Cancelled").status_code == 400
        assert _set_status(client, technician_headers, ticket["id"], "In_Progress").status_code == 400

    def test_can_transition_table(self):
        assert ticket_service.can_transition("Queue", "Diagnosing")
        assert ticket_service.can_transition("In_Progress", "Waiting_Part")
        assert not ticket_service.can_transition("Completed", "Cancelled")
        assert not ticket_service.can_transition("Cancelled", "Queue")


class TestCancelTicket:

    def test_admin_cancels_open_ticket(self, client, admin_headers, ticket):
        resp = client.delete(f"/api/tickets/{ticket['id']}", headers=admin_headers)

        assert resp.status_code == 200
        assert resp.json["ticket"]["status"] == "Cancelled"

    def test_completed_ticket_cannot_be_cancelled(self, client, admin_headers, technician_headers, ticket):
        _walk(client, technician_headers, ticket["id"], "Diagnosing", "Completed")

        resp = client.delete(f"/api/tickets/{ticket['id']}", headers=admin_headers)

        assert resp.status_code == 400
        assert db.session.get(ServiceTicket, ticket["id"]).status == "Completed"

    def test_technician_cannot_cancel(self, client, technician_headers, ticket):
        resp = client.delete(f"/api/tickets/{ticket['id']}", headers=technician_headers)
        assert resp.status_code == 403

    @pytest.mark.parametrize("role_headers", ["technician_headers", "admin_headers"])
    def test_status_change_cannot_cancel(self, client, request, ticket, role_headers):
        headers = request.getfixturevalue(role_headers)

        resp = _set_status(client, headers, ticket["id"], "Cancelled")

        assert resp.status_code == 400
        assert "DELETE" in resp.json["error"]
        assert db.session.get(ServiceTicket, ticket["id"]).status == "Queue"

    def test_cancel_keeps_parts_consumed(self, client, admin_headers, technician_headers, ticket, make_item):
        part = make_item(stock=5)
        client.post(f"/api/tickets/{ticket['id']}/parts", json={"item_id": part.id, "quantity": 2},
                    headers=technician_headers)

        client.delete(f"/api/tickets/{ticket['id']}", headers=admin_headers)

        assert stock_of(part.id) == 3


# =============================================================================
# PARTS / FEES
# =============================================================================


class TestParts:

    def test_add_part_debits_stock_and_updates_total(self, client, technician_headers, ticket, make_item):
        part = make_item(stock=5, selling_price_cents=25000, purchase_price_cents=20000)

        resp = client.post(
            f"/api/tickets/{ticket['id']}/parts",
            json={"item_id": part.id, "quantity": 2},
            headers=technician_headers,
        )

        assert resp.status_code == 200, resp.json
        body = resp.json["ticket"]
        assert len(body["parts_used"]) == 1
        line = body["parts_used"][0]
        assert line["name"] == part.name
        assert line["price_at_time_cents"] == 25000
        assert line["subtotal_cents"] == 50000
        assert body["total_cost_cents"] == 50000 + 5000
        assert stock_of(part.id) == 3
        movement = db.session.query(StockMovement).filter_by(movement_type=MOVEMENT_SERVICE_PART).one()
        assert movement.reference == ticket["ticket_number"]

    def test_insufficient_stock_leaves_ticket_untouched(self, client, technician_headers, ticket, make_item):
        part = make_item(stock=1)

        resp = client.post(
            f"/api/tickets/{ticket['id']}/parts",
            json={"item_id": part.id, "quantity": 2},
            headers=technician_headers,
        )

        assert resp.status_code == 400
        assert resp.json["details"]["available"] == 1
        fetched = client.get(f"/api/tickets/{ticket['id']}", headers=technician_headers).json["ticket"]
        assert fetched["parts_used"] == []
        assert fetched["total_cost_cents"] == 5000
        assert stock_of(part.id) == 1

    def test_unknown_item_returns_404(self, client, technician_headers, ticket):
        resp = client.post(
            f"/api/tickets/{ticket['id']}/parts",
            json={"item_id": 999_999, "quantity": 1},
            headers=technician_headers,
        )
        assert resp.status_code == 404

    def test_part_price_is_snapshot(self, client, technician_headers, admin_headers, ticket, make_item):
        part = make_item(stock=5, selling_price_cents=1000)
        client.post(f"/api/tickets/{ticket['id']}/parts", json={"item_id": part.id, "quantity": 1},
                    headers=technician_headers)

        client.put(f"/api/inventory/{part.id}", json={"selling_price_cents": 9000}, headers=admin_headers)

        fetched = client.get(f"/api/tickets/{ticket['id']}", headers=technician_headers).json["ticket"]
        assert fetched["parts_used"][0]["price_at_time_cents"] == 1000
        assert fetched["total_cost_cents"] == 6000

    def test_remove_part_returns_stock(self, client, technician_headers, ticket, make_item):
        part = make_item(stock=5, selling_price_cents=1000)
        added = client.post(
            f"/api/tickets/{ticket['id']}/parts",
            json={"item_id": part.id, "quantity": 3},
            headers=technician_headers,
        ).json["ticket"]
        part_id = added["parts_used"][0]["id"]

        resp = client.delete(f"/api/tickets/{ticket['id']}/parts/{part_id}", headers=technician_headers)

        assert resp.status_code == 200
        assert resp.json["ticket"]["parts_used"] == []
        assert resp.json["ticket"]["total_cost_cents"] == 5000
        assert stock_of(part.id) == 5
        assert movement_total(part.id) == 5
        assert db.session.query(StockMovement).filter_by(movement_type=MOVEMENT_SERVICE_PART_RETURN).count() == 1

    def test_remove_unknown_part_returns_404(self, client, technician_headers, ticket):
        resp = client.delete(f"/api/tickets/{ticket['id']}/parts/999999", headers=technician_headers)
        assert resp.status_code == 404

    @pytest.mark.parametrize("path", [["Diagnosing", "Completed"], ["Diagnosing", "Completed", "Picked_Up"]])
    def test_frozen_ticket_rejects_parts(self, client, technician_headers, ticket, make_item, path):
        part = make_item(stock=5)
        _walk(client, technician_headers, ticket["id"], *path)

        resp = client.post(
            f"/api/tickets/{ticket['id']}/parts",
            json={"item_id": part.id, "quantity": 1},
            headers=technician_headers,
        )

        assert resp.status_code == 400
        assert stock_of(part.id) == 5

    def test_cancelled_ticket_rejects_parts(self, client, admin_headers, technician_headers, ticket, make_item):
        part = make_item(stock=5)
        client.delete(f"/api/tickets/{ticket['id']}", headers=admin_headers)

        resp = client.post(
            f"/api/tickets/{ticket['id']}/parts",
            json={"item_id": part.id, "quantity": 1},
            headers=technician_headers,
        )

        assert resp.status_code == 400
        assert stock_of(part.id) == 5


class TestServiceFee:

    def test_fee_update_recomputes_total(self, client, technician_headers, ticket, make_item):
        part = make_item(stock=5, selling_price_cents=1000)
        client.post(f"/api/tickets/{ticket['id']}/parts", json={"item_id": part.id, "quantity": 2},
                    headers=technician_headers)

        resp = client.patch(
            f"/api/tickets/{ticket['id']}/service-fee",
            json={"service_fee_cents": 7500},
            headers=technician_headers,
        )

        assert resp.status_code == 200
        assert resp.json["ticket"]["service_fee_cents"] == 7500
        assert resp.json["ticket"]["total_cost_cents"] == 9500

    def test_fee_frozen_after_completion(self, client, technician_headers, ticket):
        _walk(client, technician_headers, ticket["id"], "Diagnosing", "Completed")

        resp = client.patch(
            f"/api/tickets/{ticket['id']}/service-fee",
            json={"service_fee_cents": 1},
            headers=technician_headers,
        )

        assert resp.status_code == 400
        assert db.session.get(ServiceTicket, ticket["id"]).service_fee_cents == 5000

    @pytest.mark.parametrize("fee", [None, -5, "abc", 1.5])
    def test_invalid_fee_rejected(self, client, technician_headers, ticket, fee):
        resp = client.patch(
            f"/api/tickets/{ticket['id']}/service-fee",
            json={"service_fee_cents": fee},
            headers=technician_headers,
        )
        assert resp.status_code == 400
