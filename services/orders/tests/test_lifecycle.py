import pytest

from app.domain.models import Address, Order, User
from conftest import CUSTOMER_ID, OTHER_CUSTOMER_ID, NO_RIDER_ADDRESS_ID, PINCODE, auth, order_payload

ADMIN = auth("admin-1", role="admin")
RIDER = auth("rider-idle", role="delivery_person")


def place(client, **overrides) -> dict:
    resp = client.post("/orders", json=order_payload(**overrides), headers=auth(CUSTOMER_ID))
    assert resp.status_code == 201
    return resp.json()["order"]


def admin_move(client, order_id, status, notes=None):
    return client.patch(f"/orders/admin/{order_id}/status", json={"status": status, "notes": notes}, headers=ADMIN)


def test_customer_cancels_placed_order(client):
    order = place(client)
    resp = client.put(f"/orders/{order['id']}/cancel", json={"reason": "Changed my mind"}, headers=auth(CUSTOMER_ID))
    assert resp.status_code == 200
    assert resp.json()["order_status"] == "cancelled"
    assert resp.json()["payment_status"] == "pending"

    fetched = client.get(f"/orders/{order['id']}", headers=auth(CUSTOMER_ID)).json()
    assert fetched["cancellation_reason"] == "Changed my mind"
    assert fetched["cancelled_at"] is not None
    assert fetched["status_display"] == "Cancelled"


def test_customer_cannot_cancel_order_being_prepared_but_admin_can(client):
    order = place(client)
    assert admin_move(client, order["id"], "preparing").status_code == 200

    resp = client.put(f"/orders/{order['id']}/cancel", json={"reason": "Taking too long"}, headers=auth(CUSTOMER_ID))
    assert resp.status_code == 409

    resp = client.patch(f"/orders/admin/{order['id']}/cancel", json={"reason": "Kitchen closed"}, headers=ADMIN)
    assert resp.status_code == 200
    fetched = client.get(f"/orders/{order['id']}", headers=ADMIN).json()
    assert fetched["order_status"] == "cancelled"
    assert fetched["assigned_admin_id"] == "admin-1"


@pytest.mark.parametrize("reason,status_code", [("abcd", 400), ("  abcd  ", 400), ("abcde", 200)])
def test_cancellation_reason_minimum_length(client, reason, status_code):
    order = place(client)
    resp = client.put(f"/orders/{order['id']}/cancel", json={"reason": reason}, headers=auth(CUSTOMER_ID))
    assert resp.status_code == status_code


def test_customer_cannot_cancel_someone_elses_order(client):
    order = place(client)
    resp = client.put(f"/orders/{order['id']}/cancel", json={"reason": "Not mine"}, headers=auth(OTHER_CUSTOMER_ID))
    assert resp.status_code == 403


def test_cancel_unknown_order(client):
    resp = client.put("/orders/999/cancel", json={"reason": "Nothing here"}, headers=auth(CUSTOMER_ID))
    assert resp.status_code == 404


def test_admin_walks_cod_order_forward_with_timestamps(client):
    order = place(client)
    confirmed = admin_move(client, order["id"], "confirmed", notes="Called customer").json()
    assert confirmed["order_status"] == "confirmed"
    assert confirmed["confirmed_at"] is not None
    assert confirmed["admin_notes"] == "Called customer"
    assert confirmed["assigned_admin_id"] == "admin-1"

    ready = admin_move(client, order["id"], "ready").json()
    assert ready["order_status"] == "ready"
    assert ready["prepared_at"] is not None
    assert ready["admin_notes"] == "Called customer"


def test_status_cannot_move_backwards_or_repeat(client):
    order = place(client)
    admin_move(client, order["id"], "preparing")
    assert admin_move(client, order["id"], "confirmed").status_code == 409
    assert admin_move(client, order["id"], "preparing").status_code == 409


def test_unknown_status_lists_valid_statuses(client):
    order = place(client)
    resp = admin_move(client, order["id"], "teleported")
    assert resp.status_code == 400
    assert "placed" in resp.json()["errors"][0]


def test_terminal_orders_never_change(client):
    order = place(client)
    admin_move(client, order["id"], "delivered")
    for status in ("placed", "preparing", "delivered"):
        assert admin_move(client, order["id"], status).status_code == 409
    resp = client.patch(f"/orders/admin/{order['id']}/cancel", json={"reason": "Too late now"}, headers=ADMIN)
    assert resp.status_code == 409
    resp = client.patch(f"/orders/admin/{order['id']}/assign", json={"delivery_person_id": "rider-busy"}, headers=ADMIN)
    assert resp.status_code == 409


def test_admin_cancel_via_status_uses_notes_as_reason(client):
    order = place(client)
    resp = admin_move(client, order["id"], "cancelled", notes="Out of stock")
    assert resp.status_code == 200
    fetched = client.get(f"/orders/{order['id']}", headers=ADMIN).json()
    assert fetched["cancellation_reason"] == "Out of stock"


def test_unpaid_online_order_cannot_progress(client, gateway):
    order = place(client, payment_method="online")
    resp = admin_move(client, order["id"], "preparing")
    assert resp.status_code == 409


def test_delivery_person_moves_assigned_order(client):
    order = place(client)
    assert order["delivery_person_id"] == "rider-idle"
    admin_move(client, order["id"], "ready")

    for status in ("picked_up", "on_the_way", "delivered"):
        resp = client.patch(f"/orders/{order['id']}/status", json={"status": status}, headers=RIDER)
        assert resp.status_code == 200
        assert resp.json()["order_status"] == status
    assert resp.json()["delivered_at"] is not None
    assert resp.json()["status_display"] == "Delivered"


def test_delivery_person_limits(client):
    order = place(client)
    resp = client.patch(f"/orders/{order['id']}/status", json={"status": "preparing"}, headers=RIDER)
    assert resp.status_code == 403
    resp = client.patch(f"/orders/{order['id']}/status", json={"status": "cancelled"}, headers=RIDER)
    assert resp.status_code == 403
    other = auth("rider-busy", role="delivery_person")
    resp = client.patch(f"/orders/{order['id']}/status", json={"status": "picked_up"}, headers=other)
    assert resp.status_code == 403


def test_customer_cannot_use_status_endpoints(client):
    order = place(client)
    resp = client.patch(f"/orders/{order['id']}/status", json={"status": "confirmed"}, headers=auth(CUSTOMER_ID))
    assert resp.status_code == 403
    assert admin_move(client, order["id"], "confirmed").status_code == 200
    resp = client.patch(
        f"/orders/admin/{order['id']}/status", json={"status": "preparing"}, headers=auth(CUSTOMER_ID)
    )
    assert resp.status_code == 403


def test_admin_assigns_delivery_person_from_directory(client):
    order = place(client, delivery_address_id=NO_RIDER_ADDRESS_ID)
    resp = client.patch(
        f"/orders/admin/{order['id']}/assign",
        json={"delivery_person_id": "rider-busy", "mark_picked_up": True},
        headers=ADMIN,
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["delivery_person_id"] == "rider-busy"
    assert body["delivery_person_name"] == "Kumar"
    assert body["delivery_person_phone"] == "9100000001"
    assert body["order_status"] == "picked_up"


def test_assignment_rejects_inactive_or_unknown_rider(client):
    order = place(client)
    resp = client.patch(f"/orders/admin/{order['id']}/assign", json={"delivery_person_id": "rider-off"}, headers=ADMIN)
    assert resp.status_code == 400
    assert "Delivery person is not active" in resp.json()["errors"]

    resp = client.patch(f"/orders/admin/{order['id']}/assign", json={"delivery_person_id": "ghost"}, headers=ADMIN)
    assert resp.status_code == 400
    resp = client.patch(
        f"/orders/admin/{order['id']}/assign",
        json={"delivery_person_id": "ghost", "delivery_person_name": "Guest", "delivery_person_phone": "9200000000"},
        headers=ADMIN,
    )
    assert resp.status_code == 200
    assert resp.json()["delivery_person_name"] == "Guest"


def test_cancel_of_paid_order_marks_refund_pending(client, db):
    order = place(client)
    db.get(Order, order["id"]).payment_status = "paid"
    db.commit()
    resp = client.put(f"/orders/{order['id']}/cancel", json={"reason": "Ordered twice"}, headers=auth(CUSTOMER_ID))
    assert resp.status_code == 200
    assert resp.json()["payment_status"] == "refund_pending"


def test_order_visibility(client):
    order = place(client)
    assert client.get(f"/orders/{order['id']}", headers=auth(CUSTOMER_ID)).status_code == 200
    assert client.get(f"/orders/{order['id']}", headers=auth(OTHER_CUSTOMER_ID)).status_code == 403
    assert client.get(f"/orders/{order['id']}", headers=RIDER).status_code == 200
    assert client.get(f"/orders/{order['id']}", headers=auth("rider-busy", role="delivery_person")).status_code == 403
    assert client.get("/orders/999", headers=ADMIN).status_code == 404
    assert client.get(f"/orders/{order['id']}", headers={"Authorization": "Bearer garbage"}).status_code == 401


def test_listings(client):
    first = place(client)
    second = place(client, delivery_address_id=NO_RIDER_ADDRESS_ID)

    mine = client.get("/orders/mine", headers=auth(CUSTOMER_ID)).json()
    assert [o["id"] for o in mine] == [second["id"], first["id"]]
    assert client.get("/orders/mine", headers=auth(OTHER_CUSTOMER_ID)).json() == []

    riders = client.get("/orders/mine", headers=RIDER).json()
    assert [o["id"] for o in riders] == [first["id"]]
    assert client.get("/orders/mine", headers=ADMIN).status_code == 403

    by_pincode = client.get(f"/orders/admin/pincode/{PINCODE}", headers=ADMIN).json()
    assert [o["id"] for o in by_pincode] == [first["id"]]

    admin_move(client, first["id"], "confirmed")
    confirmed = client.get("/orders/admin", params={"status": "confirmed"}, headers=ADMIN).json()
    assert [o["id"] for o in confirmed] == [first["id"]]
    assert len(client.get("/orders/admin", headers=ADMIN).json()) == 2
    assert client.get("/orders/admin", headers=auth(CUSTOMER_ID)).status_code == 403


def test_admin_summary(client):
    first = place(client)
    place(client, delivery_address_id=NO_RIDER_ADDRESS_ID)
    client.put(f"/orders/{first['id']}/cancel", json={"reason": "Changed my mind"}, headers=auth(CUSTOMER_ID))

    summary = client.get("/orders/admin/summary", headers=ADMIN).json()
    assert summary["today"]["total"] == 2
    assert summary["today"]["revenue"] == 480
    assert summary["today"]["by_status"] == {"placed": 1, "cancelled": 1}
    assert summary["active"]["pending"] == 1
    assert summary["active"]["cancelled"] == 1
    assert summary["by_pincode"] == {"600041": 1}


def test_snapshots_survive_profile_and_address_edits(client, db):
    order = place(client)
    db.get(User, CUSTOMER_ID).display_name = "Asha K"
    db.get(Address, "addr-1").address_line1 = "99 New Street"
    db.commit()

    fetched = client.get(f"/orders/{order['id']}", headers=auth(CUSTOMER_ID)).json()
    assert fetched["user_name"] == "Asha"
    assert fetched["delivery_address"]["address_line1"] == "12 Lake View Road"
    assert fetched["items"] == order["items"]
    assert fetched["total_amount"] == order["total_amount"]
