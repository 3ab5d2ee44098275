import pytest
from fastapi.testclient import TestClient

from circulation.api import app, get_library
from circulation.config import settings

pytestmark = pytest.mark.integration

HEADERS = {"X-API-Key": settings.api_key}


@pytest.fixture
def client(lib):
    # Route every request to the per-test library and its fake clock
    app.dependency_overrides[get_library] = lambda: lib
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def _item(client, copies=1, title="Dune"):
    response = client.post("/items", headers=HEADERS, json={"title": title, "total_copies": copies})
    assert response.status_code == 201
    return response.json()


def _patron(client, n):
    response = client.post("/patrons", headers=HEADERS, json={"name": f"P{n}", "email": f"p{n}@example.com"})
    assert response.status_code == 201
    return response.json()


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["db"] is True

def test_invalid_api_key(client):
    response = client.post("/items", headers={"X-API-Key": "invalid-key"}, json={"title": "Dune"})
    assert response.status_code == 403

def test_missing_api_key(client):
    assert client.post("/items", json={"title": "Dune"}).status_code in (401, 403)

def test_issue_and_return_flow(client, clock):
    item = _item(client)
    patron = _patron(client, 1)

    issued = client.post("/loans", headers=HEADERS, json={"patron_id": patron["patron_id"], "item_id": item["item_id"]})
    assert issued.status_code == 201
    loan = issued.json()
    assert loan["status"] == "ACTIVE"
    assert client.get(f"/items/{item['item_id']}").json()["available_copies"] == 0

    clock.advance(days=16)
    assert client.get(f"/loans/{loan['loan_id']}/fine").json()["amount"] == "2.00"
    assert [o["loan"]["loan_id"] for o in client.get("/loans/overdue").json()] == [loan["loan_id"]]

    returned = client.post(f"/loans/{loan['loan_id']}/return", headers=HEADERS)
    assert returned.status_code == 200
    assert returned.json()["fine"] == "2.00"
    assert returned.json()["loan"]["is_returned"] is True
    assert client.get(f"/items/{item['item_id']}").json()["available_copies"] == 1

def test_errors_map_to_status_codes(client):
    item = _item(client)
    first, second = _patron(client, 1), _patron(client, 2)
    client.post("/loans", headers=HEADERS, json={"patron_id": first["patron_id"], "item_id": item["item_id"]})

    conflict = client.post("/loans", headers=HEADERS, json={"patron_id": second["patron_id"], "item_id": item["item_id"]})
    assert conflict.status_code == 409
    assert conflict.json()["code"] == "OutOfStock"

    missing = client.get("/loans/999")
    assert missing.status_code == 404
    assert missing.json()["code"] == "NotFound"

    bad = client.post("/patrons", headers=HEADERS, json={"name": "Dup", "email": "p1@example.com"})
    assert bad.status_code == 422
    assert bad.json()["code"] == "InvalidArgument"

def test_reservation_endpoints(client):
    item = _item(client)
    holder, waiting = _patron(client, 1), _patron(client, 2)
    client.post("/loans", headers=HEADERS, json={"patron_id": holder["patron_id"], "item_id": item["item_id"]})

    created = client.post("/reservations", headers=HEADERS,
                          json={"patron_id": waiting["patron_id"], "item_id": item["item_id"]})
    assert created.status_code == 201
    assert len(client.get(f"/items/{item['item_id']}/reservations").json()) == 1

    params = {"patron_id": waiting["patron_id"], "item_id": item["item_id"]}
    assert client.delete("/reservations", headers=HEADERS, params=params).json() == {"removed": True}
    assert client.delete("/reservations", headers=HEADERS, params=params).json() == {"removed": False}

def test_lost_damaged_endpoints(client):
    item = _item(client, copies=2)

    lost = client.post("/lost-damaged/lost", headers=HEADERS,
                       json={"item_id": item["item_id"], "reported_by": "desk"})
    assert lost.status_code == 201
    damaged = client.post("/lost-damaged/damaged", headers=HEADERS,
                          json={"item_id": item["item_id"], "reported_by": "desk", "damage_level": "MINOR"})
    assert damaged.status_code == 201
    assert damaged.json()["withdrawn"] is False

    found = client.patch(f"/lost-damaged/{lost.json()['record_id']}", headers=HEADERS, json={"status": "FOUND"})
    assert found.status_code == 200
    assert found.json()["status"] == "FOUND"

    again = client.patch(f"/lost-damaged/{lost.json()['record_id']}", headers=HEADERS, json={"status": "CLOSED"})
    assert again.status_code == 409
    assert again.json()["code"] == "InvalidTransition"

    assert len(client.get("/lost-damaged", params={"type": "DAMAGED"}).json()) == 1
    assert client.get("/inventory/stats").json()["available_copies"] == 2
    assert client.get(f"/items/{item['item_id']}/audit").json()["consistent"] is True

def test_settings_endpoints(client):
    assert client.get("/settings").json() == {"loan_period_days": 14, "fine_per_day": "1.00", "borrowing_limit": 5}
    updated = client.put("/settings", headers=HEADERS, json={"borrowing_limit": 2})
    assert updated.status_code == 200
    assert updated.json()["borrowing_limit"] == 2

    rejected = client.put("/settings", headers=HEADERS, json={"loan_period_days": 0})
    assert rejected.status_code == 422

def test_active_loans_listing(client, clock):
    item = _item(client, copies=2)
    patron = _patron(client, 1)
    loan = client.post("/loans", headers=HEADERS,
                       json={"patron_id": patron["patron_id"], "item_id": item["item_id"]}).json()
    clock.advance(days=4)

    listing = client.get("/loans")

    assert listing.status_code == 200
    (entry,) = listing.json()
    assert entry["loan"]["loan_id"] == loan["loan_id"]
    assert entry["is_overdue"] is False
    assert entry["days_until_due"] == 10
    assert entry["projected_fine"] == "0.00"
