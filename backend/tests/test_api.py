import pytest
from fastapi.testclient import TestClient

from app.main import app
from interfaces import deps
from conftest import build_services


@pytest.fixture
def client(config, repo, clock, monkeypatch):
    services = build_services(config, repo, clock)
    monkeypatch.setattr(deps, "repository", repo)
    monkeypatch.setattr(deps, "billing_service", services.billing)
    monkeypatch.setattr(deps, "device_service", services.devices)
    monkeypatch.setattr(deps, "session_service", services.sessions)
    monkeypatch.setattr(deps, "table_service", services.tables)
    monkeypatch.setattr(deps, "reconciliation_service", services.reconciliation)
    test_client = TestClient(app)
    test_client.clock = clock
    return test_client


def _create_device(client, **overrides):
    body = {"name": "PS 1", "type": "playstation", "number": "1"}
    body.update(overrides)
    response = client.post("/devices", json=body)
    assert response.status_code == 201
    return response.json()["data"]


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_device_gets_default_rates(client):
    device = _create_device(client)
    assert device["number"] == "ps1"
    assert device["playstationRates"] == {"1": 20.0, "2": 20.0, "3": 25.0, "4": 30.0}


def test_session_lifecycle_over_http(client):
    _create_device(client)
    started = client.post("/sessions", json={"deviceNumber": "ps1", "controllers": 2})
    assert started.status_code == 201
    body = started.json()
    assert body["success"] is True
    session_id = body["data"]["session"]["sessionId"]
    bill_id = body["data"]["bill"]["billId"]

    client.clock.advance(hours=1)
    changed = client.put(f"/sessions/{session_id}/controllers", json={"controllers": 4})
    assert changed.status_code == 200
    assert len(changed.json()["data"]["controllersHistory"]) == 2

    client.clock.advance(hours=1)
    cost = client.get(f"/sessions/{session_id}/cost").json()["data"]
    assert cost["currentCost"] == 50
    assert [row["cost"] for row in cost["breakdown"]] == [20, 30]

    ended = client.put(f"/sessions/{session_id}/end").json()["data"]
    assert ended["session"]["status"] == "completed"
    assert ended["bill"]["total"] == 50

    paid = client.post(f"/bills/{bill_id}/payments", json={"amount": 50}).json()["data"]
    assert paid["status"] == "paid"


def test_error_envelope(client):
    _create_device(client)
    client.post("/sessions", json={"deviceNumber": "ps1"})

    conflict = client.post("/sessions", json={"deviceNumber": "ps1"})
    assert conflict.status_code == 409
    assert conflict.json() == {
        "success": False,
        "message": "Device ps1 is already in use",
        "error": "state_conflict",
    }

    missing = client.get("/sessions/nope")
    assert missing.status_code == 404
    assert missing.json()["error"] == "not_found"


def test_controller_range_is_validation_error(client):
    _create_device(client)
    session_id = client.post("/sessions", json={"deviceNumber": "ps1"}).json()["data"]["session"]["sessionId"]
    response = client.put(f"/sessions/{session_id}/controllers", json={"controllers": 7})
    assert response.status_code == 400
    assert response.json()["error"] == "validation"


def test_table_link_and_reconcile(client):
    _create_device(client)
    _create_device(client, name="PC 1", type="computer")
    table = client.post("/tables", json={"number": "3"}).json()["data"]

    first = client.post("/sessions", json={"deviceNumber": "ps1", "tableId": table["tableId"]}).json()["data"]
    second = client.post("/sessions", json={"deviceNumber": "pc1"}).json()["data"]

    linked = client.put(
        f"/sessions/{second['session']['sessionId']}/link-table",
        json={"tableId": table["tableId"]},
    ).json()["data"]
    assert linked["bill"]["billId"] == first["bill"]["billId"]
    assert client.get(f"/bills/{second['bill']['billId']}").status_code == 404

    report = client.post("/admin/reconcile").json()
    assert report["success"] is True
    assert report["data"]["references_removed"] == 0


def test_orders_on_bill(client):
    _create_device(client)
    bill_id = client.post("/sessions", json={"deviceNumber": "ps1"}).json()["data"]["bill"]["billId"]
    added = client.post(f"/bills/{bill_id}/orders", json={"amount": 15, "description": "Snacks"})
    assert added.status_code == 201
    order_id = added.json()["data"]["order"]["orderId"]
    assert added.json()["data"]["bill"]["total"] == 15

    cancelled = client.delete(f"/bills/{bill_id}/orders/{order_id}").json()["data"]
    assert cancelled["total"] == 0
    assert cancelled["orders"][0]["status"] == "cancelled"


def test_settings_endpoint(client):
    data = client.get("/settings").json()["data"]
    assert data["billing"]["default_rates"]["computer"] == 15


def test_settings_reload_pushes_config_to_services(client, monkeypatch):
    monkeypatch.setattr(deps, "settings", deps.settings)
    response = client.post("/settings/reload")
    assert response.status_code == 200
    body = response.json()
    assert body["message"] == "Settings reloaded"
    assert deps.session_service.config is deps.settings


@pytest.mark.parametrize(
    "method, path, body",
    [
        ("post", "/sessions", {}),
        ("post", "/sessions", {"deviceNumber": "ps1", "controllers": "two"}),
        ("post", "/devices", {"type": "playstation"}),
    ],
)
def test_malformed_requests_use_the_error_envelope(client, method, path, body):
    response = getattr(client, method)(path, json=body)
    assert response.status_code == 400
    payload = response.json()
    assert payload["success"] is False
    assert payload["error"] == "validation"
    assert payload["message"]


def test_malformed_session_updates_use_the_error_envelope(client):
    _create_device(client)
    session_id = client.post("/sessions", json={"deviceNumber": "ps1"}).json()["data"]["session"]["sessionId"]

    discount = client.put(f"/sessions/{session_id}/discount", json={"discount": "lots"})
    start_time = client.put(f"/sessions/{session_id}/start-time", json={"startTime": "yesterday-ish"})

    for response in (discount, start_time):
        assert response.status_code == 400
        assert response.json() == {
            "success": False,
            "message": response.json()["message"],
            "error": "validation",
        }
