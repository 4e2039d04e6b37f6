from datetime import datetime, timedelta, timezone
from typing import Iterator

import pytest
from fastapi.testclient import TestClient

from app.main import create_app
from services.runtime import Services


@pytest.fixture
def api_client(services: Services, monkeypatch) -> Iterator[TestClient]:
    def build_test_services() -> Services:
        return services

    build_test_services.cache_clear = lambda: None  # type: ignore[attr-defined]

    monkeypatch.setattr("app.main.build_default_services", build_test_services)
    monkeypatch.setattr("app.api.build_default_services", build_test_services)

    app = create_app()
    with TestClient(app) as client:
        yield client


def _register_and_login(client: TestClient, username: str, password: str) -> str:
    response = client.post("/users/register", json={"username": username, "password": password})
    assert response.status_code == 201
    response = client.post("/users/login", json={"username": username, "password": password})
    assert response.status_code == 200
    return response.json()["token"]


def _auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def _reading(sensor_id: int = 7, co2: float = 5.0) -> dict:
    timestamp = datetime.now(timezone.utc) - timedelta(minutes=10)
    return {
        "sensor_id": sensor_id,
        "timestamp": timestamp.isoformat(),
        "co2": co2,
        "temperature": 21.3,
    }


def test_root_and_health(api_client: TestClient) -> None:
    assert api_client.get("/").status_code == 200

    response = api_client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_end_to_end_alice_and_bob(
    api_client: TestClient, services: Services, ledger, reading_count
) -> None:
    alice = _register_and_login(api_client, "alice", "pw1")
    bob = _register_and_login(api_client, "bob", "pw2")
    services.store.register_sensor("Petroquimica", "Tarragona", "alice", sensor_id=7)

    response = api_client.post("/sensors/ingest", json=_reading())
    assert response.status_code == 200
    receipt = response.json()
    assert receipt["status"] == "accepted"
    assert ledger.memos == [f"pollution:v1:{receipt['fingerprint']}"]
    assert reading_count(7) == 1

    response = api_client.get("/sensors/7/readings", params={"range": "24h"}, headers=_auth(alice))
    assert response.status_code == 200
    readings = response.json()["readings"]
    assert len(readings) == 1
    assert readings[0]["id"] == receipt["reading_id"]
    assert readings[0]["co2"] == 5.0
    assert readings[0]["anchor_status"] == "anchored"

    response = api_client.get("/sensors/7/readings", params={"range": "24h"}, headers=_auth(bob))
    assert response.status_code == 403
    assert "readings" not in response.json()


def test_login_response_shape(api_client: TestClient) -> None:
    _register_and_login(api_client, "alice", "pw1")

    response = api_client.post("/users/login", json={"username": "alice", "password": "pw1"})

    body = response.json()
    assert set(body) == {"token", "username", "role"}
    assert body["username"] == "alice"
    assert body["role"] == "user"


def test_bad_login_is_unauthorized(api_client: TestClient) -> None:
    _register_and_login(api_client, "alice", "pw1")

    response = api_client.post("/users/login", json={"username": "alice", "password": "nope"})

    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid credentials"


def test_duplicate_registration_is_conflict(api_client: TestClient) -> None:
    _register_and_login(api_client, "alice", "pw1")

    response = api_client.post("/users/register", json={"username": "alice", "password": "x"})

    assert response.status_code == 409
    assert response.json()["detail"] == "Username already taken"


def test_negative_co2_is_bad_request(
    api_client: TestClient, services: Services, ledger, reading_count
) -> None:
    _register_and_login(api_client, "alice", "pw1")
    services.store.register_sensor("Roof", "", "alice", sensor_id=7)

    response = api_client.post("/sensors/ingest", json=_reading(co2=-1.0))

    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid CO2 value"
    assert reading_count(7) == 0
    assert ledger.submissions == 0


def test_unknown_sensor_is_bad_request(api_client: TestClient) -> None:
    response = api_client.post("/sensors/ingest", json=_reading(sensor_id=404))

    assert response.status_code == 400
    assert response.json()["detail"] == "Sensor is not registered"


def test_anchor_failure_is_internal_error_but_row_stays(
    api_client: TestClient, services: Services, ledger, reading_count
) -> None:
    _register_and_login(api_client, "alice", "pw1")
    services.store.register_sensor("Roof", "", "alice", sensor_id=7)
    ledger.failing.add("sendTransaction")

    response = api_client.post("/sensors/ingest", json=_reading())

    assert response.status_code == 500
    assert response.json()["detail"] == "Internal server error"
    assert "Node is unhealthy" not in response.text
    assert reading_count(7) == 1


@pytest.mark.parametrize(
    "headers",
    [
        {},
        {"Authorization": "Bearer garbage"},
        {"Authorization": "Basic YWxpY2U6cHcx"},
    ],
)
def test_protected_routes_require_valid_token(api_client: TestClient, headers: dict) -> None:
    response = api_client.get("/sensors", headers=headers)

    assert response.status_code == 401
    assert response.headers["www-authenticate"] == "Bearer"


def test_sensor_listing_and_unknown_range(api_client: TestClient, services: Services) -> None:
    alice = _register_and_login(api_client, "alice", "pw1")
    services.store.register_sensor("Roof", "Tarragona", "alice", sensor_id=7)

    response = api_client.get("/sensors", headers=_auth(alice))
    assert response.status_code == 200
    assert response.json() == [{"id": 7, "name": "Roof", "location": "Tarragona"}]

    response = api_client.get("/sensors/7/readings", params={"range": "1y"}, headers=_auth(alice))
    assert response.status_code == 422


def test_proof_endpoint(api_client: TestClient, services: Services) -> None:
    alice = _register_and_login(api_client, "alice", "pw1")
    bob = _register_and_login(api_client, "bob", "pw2")
    services.store.register_sensor("Roof", "", "alice", sensor_id=7)
    receipt = api_client.post("/sensors/ingest", json=_reading()).json()
    path = f"/sensors/7/readings/{receipt['reading_id']}/proof"

    response = api_client.get(path, headers=_auth(alice))
    assert response.status_code == 200
    body = response.json()
    assert body["verified"] is True
    assert body["signature"] == receipt["signature"]
    assert body["state"] == "confirmed"

    assert api_client.get(path, headers=_auth(bob)).status_code == 403
    missing = f"/sensors/7/readings/{receipt['reading_id'] + 1}/proof"
    assert api_client.get(missing, headers=_auth(alice)).status_code == 404


def test_out_of_range_ids_are_client_errors(api_client: TestClient, services: Services) -> None:
    alice = _register_and_login(api_client, "alice", "pw1")
    services.store.register_sensor("Roof", "", "alice", sensor_id=7)
    huge = 2**64

    response = api_client.post("/sensors/ingest", json=_reading(sensor_id=huge))
    assert response.status_code == 400
    assert response.json()["detail"] == "Sensor is not registered"

    response = api_client.get(f"/sensors/{huge}/readings", headers=_auth(alice))
    assert response.status_code == 403

    response = api_client.get(f"/sensors/7/readings/{huge}/proof", headers=_auth(alice))
    assert response.status_code == 404
