from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from venus.store import MemoryBackend
from venus.webapp.application import create_app
from venus.webapp.config import Settings

NOW = datetime(2026, 3, 1, 9, 30)
FUTURE = (NOW + timedelta(days=30)).date().isoformat()


def make_settings(tmp_path, **overrides) -> Settings:
    values = dict(
        session_secret="test-secret",
        store_backend="sqlite",
        sqlite_file=str(tmp_path / "venus.db"),
        log_file=str(tmp_path / "venus.log"),
        password_iterations=1_000,
        client_url="",
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture()
def app(tmp_path):
    return create_app(make_settings(tmp_path), clock=lambda: NOW)


def signed_in(app, email: str = "sam@example.com") -> TestClient:
    client = TestClient(app)
    response = client.post("/api/auth/register", json={"email": email, "password": "secret-pass"})
    assert response.status_code == 201
    return client


def create_goal(client: TestClient, **overrides) -> dict:
    body = {"label": "Trip", "amount": 1000, "lockUntil": FUTURE, "emergencyAllowed": True, "initialDeposit": 100}
    body.update(overrides)
    response = client.post("/api/goals", json=body)
    assert response.status_code == 201, response.json()
    return response.json()["goal"]


def test_health_reports_backend(app) -> None:
    response = TestClient(app).get("/api/health")

    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "ok"
    assert payload["store"] == {"backend": "sqlite", "online": True}
    assert payload["withdrawPolicy"]["policy"] == "penalty"


def test_goals_require_login(app) -> None:
    client = TestClient(app)

    response = client.get("/api/goals")

    assert response.status_code == 401
    assert "log in" in response.json()["message"]


def test_register_login_logout_cycle(app) -> None:
    client = signed_in(app)
    assert client.get("/api/auth/me").json()["user"]["email"] == "sam@example.com"

    assert client.post("/api/auth/logout").json() == {"message": "logged out."}
    assert client.get("/api/auth/me").status_code == 401

    bad = client.post("/api/auth/login", json={"email": "sam@example.com", "password": "nope-nope"})
    assert bad.status_code == 401
    good = client.post("/api/auth/login", json={"email": "sam@example.com", "password": "secret-pass"})
    assert good.status_code == 200
    assert good.json()["message"] == "logged in."
    assert client.get("/api/goals").json() == {"goals": []}


def test_duplicate_registration_conflicts(app) -> None:
    signed_in(app)

    response = TestClient(app).post(
        "/api/auth/register", json={"email": "SAM@example.com", "password": "secret-pass"}
    )

    assert response.status_code == 409


def test_trip_scenario_over_http(app) -> None:
    client = signed_in(app)
    goal = create_goal(client)
    assert goal["status"] == "locked"
    assert goal["currentAmount"] == 100.0
    assert goal["targetAmount"] == 1000.0
    assert goal["withdrawCount"] == 0

    response = client.patch(f"/api/goals/{goal['id']}", json={"action": "emergency-withdraw"})
    assert response.status_code == 200
    withdrawn = response.json()["goal"]
    assert withdrawn["status"] == "withdrawn"
    assert withdrawn["withdrawCount"] == 1
    assert withdrawn["penaltyAmount"] == 0.0
    assert withdrawn["emergencyUsed"] is True

    again = client.patch(f"/api/goals/{goal['id']}", json={"action": "emergency-withdraw"})
    assert again.status_code == 400
    assert "already withdrawn" in again.json()["message"]
    assert client.get(f"/api/goals/{goal['id']}").json()["goal"] == withdrawn


def test_create_validation_errors_are_400(app) -> None:
    client = signed_in(app)

    for body in (
        {"label": "Trip", "amount": 0, "lockUntil": FUTURE},
        {"label": "", "amount": 10, "lockUntil": FUTURE},
        {"label": "Trip", "amount": 10, "lockUntil": "soon"},
        {"label": "Trip", "amount": 10, "lockUntil": FUTURE, "initialDeposit": 11},
        {"label": "Trip", "amount": 1e30, "lockUntil": FUTURE},
        {"label": "Trip", "amount": 1e20, "lockUntil": FUTURE},
        {"label": "Trip", "amount": 10, "lockUntil": "2026-05-01garbage"},
    ):
        response = client.post("/api/goals", json=body)
        assert response.status_code == 400
        assert response.json()["message"]

    assert client.get("/api/goals").json() == {"goals": []}


def test_emergency_not_allowed_is_forbidden(app) -> None:
    client = signed_in(app)
    goal = create_goal(client, emergencyAllowed=False)

    response = client.patch(f"/api/goals/{goal['id']}", json={"action": "emergency-withdraw"})

    assert response.status_code == 403
    assert client.get("/api/goals").json()["goals"][0]["status"] == "locked"


def test_relock_then_second_break_reports_penalty(app) -> None:
    client = signed_in(app)
    goal = create_goal(client, amount=1000, initialDeposit=200)
    url = f"/api/goals/{goal['id']}"

    client.patch(url, json={"action": "emergency-withdraw"})
    relocked = client.patch(url, json={"action": "relock", "lockUntil": FUTURE})
    assert relocked.json()["goal"]["status"] == "locked"

    response = client.patch(url, json={"action": "emergency-withdraw"})
    assert response.status_code == 200
    assert "$20.00 penalty" in response.json()["message"]
    assert response.json()["goal"]["penaltyAmount"] == 20.0

    summary = client.get("/api/goals/summary").json()["summary"]
    assert summary["totalPenalties"] == 20.0
    assert summary["emergencyUses"] == 2


def test_edit_contribute_and_delete(app) -> None:
    client = signed_in(app)
    goal = create_goal(client, label="Camera", amount=500, initialDeposit=0)
    url = f"/api/goals/{goal['id']}"

    edited = client.patch(url, json={"label": "Mirrorless camera", "targetAmount": 650})
    assert edited.status_code == 200
    assert edited.json()["goal"]["label"] == "Mirrorless camera"
    assert edited.json()["goal"]["amount"] == 650.0

    deposit = client.patch(url, json={"action": "contribute", "amount": 50.25})
    assert deposit.json()["goal"]["currentAmount"] == 50.25

    assert client.patch(url, json={"status": "withdrawn"}).status_code == 400
    assert client.patch(url, json={"action": "explode"}).status_code == 400

    mixed = client.patch(url, json={"action": "emergency-withdraw", "label": "Sneaky"})
    assert mixed.status_code == 400
    assert "label" in mixed.json()["message"]
    current = client.get(url).json()["goal"]
    assert current["status"] == "locked"
    assert current["label"] == "Mirrorless camera"
    assert current["createdAt"].endswith("+00:00")

    assert client.delete(url).json() == {"message": "goal deleted."}
    assert client.delete(url).status_code == 404


def test_owners_cannot_see_each_other(app) -> None:
    alice = signed_in(app, "alice@example.com")
    bob = signed_in(app, "bob@example.com")
    goal = create_goal(bob, label="Rent")
    url = f"/api/goals/{goal['id']}"

    assert alice.get("/api/goals").json() == {"goals": []}
    assert alice.get(url).status_code == 404
    assert alice.patch(url, json={"action": "emergency-withdraw"}).status_code == 404
    assert alice.patch(url, json={"label": "Mine"}).status_code == 404
    assert alice.delete(url).status_code == 404
    assert bob.get(url).json()["goal"]["status"] == "locked"
    assert bob.get(url).json()["goal"]["label"] == "Rent"


def test_reset_clears_only_own_goals(app) -> None:
    alice = signed_in(app, "alice@example.com")
    bob = signed_in(app, "bob@example.com")
    create_goal(alice)
    create_goal(alice, label="Second")
    create_goal(bob)

    response = alice.post("/api/goals/reset")

    assert response.json() == {"message": "all goals cleared.", "removed": 2}
    assert len(bob.get("/api/goals").json()["goals"]) == 1


def test_cap_policy_over_memory_backend(tmp_path) -> None:
    settings = make_settings(tmp_path, store_backend="memory", withdraw_policy="cap", emergency_cap=1)
    app = create_app(settings, backend=MemoryBackend(), clock=lambda: NOW)
    client = signed_in(app)
    first = create_goal(client)
    second = create_goal(client, label="Second")

    assert client.patch(f"/api/goals/{first['id']}", json={"action": "withdraw"}).status_code == 200
    blocked = client.patch(f"/api/goals/{second['id']}", json={"action": "withdraw"})
    assert blocked.status_code == 403
    assert "limit" in blocked.json()["message"]


def test_mutations_are_logged_to_file(tmp_path) -> None:
    app = create_app(make_settings(tmp_path), clock=lambda: NOW)
    client = signed_in(app)
    create_goal(client)

    lines = (tmp_path / "venus.log").read_text(encoding="utf-8").splitlines()
    assert any('"event": "goal_created"' in line for line in lines)
