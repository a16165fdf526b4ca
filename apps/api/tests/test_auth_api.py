from __future__ import annotations

from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from app.identity.models import User

from conftest import World, bearer


def _register(api_client: TestClient, email: str = "new.rep@example.com", password: str = "secret123") -> dict:
    response = api_client.post(
        "/api/auth/register",
        json={"full_name": "New Rep", "email": email, "password": password},
    )
    assert response.status_code == 201
    return response.json()


def test_register_creates_active_sales_rep_and_token_works(api_client: TestClient, world: World) -> None:
    body = _register(api_client, email="New.Rep@Example.com")

    assert body["token_type"] == "bearer"
    assert body["user"]["email"] == "new.rep@example.com"
    assert body["user"]["role"]["value"] == "sales_rep"
    assert body["user"]["is_active"] is True

    me = api_client.get("/api/auth/me", headers={"Authorization": f"Bearer {body['access_token']}"})
    assert me.status_code == 200
    assert me.json()["id"] == body["user"]["id"]


def test_register_rejects_duplicate_email(api_client: TestClient, world: World) -> None:
    _register(api_client)

    duplicate = api_client.post(
        "/api/auth/register",
        json={"full_name": "Again", "email": "NEW.REP@example.com", "password": "secret123"},
    )

    assert duplicate.status_code == 409
    assert duplicate.json()["code"] == "conflict"


def test_login_checks_password_and_active_flag(api_client: TestClient, db_session: Session, world: World) -> None:
    created = _register(api_client)

    ok = api_client.post("/api/auth/login", json={"email": "new.rep@example.com", "password": "secret123"})
    wrong = api_client.post("/api/auth/login", json={"email": "new.rep@example.com", "password": "nope"})
    unknown = api_client.post("/api/auth/login", json={"email": "ghost@example.com", "password": "secret123"})

    assert ok.status_code == 200
    assert ok.json()["user"]["id"] == created["user"]["id"]
    assert wrong.status_code == 401
    assert wrong.headers.get("www-authenticate") == "Bearer"
    assert unknown.status_code == 401
    assert wrong.json()["message"] == unknown.json()["message"]

    user = db_session.get(User, created["user"]["id"])
    assert user is not None
    user.is_active = False
    db_session.commit()

    blocked = api_client.post("/api/auth/login", json={"email": "new.rep@example.com", "password": "secret123"})
    stale_token = api_client.get("/api/auth/me", headers={"Authorization": f"Bearer {created['access_token']}"})
    assert blocked.status_code == 403
    assert blocked.json()["message"] == "Account is deactivated"
    assert stale_token.status_code == 403


def test_change_password(api_client: TestClient, world: World) -> None:
    created = _register(api_client)
    headers = {"Authorization": f"Bearer {created['access_token']}"}

    rejected = api_client.post(
        "/api/auth/password",
        json={"current_password": "wrong", "new_password": "better456"},
        headers=headers,
    )
    changed = api_client.post(
        "/api/auth/password",
        json={"current_password": "secret123", "new_password": "better456"},
        headers=headers,
    )

    assert rejected.status_code == 422
    assert changed.status_code == 204
    assert api_client.post("/api/auth/login", json={"email": "new.rep@example.com", "password": "secret123"}).status_code == 401
    assert api_client.post("/api/auth/login", json={"email": "new.rep@example.com", "password": "better456"}).status_code == 200


def test_protected_routes_require_valid_token(api_client: TestClient, world: World) -> None:
    missing = api_client.get("/api/leads")
    garbage = api_client.get("/api/leads", headers={"Authorization": "Bearer not-a-jwt"})
    unknown_user = api_client.get("/api/leads", headers=bearer(9999, "admin"))
    valid = api_client.get("/api/leads", headers=bearer(world.manager, "manager"))

    assert missing.status_code == 401
    assert missing.json()["message"] == "Missing bearer token"
    assert garbage.status_code == 401
    assert unknown_user.status_code == 401
    assert valid.status_code == 200


def test_role_comes_from_account_not_token(api_client: TestClient, world: World) -> None:
    # A sales rep holding a token that claims admin is still scoped as a sales rep.
    response = api_client.get("/api/dashboard/summary", headers=bearer(world.rep, "admin"))

    assert response.status_code == 200
    assert response.json()["role"] == "sales_rep"
