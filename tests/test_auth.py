from dataclasses import replace

from fastapi.testclient import TestClient

from src.projectbot.api.main import app
from src.projectbot.security import rate_limit
from src.projectbot.security.auth import (
    JwtConfig,
    create_access_token,
    create_refresh_token,
    hash_password,
    verify_password,
)
from src.projectbot.security.rbac import Permission, is_authorized

from .utils import admin_headers, create_account, login, user_headers


client = TestClient(app)


def _expired_access(user):
    return create_access_token(user, replace(JwtConfig.from_env(), expires_min=-5))


def test_password_hash_format_and_verification():
    stored = hash_password("hunter22")
    digest, _, salt = stored.partition(".")
    assert len(digest) == 128 and len(salt) == 32
    assert verify_password("hunter22", stored)
    assert not verify_password("wrong", stored)
    assert not verify_password("hunter22", "not-a-hash")


def test_login_returns_tokens_and_user():
    create_account("dana", display_name="dana reyes")
    headers, data = login(client, "dana")
    assert data["token_type"] == "bearer"
    assert data["refresh_token"]
    assert data["user"]["initial"] == "D"
    assert "password_hash" not in data["user"]

    me = client.get("/api/auth/me", headers=headers)
    assert me.status_code == 200
    assert me.json()["username"] == "dana"


def test_bad_credentials_are_rejected():
    create_account("dana")
    r = client.post("/api/auth/login", json={"username": "dana", "password": "nope"})
    assert r.status_code == 401
    assert r.json()["detail"] == "Invalid username or password"


def test_missing_and_garbage_tokens():
    assert client.get("/api/auth/me").json()["detail"] == "Missing bearer token"
    r = client.get("/api/auth/me", headers={"Authorization": "Bearer not.a.jwt"})
    assert r.status_code == 401
    assert r.json()["detail"] == "Invalid token"


def test_refresh_token_cannot_be_used_as_access_token():
    user = create_account("dana")
    r = client.get("/api/auth/me", headers={"Authorization": f"Bearer {create_refresh_token(user)}"})
    assert r.status_code == 401


def test_refresh_endpoint_issues_new_access_token():
    create_account("dana")
    _, data = login(client, "dana")
    r = client.post("/api/auth/refresh", json={"refresh_token": data["refresh_token"]})
    assert r.status_code == 200
    new_access = r.json()["access_token"]
    assert client.get("/api/auth/me", headers={"Authorization": f"Bearer {new_access}"}).status_code == 200


def test_expired_access_token_without_refresh_header():
    user = create_account("dana")
    r = client.get("/api/auth/me", headers={"Authorization": f"Bearer {_expired_access(user)}"})
    assert r.status_code == 401
    assert r.json()["detail"] == "Token expired"


def test_expired_access_token_is_refreshed_once_via_header():
    user = create_account("dana")
    r = client.get(
        "/api/auth/me",
        headers={
            "Authorization": f"Bearer {_expired_access(user)}",
            "X-Refresh-Token": create_refresh_token(user),
        },
    )
    assert r.status_code == 200
    fresh = r.headers["X-Access-Token"]
    assert client.get("/api/auth/me", headers={"Authorization": f"Bearer {fresh}"}).status_code == 200


def test_expired_access_with_bad_refresh_is_rejected():
    user = create_account("dana")
    r = client.get(
        "/api/auth/me",
        headers={"Authorization": f"Bearer {_expired_access(user)}", "X-Refresh-Token": "garbage"},
    )
    assert r.status_code == 401
    assert "X-Access-Token" not in r.headers


def test_role_permissions():
    admin = create_account("root", role="admin")
    member = create_account("pm")
    assert is_authorized(admin, Permission.USERS_ADMIN)
    assert is_authorized(member, Permission.CHATBOT_WRITE)
    assert not is_authorized(member, Permission.SETTINGS_WRITE)
    assert not is_authorized(member, Permission.USERS_ADMIN)


def test_user_management_requires_admin():
    headers = user_headers(client)
    assert client.get("/api/users", headers=headers).status_code == 403
    r = client.patch("/api/settings", json={"openai_model": "gpt-4o-mini"}, headers=headers)
    assert r.status_code == 403
    assert r.json()["detail"] == "Insufficient permissions"
    assert client.get("/api/settings", headers=headers).status_code == 200


def test_admin_manages_users():
    headers = admin_headers(client)
    r = client.post(
        "/api/users",
        json={"username": "crew", "password": "secret123", "display_name": "crew lead"},
        headers=headers,
    )
    assert r.status_code == 201
    crew_id = r.json()["id"]

    dup = client.post(
        "/api/users",
        json={"username": "crew", "password": "secret123", "display_name": "Other"},
        headers=headers,
    )
    assert dup.status_code == 400

    r = client.patch(f"/api/users/{crew_id}", json={"password": "changed99"}, headers=headers)
    assert r.status_code == 200
    login(client, "crew", "changed99")

    me = client.get("/api/auth/me", headers=headers).json()
    assert client.delete(f"/api/users/{me['id']}", headers=headers).status_code == 400
    assert client.delete(f"/api/users/{crew_id}", headers=headers).status_code == 204


def test_login_is_rate_limited(monkeypatch):
    monkeypatch.setattr(rate_limit, "rate_limiting_disabled", lambda: False)
    monkeypatch.setenv("PROJECTBOT_LOGIN_LIMIT", "2")
    create_account("dana")
    for _ in range(2):
        assert client.post("/api/auth/login", json={"username": "dana", "password": "x"}).status_code == 401
    r = client.post("/api/auth/login", json={"username": "dana", "password": "secret123"})
    assert r.status_code == 429
    assert int(r.headers["Retry-After"]) >= 1


def test_admin_seeded_from_environment(monkeypatch, storage):
    from src.projectbot.security.auth import ensure_admin_user

    monkeypatch.setenv("PROJECTBOT_ADMIN_USERNAME", "owner")
    monkeypatch.setenv("PROJECTBOT_ADMIN_PASSWORD", "start123")
    first = ensure_admin_user(storage)
    assert first.role == "admin"
    assert ensure_admin_user(storage).id == first.id
    login(client, "owner", "start123")
