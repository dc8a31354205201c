from __future__ import annotations

from fastapi.testclient import TestClient


def test_healthz_is_public(client: TestClient) -> None:
    assert client.get("/healthz").json() == {"status": "ok"}


def test_requests_without_token_are_unauthorized(client: TestClient) -> None:
    assert client.get("/auth/me").status_code == 401
    assert client.get("/team/active").status_code == 401
    response = client.get("/time-entries", headers={"Authorization": "Bearer not-a-token"})
    assert response.status_code == 401
    assert response.json() == {"detail": "Unauthorized"}


def test_login_me_and_logout(client: TestClient, member) -> None:
    bad = client.post("/auth/login", json={"email": "max@example.com", "password": "wrong"})
    assert bad.status_code == 401

    login = client.post("/auth/login", json={"email": " MAX@example.com ", "password": "secret-member"})
    assert login.status_code == 200
    body = login.json()
    assert body["user"]["role"] == "member"
    assert "password_hash" not in body["user"]
    headers = {"Authorization": f"Bearer {body['token']}"}

    me = client.get("/auth/me", headers=headers)
    assert me.json()["email"] == "max@example.com"
    assert me.json()["created_at"].endswith("+00:00")

    assert client.post("/auth/logout", headers=headers).status_code == 204
    assert client.get("/auth/me", headers=headers).status_code == 401


def test_change_password(client: TestClient, member, member_headers) -> None:
    wrong = client.post(
        "/auth/change-password",
        json={"current_password": "nope", "new_password": "brand-new"},
        headers=member_headers,
    )
    assert wrong.status_code == 400

    too_short = client.post(
        "/auth/change-password",
        json={"current_password": "secret-member", "new_password": "abc"},
        headers=member_headers,
    )
    assert too_short.status_code == 400

    changed = client.post(
        "/auth/change-password",
        json={"current_password": "secret-member", "new_password": "brand-new"},
        headers=member_headers,
    )
    assert changed.status_code == 204
    assert client.post("/auth/login", json={"email": "max@example.com", "password": "brand-new"}).status_code == 200
    assert client.post("/auth/login", json={"email": "max@example.com", "password": "secret-member"}).status_code == 401


def test_user_management_is_admin_only(client: TestClient, member_headers) -> None:
    assert client.get("/users", headers=member_headers).status_code == 403
    response = client.post(
        "/users", json={"name": "Eve", "email": "eve@example.com", "password": "secret1"}, headers=member_headers
    )
    assert response.status_code == 403
    assert response.json() == {"detail": "Admin access required"}


def test_admin_creates_and_manages_users(client: TestClient, admin_headers) -> None:
    created = client.post(
        "/users",
        json={"name": "Eve Example", "email": "Eve@Example.com", "password": "secret1"},
        headers=admin_headers,
    )
    assert created.status_code == 201
    user = created.json()
    assert user["email"] == "eve@example.com"
    assert user["role"] == "member"

    duplicate = client.post(
        "/users",
        json={"name": "Eve Again", "email": "eve@example.com", "password": "secret1"},
        headers=admin_headers,
    )
    assert duplicate.status_code == 409

    promoted = client.patch(f"/users/{user['id']}", json={"role": "admin"}, headers=admin_headers)
    assert promoted.json()["role"] == "admin"

    reset = client.put(f"/users/{user['id']}/password", json={"password": "another1"}, headers=admin_headers)
    assert reset.status_code == 204
    assert client.post("/auth/login", json={"email": "eve@example.com", "password": "another1"}).status_code == 200

    assert client.delete(f"/users/{user['id']}", headers=admin_headers).status_code == 204
    emails = [item["email"] for item in client.get("/users", headers=admin_headers).json()]
    assert "eve@example.com" not in emails


def test_user_creation_validation(client: TestClient, admin_headers) -> None:
    missing = client.post("/users", json={"name": "No Mail", "password": "secret1"}, headers=admin_headers)
    assert missing.status_code == 400

    short = client.post(
        "/users", json={"name": "Short", "email": "short@example.com", "password": "abc"}, headers=admin_headers
    )
    assert short.status_code == 400

    bad_role = client.post(
        "/users",
        json={"name": "Root", "email": "root@example.com", "password": "secret1", "role": "owner"},
        headers=admin_headers,
    )
    assert bad_role.status_code == 422


def test_admin_cannot_delete_self(client: TestClient, admin, admin_headers) -> None:
    response = client.delete(f"/users/{admin.id}", headers=admin_headers)
    assert response.status_code == 400


def test_deleting_a_user_removes_their_data(
    client: TestClient, member, admin_headers, member_headers, categories
) -> None:
    client.post(
        "/time-entries",
        json={"category_id": categories["Development"], "start_time": "2024-03-05T09:00:00", "duration": 60},
        headers=member_headers,
    )
    client.post("/team/active", json={"category_id": categories["Development"]}, headers=member_headers)
    member_id = member.id

    assert client.delete(f"/users/{member_id}", headers=admin_headers).status_code == 204
    assert client.get("/team/active", headers=admin_headers).json() == []
    assert client.get("/team/entries", headers=admin_headers).json() == []
    assert client.get("/auth/me", headers=member_headers).status_code == 401
