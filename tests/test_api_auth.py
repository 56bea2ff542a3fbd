"""Integration tests for the /api/v1/auth endpoints."""

import uuid


def _email(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:8]}@test.de"


class TestRegister:
    async def test_register_success(self, client):
        resp = await client.post("/api/v1/auth/register", json={
            "email": _email("new"),
            "password": "testpassword123",
            "name": "New User",
        })
        assert resp.status_code == 201
        body = resp.json()
        assert body["success"] is True
        assert "access_token" in body["data"]
        assert body["data"]["token_type"] == "bearer"

    async def test_register_duplicate_email(self, client):
        payload = {
            "email": _email("dupe"),
            "password": "testpassword123",
            "name": "First",
        }
        resp1 = await client.post("/api/v1/auth/register", json=payload)
        assert resp1.status_code == 201

        resp2 = await client.post("/api/v1/auth/register", json=payload)
        assert resp2.status_code == 409
        assert resp2.json() == {
            "success": False,
            "message": "Email already registered",
            "code": "RESOURCE_ALREADY_EXISTS",
        }

    async def test_register_short_password(self, client):
        resp = await client.post("/api/v1/auth/register", json={
            "email": _email("short"),
            "password": "short",
            "name": "Test",
        })
        assert resp.status_code == 400
        body = resp.json()
        assert body["success"] is False
        assert body["code"] == "VALIDATION_ERROR"
        assert any(e["field"].endswith("password") for e in body["errors"])

    async def test_register_invalid_email(self, client):
        resp = await client.post("/api/v1/auth/register", json={
            "email": "not-an-email",
            "password": "testpassword123",
            "name": "Test",
        })
        assert resp.status_code == 400


class TestLogin:
    async def test_login_success(self, client, registered_user):
        resp = await client.post("/api/v1/auth/login", json={
            "email": registered_user["email"],
            "password": "testpassword123",
        })
        assert resp.status_code == 200
        assert "access_token" in resp.json()["data"]

    async def test_login_wrong_password(self, client, registered_user):
        resp = await client.post("/api/v1/auth/login", json={
            "email": registered_user["email"],
            "password": "wrong-password",
        })
        assert resp.status_code == 401
        assert resp.json()["code"] == "UNAUTHORIZED"

    async def test_login_unknown_email(self, client):
        resp = await client.post("/api/v1/auth/login", json={
            "email": _email("ghost"),
            "password": "testpassword123",
        })
        assert resp.status_code == 401


class TestMe:
    async def test_me(self, client, registered_user):
        resp = await client.get("/api/v1/auth/me", headers=registered_user["headers"])
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["id"] == registered_user["user_id"]
        assert data["email"] == registered_user["email"]
        assert data["is_virtual"] is False

    async def test_me_without_token(self, client):
        resp = await client.get("/api/v1/auth/me")
        assert resp.status_code == 401
        assert resp.json()["success"] is False

    async def test_me_with_invalid_token(self, client):
        resp = await client.get(
            "/api/v1/auth/me", headers={"Authorization": "Bearer invalid"},
        )
        assert resp.status_code == 401
        assert resp.json()["code"] == "UNAUTHORIZED"
