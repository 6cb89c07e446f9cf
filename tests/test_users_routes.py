"""
tests/test_users_routes.py -- Integration tests for the vendor-edit capability endpoint.

The vendor write route is the /vendors/probe route registered in conftest.py;
it is guarded by require_capability exactly like a real vendor write.

Covers:
  - Non-admin without a window is denied; admin is always allowed
  - Granting opens the window (default 5h), revoking closes it on the next request
  - /auth/me reflects the window
  - Non-admins cannot grant; unknown targets are 404; bad hours are 400
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from tests.conftest import bearer


@pytest.fixture(scope="module")
def clerk(api_client: tuple[TestClient, str, int]) -> tuple[int, str]:
    """Create a `user`-role account once per module and return (id, access token)."""
    client, admin_token, _uid = api_client
    created = client.post(
        "/auth/users",
        json={"username": "clerk", "password": "clerk-pass", "displayName": "Clerk", "role": "user"},
        headers=bearer(admin_token),
    )
    assert created.status_code == 201, created.text
    login = client.post("/auth/login", json={"username": "clerk", "password": "clerk-pass"})
    return created.json()["data"]["id"], login.json()["data"]["accessToken"]


def _grant(client: TestClient, admin_token: str, user_id: int, **body) -> dict:
    resp = client.post(f"/users/{user_id}/vendor-edit", json=body, headers=bearer(admin_token))
    assert resp.status_code == 200, resp.text
    return resp.json()["data"]


class TestVendorEditWindow:
    def test_denied_without_window(self, api_client, clerk) -> None:
        client, _token, _uid = api_client
        _clerk_id, clerk_token = clerk
        resp = client.post("/vendors/probe", headers=bearer(clerk_token))
        assert resp.status_code == 403
        assert resp.json()["success"] is False

    def test_admin_always_allowed(self, api_client) -> None:
        client, admin_token, _uid = api_client
        resp = client.post("/vendors/probe", headers=bearer(admin_token))
        assert resp.status_code == 200
        assert resp.json()["data"]["editedBy"] == "testadmin"

    def test_grant_then_revoke(self, api_client, clerk) -> None:
        client, admin_token, _uid = api_client
        clerk_id, clerk_token = clerk

        before = datetime.now(timezone.utc)
        window = _grant(client, admin_token, clerk_id, enable=True)
        assert window["enabled"] is True
        assert window["active"] is True
        expires_at = datetime.fromisoformat(window["expiresAt"].replace("Z", "+00:00"))
        assert before + timedelta(hours=5) - timedelta(minutes=1) <= expires_at
        assert expires_at <= datetime.now(timezone.utc) + timedelta(hours=5)

        allowed = client.post("/vendors/probe", headers=bearer(clerk_token))
        assert allowed.status_code == 200
        assert allowed.json()["data"]["editedBy"] == "clerk"

        # Same access token: the window is re-read on every request.
        revoked = _grant(client, admin_token, clerk_id, enable=False)
        assert revoked["enabled"] is False
        assert "expiresAt" not in revoked or revoked["expiresAt"] is None
        assert client.post("/vendors/probe", headers=bearer(clerk_token)).status_code == 403

    def test_custom_hours(self, api_client, clerk) -> None:
        client, admin_token, _uid = api_client
        clerk_id, _clerk_token = clerk
        window = _grant(client, admin_token, clerk_id, enable=True, hours=1)
        expires_at = datetime.fromisoformat(window["expiresAt"].replace("Z", "+00:00"))
        assert expires_at <= datetime.now(timezone.utc) + timedelta(hours=1)
        _grant(client, admin_token, clerk_id, enable=False)

    def test_me_shows_window(self, api_client, clerk) -> None:
        client, admin_token, _uid = api_client
        clerk_id, clerk_token = clerk
        _grant(client, admin_token, clerk_id, enable=True, hours=2)
        me = client.get("/auth/me", headers=bearer(clerk_token)).json()["data"]
        assert me["capabilityWindow"]["enabled"] is True
        assert me["capabilityWindow"]["active"] is True
        _grant(client, admin_token, clerk_id, enable=False)


class TestGrantErrors:
    def test_non_admin_cannot_grant(self, api_client, clerk) -> None:
        client, _token, _uid = api_client
        clerk_id, clerk_token = clerk
        resp = client.post(f"/users/{clerk_id}/vendor-edit", json={"enable": True}, headers=bearer(clerk_token))
        assert resp.status_code == 403

    def test_unknown_user(self, api_client) -> None:
        client, admin_token, _uid = api_client
        resp = client.post("/users/99999/vendor-edit", json={"enable": True}, headers=bearer(admin_token))
        assert resp.status_code == 404

    @pytest.mark.parametrize("hours", [0, -2])
    def test_non_positive_hours(self, api_client, clerk, hours: float) -> None:
        client, admin_token, _uid = api_client
        clerk_id, _clerk_token = clerk
        resp = client.post(
            f"/users/{clerk_id}/vendor-edit",
            json={"enable": True, "hours": hours},
            headers=bearer(admin_token),
        )
        assert resp.status_code == 400
        assert resp.json()["errors"][0]["field"] == "hours"

    def test_missing_enable(self, api_client, clerk) -> None:
        client, admin_token, _uid = api_client
        clerk_id, _clerk_token = clerk
        resp = client.post(f"/users/{clerk_id}/vendor-edit", json={}, headers=bearer(admin_token))
        assert resp.status_code == 400

    def test_requires_token(self, api_client, clerk) -> None:
        client, _token, _uid = api_client
        clerk_id, _clerk_token = clerk
        assert client.post(f"/users/{clerk_id}/vendor-edit", json={"enable": True}).status_code == 401
