"""
tests/test_session_gate.py -- Tests for the per-request session gate and role dependencies.

The gate is mounted on a small standalone app so the attached request state
can be inspected directly.

Covers:
  - Public whitelist and public read-only status prefixes
  - Missing, malformed, forged, expired and wrong-type tokens all give the same 401
  - Identity plus the legacy user_role / user_name fields on request.state
  - Client-supplied role headers are ignored and never rewritten
  - require_role / require_admin: 401 without identity, 403 for wrong role
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.testclient import TestClient

from auth.dependencies import require_admin, require_role
from auth.errors import AuthError
from auth.middleware import is_public, session_gate
from auth.models import ROLE_ADMIN, ROLE_USER, Identity
from auth.tokens import issue_access_token, issue_refresh_token

ADMIN = Identity(subject=1, role=ROLE_ADMIN, display_name="Boss", username="boss")
CLERK = Identity(subject=2, role=ROLE_USER, display_name="Clerk", username="clerk")


def _build_app() -> FastAPI:
    gated = FastAPI()
    gated.middleware("http")(session_gate)

    @gated.exception_handler(AuthError)
    async def _auth_error(request: Request, exc: AuthError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"success": False, "message": exc.message})

    @gated.get("/whoami")
    async def whoami(request: Request) -> dict:
        identity = request.state.identity
        return {
            "subject": identity.subject,
            "role": identity.role,
            "userRole": request.state.user_role,
            "userName": request.state.user_name,
            "headerRole": request.headers.get("x-user-role"),
        }

    @gated.get("/admin-only")
    async def admin_only(identity: Identity = Depends(require_admin)) -> dict:
        return {"ok": identity.username}

    @gated.get("/staff")
    async def staff(identity: Identity = Depends(require_role(ROLE_ADMIN, ROLE_USER))) -> dict:
        return {"ok": identity.username}

    @gated.get("/health")
    async def health() -> dict:
        return {"status": "healthy"}

    @gated.get("/maintenance")
    async def maintenance() -> dict:
        return {"status": "normal"}

    @gated.post("/maintenance/schedule")
    async def schedule() -> dict:
        return {"scheduled": True}

    return gated


@pytest.fixture(scope="module")
def gate_client() -> TestClient:
    with TestClient(_build_app()) as client:
        yield client


def _auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


class TestIsPublic:
    @pytest.mark.parametrize("path", ["/auth/login", "/auth/register", "/auth/refresh", "/health"])
    def test_whitelist(self, path: str) -> None:
        assert is_public("POST", path)

    @pytest.mark.parametrize("path", ["/maintenance", "/announcement"])
    def test_status_reads_are_public(self, path: str) -> None:
        assert is_public("GET", path)

    @pytest.mark.parametrize(
        "method,path",
        [
            ("POST", "/maintenance/schedule"),
            ("DELETE", "/announcement"),
            ("GET", "/auth/users"),
            ("POST", "/auth/change-password"),
            ("GET", "/auth/me"),
        ],
    )
    def test_everything_else_is_gated(self, method: str, path: str) -> None:
        assert not is_public(method, path)

    def test_preflight_passes(self) -> None:
        assert is_public("OPTIONS", "/auth/users")


class TestGate:
    def test_public_path_needs_no_token(self, gate_client: TestClient) -> None:
        assert gate_client.get("/health").status_code == 200
        assert gate_client.get("/maintenance").status_code == 200

    def test_public_prefix_does_not_cover_writes(self, gate_client: TestClient) -> None:
        assert gate_client.post("/maintenance/schedule").status_code == 401

    def test_valid_token_attaches_identity_and_legacy_fields(self, gate_client: TestClient) -> None:
        resp = gate_client.get("/whoami", headers=_auth(issue_access_token(CLERK)))
        assert resp.status_code == 200
        body = resp.json()
        assert body["subject"] == CLERK.subject
        assert body["role"] == ROLE_USER
        assert body["userRole"] == ROLE_USER
        assert body["userName"] == "clerk"

    def test_client_role_header_is_ignored_and_untouched(self, gate_client: TestClient) -> None:
        headers = {**_auth(issue_access_token(CLERK)), "X-User-Role": "admin"}
        body = gate_client.get("/whoami", headers=headers).json()
        assert body["userRole"] == ROLE_USER
        assert body["headerRole"] == "admin"

    @pytest.mark.parametrize(
        "headers",
        [
            {},
            {"Authorization": ""},
            {"Authorization": "Bearer"},
            {"Authorization": "Basic Ym9zczpwdw=="},
            {"Authorization": "Bearer not.a.token"},
        ],
    )
    def test_missing_or_malformed(self, gate_client: TestClient, headers: dict) -> None:
        resp = gate_client.get("/whoami", headers=headers)
        assert resp.status_code == 401
        assert resp.headers["www-authenticate"] == "Bearer"

    def test_rejections_share_one_message(self, gate_client: TestClient) -> None:
        expired = issue_access_token(CLERK, now=datetime.now(timezone.utc) - timedelta(days=1))
        refresh = issue_refresh_token(CLERK)
        token = issue_access_token(CLERK)
        head, _, sig = token.split(".")
        forged = f"{head}.{issue_access_token(ADMIN).split('.')[1]}.{sig}"

        messages = {
            gate_client.get("/whoami").json()["message"],
            gate_client.get("/whoami", headers=_auth(expired)).json()["message"],
            gate_client.get("/whoami", headers=_auth(refresh)).json()["message"],
            gate_client.get("/whoami", headers=_auth(forged)).json()["message"],
        }
        assert len(messages) == 1


class TestRoleDependencies:
    def test_admin_passes(self, gate_client: TestClient) -> None:
        resp = gate_client.get("/admin-only", headers=_auth(issue_access_token(ADMIN)))
        assert resp.status_code == 200
        assert resp.json() == {"ok": "boss"}

    def test_user_forbidden(self, gate_client: TestClient) -> None:
        resp = gate_client.get("/admin-only", headers=_auth(issue_access_token(CLERK)))
        assert resp.status_code == 403

    def test_no_token_unauthenticated(self, gate_client: TestClient) -> None:
        assert gate_client.get("/admin-only").status_code == 401

    def test_multi_role(self, gate_client: TestClient) -> None:
        resp = gate_client.get("/staff", headers=_auth(issue_access_token(CLERK)))
        assert resp.status_code == 200
