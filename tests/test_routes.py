"""
End-to-end tests for the HTTP API.
"""

import asyncio
from urllib.parse import parse_qs, urlparse

import httpx
import pytest
from fastapi import Depends
from fastapi.testclient import TestClient

from elitefit.api.app import create_app
from elitefit.auth.dependencies import require_owner
from elitefit.auth.passwords import hash_password
from elitefit.config import Settings
from elitefit.core.models import Principal, PrincipalKind, Role
from elitefit.storage import InMemoryPrincipalStore

PASSWORD = "correct-horse-battery"


def google_handler(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/token":
        if "code=good-code" not in request.read().decode():
            return httpx.Response(400, json={"error": "invalid_grant"})
        return httpx.Response(200, json={"access_token": "google-access"})
    return httpx.Response(200, json={
        "id": "g-777",
        "email": "member@elitefit.com",
        "verified_email": True,
        "given_name": "Mia",
        "family_name": "Lopez",
    })


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def settings():
    return Settings(
        jwt_secret_key="route-test-secret",
        google_oauth_client_id="gid",
        google_oauth_client_secret="gsecret",
        sentry_dsn="",
    )


@pytest.fixture
def store():
    store = InMemoryPrincipalStore()
    principals = [
        Principal(id="cli_mia", kind=PrincipalKind.CLIENT, email="member@elitefit.com"),
        Principal(id="cli_other", kind=PrincipalKind.CLIENT, email="other@elitefit.com"),
        Principal(
            id="cli_scout",
            kind=PrincipalKind.CLIENT,
            email="scout@elitefit.com",
            permissions={"view_clients": True},
        ),
        Principal(id="usr_staff", kind=PrincipalKind.USER, email="staff@elitefit.com", role=Role.STAFF),
        Principal(id="usr_admin", kind=PrincipalKind.USER, email="admin@elitefit.com", role=Role.ADMIN),
    ]
    for principal in principals:
        principal.password_hash = hash_password(PASSWORD)
        asyncio.run(store.create(principal))
    return store


@pytest.fixture
def client(settings, store):
    app = create_app(settings, store=store, oauth_transport=httpx.MockTransport(google_handler))
    with TestClient(app) as client:
        yield client


def login(client, email, kind="client", password=PASSWORD):
    return client.post(f"/auth/login/{kind}", json={"email": email, "password": password})


def bearer(client, email, kind="client") -> dict:
    token = login(client, email, kind).json()["access_token"]
    return {"Authorization": f"Bearer {token}"}


def authorize_state(client, provider="google") -> str:
    url = client.get(f"/auth/{provider}/authorize").json()["authorize_url"]
    return parse_qs(urlparse(url).query)["state"][0]


# =============================================================================
# Login / Register
# =============================================================================


class TestLoginRoutes:
    def test_health(self, client):
        assert client.get("/health").json()["status"] == "healthy"

    def test_client_login(self, client):
        response = login(client, "member@elitefit.com")

        assert response.status_code == 200
        body = response.json()
        assert body["token_type"] == "bearer"
        assert body["access_token"]
        assert body["refresh_token"]

    def test_wrong_password(self, client):
        response = login(client, "member@elitefit.com", password="wrong-password")

        assert response.status_code == 401
        assert response.json()["detail"]["error"] == "INVALID_CREDENTIALS"

    def test_admin_endpoint_rejects_members(self, client):
        assert login(client, "member@elitefit.com", kind="admin").status_code == 401
        assert login(client, "admin@elitefit.com", kind="admin").status_code == 200

    def test_lockout(self, client):
        for _ in range(5):
            login(client, "member@elitefit.com", password="wrong-password")

        response = login(client, "member@elitefit.com")

        assert response.status_code == 423
        assert response.json()["detail"]["error"] == "ACCOUNT_LOCKED"

    def test_register(self, client):
        response = client.post("/auth/register", json={
            "email": "new@elitefit.com",
            "password": PASSWORD,
            "first_name": "New",
        })

        assert response.status_code == 200
        assert response.json()["principal"]["role"] == "member"
        assert login(client, "new@elitefit.com").status_code == 200

    def test_register_duplicate(self, client):
        response = client.post("/auth/register", json={
            "email": "member@elitefit.com",
            "password": PASSWORD,
        })

        assert response.status_code == 400

    def test_register_short_password(self, client):
        response = client.post("/auth/register", json={"email": "x@elitefit.com", "password": "short"})

        assert response.status_code == 422


# =============================================================================
# Session
# =============================================================================


class TestSessionRoutes:
    def test_me(self, client):
        response = client.get("/auth/me", headers=bearer(client, "staff@elitefit.com", "admin"))

        assert response.status_code == 200
        assert response.json()["role"] == "staff"
        assert "password_hash" not in response.json()

    def test_me_requires_token(self, client):
        assert client.get("/auth/me").status_code == 401

    def test_me_rejects_garbage(self, client):
        response = client.get("/auth/me", headers={"Authorization": "Bearer garbage"})

        assert response.status_code == 401

    def test_permissions(self, client):
        response = client.get("/auth/permissions", headers=bearer(client, "admin@elitefit.com", "admin"))

        body = response.json()
        assert body["role"] == "admin"
        assert "create_users" in body["effective"]

    def test_refresh(self, client):
        tokens = login(client, "member@elitefit.com").json()

        response = client.post("/auth/refresh", json={"refresh_token": tokens["refresh_token"]})

        assert response.status_code == 200
        headers = {"Authorization": f"Bearer {response.json()['access_token']}"}
        assert client.get("/auth/me", headers=headers).status_code == 200

    def test_logout_revokes(self, client):
        tokens = login(client, "member@elitefit.com").json()
        headers = {"Authorization": f"Bearer {tokens['access_token']}"}

        response = client.post("/auth/logout", json={"refresh_token": tokens["refresh_token"]}, headers=headers)

        assert response.status_code == 200
        assert client.get("/auth/me", headers=headers).status_code == 401
        refreshed = client.post("/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
        assert refreshed.status_code == 401
        assert refreshed.json()["detail"]["error"] == "TOKEN_REVOKED"

    def test_logout_without_token(self, client):
        assert client.post("/auth/logout").status_code == 200

    def test_no_expiry_hint_for_fresh_token(self, client):
        response = client.get("/auth/me", headers=bearer(client, "member@elitefit.com"))

        assert response.status_code == 200
        assert "X-Token-Expiring" not in response.headers

    def test_expiry_hint_for_short_lived_token(self, settings, store):
        settings = settings.model_copy(update={"jwt_access_token_expire_minutes": 10})
        app = create_app(settings, store=store)

        with TestClient(app) as client:
            response = client.get("/auth/me", headers=bearer(client, "member@elitefit.com"))

        assert response.status_code == 200
        assert response.headers["X-Token-Expiring"] == "true"
        assert response.headers["X-Token-Refresh-Suggested"] == "true"

    def test_change_password(self, client):
        headers = bearer(client, "member@elitefit.com")

        response = client.post("/auth/change-password", headers=headers, json={
            "current_password": PASSWORD,
            "new_password": "a-brand-new-password",
        })

        assert response.status_code == 200
        assert login(client, "member@elitefit.com", password="a-brand-new-password").status_code == 200


# =============================================================================
# Resources
# =============================================================================


class TestResourceRoutes:
    def test_member_checks_in(self, client):
        response = client.post("/members/cli_mia/check-in", headers=bearer(client, "member@elitefit.com"))

        assert response.status_code == 200
        assert response.json()["points"] == 10
        assert response.json()["total_check_ins"] == 1

    def test_member_cannot_check_in_someone_else(self, client):
        response = client.post("/members/cli_other/check-in", headers=bearer(client, "member@elitefit.com"))

        assert response.status_code == 403
        assert response.json()["detail"]["error"] == "FORBIDDEN"

    def test_admin_checks_in_anyone(self, client):
        response = client.post("/members/cli_other/check-in", headers=bearer(client, "admin@elitefit.com", "admin"))

        assert response.status_code == 200

    def test_staff_views_principal(self, client):
        response = client.get("/admin/principals/cli_mia", headers=bearer(client, "staff@elitefit.com", "admin"))

        assert response.status_code == 200
        assert response.json()["email"] == "member@elitefit.com"

    def test_member_cannot_view_principals(self, client):
        response = client.get("/admin/principals/cli_other", headers=bearer(client, "member@elitefit.com"))

        assert response.status_code == 403

    def test_members_are_kept_out_of_back_office_routes(self, client):
        response = client.get("/admin/principals/cli_mia", headers=bearer(client, "scout@elitefit.com"))

        assert response.status_code == 403
        assert response.json()["detail"]["error"] == "USER_TYPE_MISMATCH"

    def test_owner_check_without_path_parameter_denies(self, settings, store):
        app = create_app(settings, store=store)

        @app.get("/members/current/summary")
        async def summary(ctx=Depends(require_owner("member_id"))):
            return {"id": ctx.principal_id}

        with TestClient(app) as client:
            response = client.get("/members/current/summary", headers=bearer(client, "member@elitefit.com"))

        assert response.status_code == 403


# =============================================================================
# OAuth
# =============================================================================


class TestOAuthRoutes:
    def test_providers(self, client):
        assert client.get("/auth/providers").json() == {"providers": ["google"]}

    def test_unconfigured_provider(self, client):
        response = client.get("/auth/facebook/authorize")

        assert response.status_code == 503
        assert response.json()["detail"]["error"] == "PROVIDER_UNAVAILABLE"

    def test_full_flow_links_existing_member(self, client):
        response = client.post("/auth/google/callback", json={"code": "good-code", "state": authorize_state(client)})

        assert response.status_code == 200
        headers = {"Authorization": f"Bearer {response.json()['access_token']}"}
        me = client.get("/auth/me", headers=headers).json()
        assert me["id"] == "cli_mia"
        assert me["auth_provider"] == "google"

    def test_bad_state(self, client):
        response = client.post("/auth/google/callback", json={"code": "good-code", "state": "forged"})

        assert response.status_code == 400

    def test_missing_state(self, client):
        response = client.post("/auth/google/callback", json={"code": "good-code"})

        assert response.status_code == 400
        assert "access_token" not in response.json()

    def test_state_is_single_use(self, client):
        state = authorize_state(client)
        assert client.post("/auth/google/callback", json={"code": "good-code", "state": state}).status_code == 200

        replay = client.post("/auth/google/callback", json={"code": "good-code", "state": state})

        assert replay.status_code == 400

    def test_bad_code(self, client):
        response = client.post("/auth/google/callback", json={"code": "bad-code", "state": authorize_state(client)})

        assert response.status_code == 400
