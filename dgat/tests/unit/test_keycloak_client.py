from __future__ import annotations

import json

import httpx
import pytest

from dgat.core.config import Settings
from dgat.core.errors import ExternalIdentityError
from dgat.domain.enums import UserRole
from dgat.services.identity import KeycloakAdminClient


BASE = "https://idp.example.test"
ADMIN = f"{BASE}/admin/realms/dgat"


def _settings(**overrides) -> Settings:
    values = {
        "database_url": "postgresql://localhost/dgat",
        "keycloak_url": BASE,
        "keycloak_realm": "dgat",
        "keycloak_client_id": "dgat-backend",
        "keycloak_client_secret": "s3cret",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


class FakeKeycloak:
    # Records requests and answers like the Keycloak admin API.
    def __init__(self, *, fail_membership: bool = False) -> None:
        self.requests: list[httpx.Request] = []
        self.token_requests = 0
        self.fail_membership = fail_membership

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path.endswith("/protocol/openid-connect/token"):
            self.token_requests += 1
            return httpx.Response(200, json={"access_token": "tok", "expires_in": 300})
        assert request.headers["Authorization"] == "Bearer tok"
        if request.method == "POST" and path == "/admin/realms/dgat/organizations":
            return httpx.Response(201, headers={"Location": f"{ADMIN}/organizations/org-123"})
        if request.method == "POST" and path == "/admin/realms/dgat/users":
            return httpx.Response(201, headers={"Location": f"{ADMIN}/users/user-456"})
        if path.endswith("/members"):
            return httpx.Response(409 if self.fail_membership else 201)
        if request.method == "GET" and path == "/admin/realms/dgat/roles/Manager":
            return httpx.Response(200, json={"id": "role-1", "name": "Manager"})
        if path.endswith("/role-mappings/realm"):
            return httpx.Response(204)
        if request.method == "DELETE" and path.startswith("/admin/realms/dgat/users/"):
            return httpx.Response(404 if path.endswith("gone") else 204)
        return httpx.Response(500)

    def calls(self) -> list[tuple[str, str]]:
        return [(request.method, request.url.path) for request in self.requests]


def _client(fake: FakeKeycloak) -> KeycloakAdminClient:
    return KeycloakAdminClient(_settings(), transport=httpx.MockTransport(fake))


def test_client_requires_configuration() -> None:
    with pytest.raises(ExternalIdentityError, match="keycloak_client_secret"):
        KeycloakAdminClient(_settings(keycloak_client_secret=None))


@pytest.mark.asyncio
async def test_create_organization_returns_location_id_and_reuses_token() -> None:
    fake = FakeKeycloak()
    client = _client(fake)

    assert await client.create_organization("Acme", "LU") == "org-123"
    assert await client.create_organization("Beta", None) == "org-123"
    assert fake.token_requests == 1
    payload = json.loads(fake.requests[1].content)
    assert payload["attributes"] == {"country": ["LU"]}


@pytest.mark.asyncio
async def test_create_user_joins_organization() -> None:
    fake = FakeKeycloak()
    client = _client(fake)

    user_id = await client.create_user(
        username="ana",
        email="ana@example.test",
        first_name="Ana",
        last_name=None,
        password="pw",
        external_org_id="org-123",
        role=UserRole.MANAGER,
    )

    assert user_id == "user-456"
    assert ("POST", "/admin/realms/dgat/organizations/org-123/members") in fake.calls()
    created = json.loads(fake.requests[1].content)
    assert created["firstName"] == "Ana"
    assert "lastName" not in created
    assert created["attributes"]["role"] == ["Manager"]


@pytest.mark.asyncio
async def test_create_user_removes_account_when_membership_fails() -> None:
    fake = FakeKeycloak(fail_membership=True)
    client = _client(fake)

    with pytest.raises(ExternalIdentityError):
        await client.create_user(
            username="ana",
            email="ana@example.test",
            first_name=None,
            last_name=None,
            password=None,
            external_org_id="org-123",
            role=UserRole.VIEWER,
        )
    assert fake.calls()[-1] == ("DELETE", "/admin/realms/dgat/users/user-456")


@pytest.mark.asyncio
async def test_assign_role_posts_realm_role_representation() -> None:
    fake = FakeKeycloak()

    await _client(fake).assign_role("user-456", UserRole.MANAGER)

    mapping = fake.requests[-1]
    assert mapping.url.path == "/admin/realms/dgat/users/user-456/role-mappings/realm"
    assert json.loads(mapping.content) == [{"id": "role-1", "name": "Manager"}]


@pytest.mark.asyncio
async def test_delete_user_treats_missing_account_as_tombstoned() -> None:
    fake = FakeKeycloak()
    client = _client(fake)

    await client.delete_user("gone")
    await client.delete_user("user-456")


@pytest.mark.asyncio
async def test_errors_map_to_external_identity_error() -> None:
    def failing(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/token"):
            return httpx.Response(401)
        return httpx.Response(200)

    client = KeycloakAdminClient(_settings(), transport=httpx.MockTransport(failing))
    with pytest.raises(ExternalIdentityError, match="401"):
        await client.create_organization("Acme", None)


@pytest.mark.asyncio
async def test_transport_failures_map_to_external_identity_error() -> None:
    def unreachable(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = KeycloakAdminClient(_settings(), transport=httpx.MockTransport(unreachable))
    with pytest.raises(ExternalIdentityError):
        await client.assign_role("user-1", UserRole.ADMIN)
