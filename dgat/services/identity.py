from __future__ import annotations

import logging
import time
from typing import Any, Protocol
from uuid import UUID

import httpx

from dgat.core.config import Settings, get_settings
from dgat.core.errors import ExternalIdentityError, PreconditionFailedError, ValidationFailedError
from dgat.domain.enums import UserRole
from dgat.domain.models import Organization, User
from dgat.persistence.db import Database
from dgat.services.base import DeleteOutcome
from dgat.services.organizations import OrganizationService
from dgat.services.users import UserService


logger = logging.getLogger(__name__)

# Refresh the admin token a little before Keycloak expires it.
_TOKEN_SKEW_S = 30


class IdentityProvider(Protocol):
    async def create_organization(self, name: str, country: str | None) -> str: ...

    async def create_user(
        self,
        *,
        username: str,
        email: str,
        first_name: str | None,
        last_name: str | None,
        password: str | None,
        external_org_id: str,
        role: UserRole,
        group_id: str | None = None,
    ) -> str: ...

    async def assign_role(self, external_user_id: str, role: UserRole) -> None: ...

    async def delete_user(self, external_user_id: str) -> None: ...


class KeycloakAdminClient:
    """Keycloak admin REST client authenticated with client credentials."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = settings or get_settings()
        missing = [
            name
            for name in ("keycloak_url", "keycloak_realm", "keycloak_client_id", "keycloak_client_secret")
            if not getattr(settings, name)
        ]
        if missing:
            raise ExternalIdentityError(f"identity provider not configured: {', '.join(missing)} unset")
        self.base_url = settings.keycloak_url.rstrip("/")
        self.realm = settings.keycloak_realm
        self.client_id = settings.keycloak_client_id
        self.client_secret = settings.keycloak_client_secret
        self.timeout = settings.ext_call_timeout_ms / 1000
        self._transport = transport
        self._token: str | None = None
        self._token_expires_at = 0.0

    @property
    def admin_url(self) -> str:
        return f"{self.base_url}/admin/realms/{self.realm}"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    async def _access_token(self) -> str:
        if self._token and time.monotonic() < self._token_expires_at:
            return self._token
        payload = {
            "grant_type": "client_credentials",
            "client_id": self.client_id,
            "client_secret": self.client_secret,
        }
        url = f"{self.base_url}/realms/{self.realm}/protocol/openid-connect/token"
        try:
            async with self._client() as client:
                response = await client.post(url, data=payload)
        except httpx.HTTPError as exc:
            raise ExternalIdentityError(f"keycloak token request failed: {exc}") from exc
        if response.status_code >= 400:
            logger.warning("keycloak_token_failed status=%s", response.status_code)
            raise ExternalIdentityError(f"keycloak token request failed with status {response.status_code}")
        body = response.json()
        token = body.get("access_token")
        if not token:
            raise ExternalIdentityError("keycloak token response missing access_token")
        self._token = token
        self._token_expires_at = time.monotonic() + max(int(body.get("expires_in") or 60) - _TOKEN_SKEW_S, 1)
        return token

    async def _request(
        self, method: str, path: str, *, json: Any = None, expected: tuple[int, ...] = (200, 201, 204)
    ) -> httpx.Response:
        token = await self._access_token()
        try:
            async with self._client() as client:
                response = await client.request(
                    method,
                    f"{self.admin_url}{path}",
                    json=json,
                    headers={"Authorization": f"Bearer {token}"},
                )
        except httpx.HTTPError as exc:
            raise ExternalIdentityError(f"keycloak {method} {path} failed: {exc}") from exc
        if response.status_code not in expected:
            logger.warning("keycloak_request_failed method=%s path=%s status=%s", method, path, response.status_code)
            raise ExternalIdentityError(
                f"keycloak {method} {path} returned {response.status_code}: {response.text[:200]}"
            )
        return response

    @staticmethod
    def _created_id(response: httpx.Response) -> str:
        # Keycloak answers 201 with the new resource URL in Location.
        location = response.headers.get("location", "")
        resource_id = location.rstrip("/").rsplit("/", 1)[-1]
        if not resource_id:
            raise ExternalIdentityError("keycloak create response missing Location header")
        return resource_id

    async def create_organization(self, name: str, country: str | None) -> str:
        payload: dict[str, Any] = {"name": name, "enabled": True}
        if country:
            payload["attributes"] = {"country": [country]}
        response = await self._request("POST", "/organizations", json=payload, expected=(201,))
        org_id = self._created_id(response)
        logger.info("keycloak_organization_created external_org_id=%s", org_id)
        return org_id

    async def create_user(
        self,
        *,
        username: str,
        email: str,
        first_name: str | None,
        last_name: str | None,
        password: str | None,
        external_org_id: str,
        role: UserRole,
        group_id: str | None = None,
    ) -> str:
        payload: dict[str, Any] = {
            "username": username,
            "email": email,
            "enabled": True,
            "emailVerified": False,
            "attributes": {"organization_id": [external_org_id], "role": [role.value]},
        }
        if first_name:
            payload["firstName"] = first_name
        if last_name:
            payload["lastName"] = last_name
        if password:
            payload["credentials"] = [{"type": "password", "value": password, "temporary": True}]
        response = await self._request("POST", "/users", json=payload, expected=(201,))
        user_id = self._created_id(response)
        try:
            await self._request("POST", f"/organizations/{external_org_id}/members", json=user_id)
            if group_id:
                await self._request("PUT", f"/users/{user_id}/groups/{group_id}")
        except ExternalIdentityError:
            # A half-provisioned account is removed again.
            await self.delete_user(user_id)
            raise
        logger.info("keycloak_user_created external_user_id=%s", user_id)
        return user_id

    async def assign_role(self, external_user_id: str, role: UserRole) -> None:
        response = await self._request("GET", f"/roles/{role.value}", expected=(200,))
        representation = response.json()
        await self._request(
            "POST", f"/users/{external_user_id}/role-mappings/realm", json=[representation]
        )

    async def delete_user(self, external_user_id: str) -> None:
        # A missing account is already tombstoned.
        await self._request("DELETE", f"/users/{external_user_id}", expected=(204, 404))
        logger.info("keycloak_user_deleted external_user_id=%s", external_user_id)


class IdentityProvisioningService:
    """Keeps organization and user rows in lockstep with the identity provider.

    The provider is called first. When the database write then fails, the
    provider account is deleted again so no orphaned login remains.
    """

    def __init__(self, db: Database, idp: IdentityProvider) -> None:
        self.idp = idp
        self.organizations = OrganizationService(db)
        self.users = UserService(db)

    async def provision_organization(
        self, *, name: str, country: str | None = None, description: str | None = None
    ) -> Organization:
        external_org_id = await self.idp.create_organization(name, country)
        try:
            return await self.organizations.create(
                name=name, description=description, country=country, external_org_id=external_org_id
            )
        except Exception:
            logger.error("organization_provision_orphaned external_org_id=%s", external_org_id)
            raise

    async def provision_user(
        self,
        *,
        organization_id: UUID,
        username: str,
        email: str,
        role: UserRole | str,
        first_name: str | None = None,
        last_name: str | None = None,
        password: str | None = None,
        group_id: str | None = None,
    ) -> User:
        try:
            role = UserRole(role)
        except ValueError as exc:
            raise ValidationFailedError(f"{role!r} is not a valid role") from exc
        org = await self.organizations.find_by_id(organization_id)
        if org is None:
            raise PreconditionFailedError(f"organization {organization_id} does not exist")
        if not org.external_org_id:
            raise PreconditionFailedError(f"organization {organization_id} is not provisioned in the identity provider")
        external_user_id = await self.idp.create_user(
            username=username,
            email=email,
            first_name=first_name,
            last_name=last_name,
            password=password,
            external_org_id=org.external_org_id,
            role=role,
            group_id=group_id,
        )
        try:
            await self.idp.assign_role(external_user_id, role)
            return await self.users.create(
                external_identity_id=external_user_id, organization_id=organization_id, role=role
            )
        except Exception:
            logger.warning("user_provision_rollback external_user_id=%s", external_user_id)
            await self.idp.delete_user(external_user_id)
            raise

    async def delete_user(self, user_id: UUID) -> DeleteOutcome:
        user = await self.users.find_by_id(user_id)
        if user is None:
            return DeleteOutcome.NOT_FOUND
        # External identity is tombstoned before the row goes.
        await self.idp.delete_user(user.external_identity_id)
        return await self.users.delete(user_id)
