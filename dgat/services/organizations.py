from __future__ import annotations

import logging
from uuid import UUID, uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from dgat.core.errors import PreconditionFailedError, ValidationFailedError
from dgat.domain.models import Organization, utc_now
from dgat.persistence.repos import organizations as org_repo
from dgat.services.base import BaseService, DeleteOutcome


logger = logging.getLogger(__name__)

_UPDATABLE = frozenset({"name", "description", "country", "external_org_id"})


class OrganizationService(BaseService):
    entity = "organization"

    async def create(
        self,
        *,
        name: str,
        description: str | None = None,
        country: str | None = None,
        external_org_id: str | None = None,
        org_id: UUID | None = None,
        session: AsyncSession | None = None,
        deadline: float | None = None,
    ) -> Organization:
        if not name or not name.strip():
            raise ValidationFailedError("organization name must be non-empty")
        org_id = org_id or uuid4()

        async def work(s: AsyncSession) -> Organization:
            org = await org_repo.create_organization(
                s,
                org_id=org_id,
                name=name,
                description=description,
                country=country,
                external_org_id=external_org_id,
            )
            logger.info("organization_created org_id=%s", org_id)
            return org

        return await self._run(work, session=session, deadline=deadline, context="create organization")

    async def find_by_id(
        self, org_id: UUID, *, session: AsyncSession | None = None, deadline: float | None = None
    ) -> Organization | None:
        async def work(s: AsyncSession) -> Organization | None:
            return await org_repo.get_organization(s, org_id)

        return await self._run(work, session=session, deadline=deadline, context="find organization")

    async def list_all(
        self, *, session: AsyncSession | None = None, deadline: float | None = None
    ) -> list[Organization]:
        return await self._run(
            org_repo.list_organizations, session=session, deadline=deadline, context="list organizations"
        )

    async def update(
        self,
        org_id: UUID,
        *,
        session: AsyncSession | None = None,
        deadline: float | None = None,
        **changes: str | None,
    ) -> Organization:
        unknown = set(changes) - _UPDATABLE
        if unknown:
            raise ValidationFailedError(f"unknown organization fields: {', '.join(sorted(unknown))}")
        if "name" in changes and not (changes["name"] or "").strip():
            raise ValidationFailedError("organization name must be non-empty")

        async def work(s: AsyncSession) -> Organization:
            org = self._require(await org_repo.get_organization(s, org_id), org_id)
            for key, value in changes.items():
                setattr(org, key, value)
            org.updated_at = utc_now()
            await s.flush()
            return org

        return await self._run(work, session=session, deadline=deadline, context="update organization")

    async def delete(
        self, org_id: UUID, *, session: AsyncSession | None = None, deadline: float | None = None
    ) -> DeleteOutcome:
        async def work(s: AsyncSession) -> DeleteOutcome:
            members = await org_repo.count_members(s, org_id)
            if members:
                raise PreconditionFailedError(f"organization {org_id} still has {members} users")
            if not await org_repo.delete_organization(s, org_id):
                return DeleteOutcome.NOT_FOUND
            logger.info("organization_deleted org_id=%s", org_id)
            return DeleteOutcome.DELETED

        return await self._run(work, session=session, deadline=deadline, context="delete organization")
