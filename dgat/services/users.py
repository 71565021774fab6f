from __future__ import annotations

import logging
from uuid import UUID, uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from dgat.core.errors import PreconditionFailedError, ValidationFailedError
from dgat.domain.enums import UserRole
from dgat.domain.models import User, utc_now
from dgat.persistence.repos import organizations as org_repo
from dgat.persistence.repos import users as user_repo
from dgat.persistence.repos.entities import find_by_id
from dgat.services.base import BaseService, DeleteOutcome


logger = logging.getLogger(__name__)


class UserService(BaseService):
    entity = "user"

    async def create(
        self,
        *,
        external_identity_id: str,
        organization_id: UUID,
        role: UserRole | str,
        user_id: UUID | None = None,
        session: AsyncSession | None = None,
        deadline: float | None = None,
    ) -> User:
        if not external_identity_id:
            raise ValidationFailedError("external_identity_id must be non-empty")
        role = _coerce_role(role)
        user_id = user_id or uuid4()

        async def work(s: AsyncSession) -> User:
            if await org_repo.get_organization(s, organization_id) is None:
                raise PreconditionFailedError(f"organization {organization_id} does not exist")
            user = await user_repo.create_user(
                s,
                user_id=user_id,
                external_identity_id=external_identity_id,
                organization_id=organization_id,
                role=role,
            )
            logger.info("user_created user_id=%s org_id=%s role=%s", user_id, organization_id, role.value)
            return user

        return await self._run(work, session=session, deadline=deadline, context="create user")

    async def find_by_id(
        self, user_id: UUID, *, session: AsyncSession | None = None, deadline: float | None = None
    ) -> User | None:
        async def work(s: AsyncSession) -> User | None:
            return await find_by_id(s, User, user_id)

        return await self._run(work, session=session, deadline=deadline, context="find user")

    async def find_by_external_identity(
        self, external_identity_id: str, *, session: AsyncSession | None = None, deadline: float | None = None
    ) -> User | None:
        async def work(s: AsyncSession) -> User | None:
            return await user_repo.get_user_by_external_identity(s, external_identity_id)

        return await self._run(work, session=session, deadline=deadline, context="find user")

    async def list_by_organization(
        self, organization_id: UUID, *, session: AsyncSession | None = None, deadline: float | None = None
    ) -> list[User]:
        async def work(s: AsyncSession) -> list[User]:
            return await user_repo.list_users_by_organization(s, organization_id)

        return await self._run(work, session=session, deadline=deadline, context="list users")

    async def update(
        self,
        user_id: UUID,
        *,
        role: UserRole | str | None = None,
        organization_id: UUID | None = None,
        session: AsyncSession | None = None,
        deadline: float | None = None,
    ) -> User:
        new_role = _coerce_role(role) if role is not None else None

        async def work(s: AsyncSession) -> User:
            user = self._require(await find_by_id(s, User, user_id, for_update=True), user_id)
            if organization_id is not None and organization_id != user.organization_id:
                if await org_repo.get_organization(s, organization_id) is None:
                    raise PreconditionFailedError(f"organization {organization_id} does not exist")
                user.organization_id = organization_id
            if new_role is not None:
                user.role = new_role
            user.updated_at = utc_now()
            await s.flush()
            return user

        return await self._run(work, session=session, deadline=deadline, context="update user")

    async def delete(
        self, user_id: UUID, *, session: AsyncSession | None = None, deadline: float | None = None
    ) -> DeleteOutcome:
        """Remove the user row; owned assessments and their children cascade.

        The identity-provider account is tombstoned by
        `IdentityProvisioningService.delete_user` before this runs.
        """

        async def work(s: AsyncSession) -> DeleteOutcome:
            if not await user_repo.delete_user(s, user_id):
                return DeleteOutcome.NOT_FOUND
            logger.info("user_deleted user_id=%s", user_id)
            return DeleteOutcome.DELETED

        return await self._run(work, session=session, deadline=deadline, context="delete user")


def _coerce_role(role: UserRole | str) -> UserRole:
    try:
        return UserRole(role)
    except ValueError as exc:
        raise ValidationFailedError(f"{role!r} is not a valid role") from exc
