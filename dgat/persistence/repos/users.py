from __future__ import annotations

from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from dgat.domain.enums import UserRole
from dgat.domain.models import User


async def get_user(session: AsyncSession, user_id: UUID) -> User | None:
    result = await session.execute(select(User).where(User.user_id == user_id))
    return result.scalar_one_or_none()


async def get_user_by_external_identity(session: AsyncSession, external_identity_id: str) -> User | None:
    result = await session.execute(select(User).where(User.external_identity_id == external_identity_id))
    return result.scalar_one_or_none()


async def list_users_by_organization(session: AsyncSession, organization_id: UUID) -> list[User]:
    result = await session.execute(
        select(User).where(User.organization_id == organization_id).order_by(User.created_at, User.user_id)
    )
    return list(result.scalars().all())


async def create_user(
    session: AsyncSession,
    *,
    user_id: UUID,
    external_identity_id: str,
    organization_id: UUID,
    role: UserRole,
) -> User:
    user = User(
        user_id=user_id,
        external_identity_id=external_identity_id,
        organization_id=organization_id,
        role=role,
    )
    session.add(user)
    await session.flush()
    return user


async def delete_user(session: AsyncSession, user_id: UUID) -> bool:
    # Owned assessments, their reports and sync entries go with the user (ON DELETE CASCADE).
    result = await session.execute(delete(User).where(User.user_id == user_id))
    return (result.rowcount or 0) > 0
