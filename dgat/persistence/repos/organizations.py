from __future__ import annotations

from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from dgat.domain.models import Organization, User


async def get_organization(session: AsyncSession, org_id: UUID) -> Organization | None:
    result = await session.execute(select(Organization).where(Organization.org_id == org_id))
    return result.scalar_one_or_none()


async def list_organizations(session: AsyncSession) -> list[Organization]:
    # Stable ordering keeps listings deterministic.
    result = await session.execute(select(Organization).order_by(Organization.name, Organization.org_id))
    return list(result.scalars().all())


async def create_organization(
    session: AsyncSession,
    *,
    org_id: UUID,
    name: str,
    description: str | None,
    country: str | None,
    external_org_id: str | None,
) -> Organization:
    org = Organization(
        org_id=org_id,
        name=name,
        description=description,
        country=country,
        external_org_id=external_org_id,
    )
    session.add(org)
    await session.flush()
    return org


async def count_members(session: AsyncSession, org_id: UUID) -> int:
    result = await session.execute(
        select(func.count()).select_from(User).where(User.organization_id == org_id)
    )
    return int(result.scalar() or 0)


async def delete_organization(session: AsyncSession, org_id: UUID) -> bool:
    result = await session.execute(delete(Organization).where(Organization.org_id == org_id))
    return (result.rowcount or 0) > 0
