from __future__ import annotations

from uuid import UUID

from sqlalchemy import delete, exists, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from dgat.domain.models import AssessmentCategory, CategoryCatalog


async def get_catalog_entry(
    session: AsyncSession, category_catalog_id: UUID, *, for_share: bool = False
) -> CategoryCatalog | None:
    stmt = select(CategoryCatalog).where(CategoryCatalog.category_catalog_id == category_catalog_id)
    if for_share:
        # Hold the row against concurrent deactivation while a link is written.
        stmt = stmt.with_for_update(read=True)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def list_active_entries(session: AsyncSession) -> list[CategoryCatalog]:
    result = await session.execute(
        select(CategoryCatalog)
        .where(CategoryCatalog.is_active.is_(True))
        .order_by(CategoryCatalog.name, CategoryCatalog.category_catalog_id)
    )
    return list(result.scalars().all())


async def list_entries_by_template(session: AsyncSession, template_id: str) -> list[CategoryCatalog]:
    result = await session.execute(
        select(CategoryCatalog)
        .where(CategoryCatalog.template_id == template_id, CategoryCatalog.is_active.is_(True))
        .order_by(CategoryCatalog.name, CategoryCatalog.category_catalog_id)
    )
    return list(result.scalars().all())


async def create_catalog_entry(
    session: AsyncSession,
    *,
    category_catalog_id: UUID,
    name: str,
    description: str | None,
    template_id: str,
    is_active: bool,
) -> CategoryCatalog:
    entry = CategoryCatalog(
        category_catalog_id=category_catalog_id,
        name=name,
        description=description,
        template_id=template_id,
        is_active=is_active,
    )
    session.add(entry)
    await session.flush()
    return entry


async def is_linked(session: AsyncSession, category_catalog_id: UUID) -> bool:
    result = await session.execute(
        select(exists().where(AssessmentCategory.category_catalog_id == category_catalog_id))
    )
    return bool(result.scalar())


async def delete_catalog_entry(session: AsyncSession, category_catalog_id: UUID) -> bool:
    result = await session.execute(
        delete(CategoryCatalog).where(CategoryCatalog.category_catalog_id == category_catalog_id)
    )
    return (result.rowcount or 0) > 0


async def link(session: AsyncSession, assessment_id: UUID, category_catalog_id: UUID) -> bool:
    # Composite primary key makes re-linking a no-op; returns whether a row was added.
    stmt = insert(AssessmentCategory).values(
        assessment_id=assessment_id, category_catalog_id=category_catalog_id
    )
    stmt = stmt.on_conflict_do_nothing(
        index_elements=[AssessmentCategory.assessment_id, AssessmentCategory.category_catalog_id]
    )
    result = await session.execute(stmt)
    return (result.rowcount or 0) > 0


async def unlink(session: AsyncSession, assessment_id: UUID, category_catalog_id: UUID) -> bool:
    result = await session.execute(
        delete(AssessmentCategory).where(
            AssessmentCategory.assessment_id == assessment_id,
            AssessmentCategory.category_catalog_id == category_catalog_id,
        )
    )
    return (result.rowcount or 0) > 0


async def list_linked_entries(session: AsyncSession, assessment_id: UUID) -> list[CategoryCatalog]:
    result = await session.execute(
        select(CategoryCatalog)
        .join(
            AssessmentCategory,
            AssessmentCategory.category_catalog_id == CategoryCatalog.category_catalog_id,
        )
        .where(AssessmentCategory.assessment_id == assessment_id)
        .order_by(CategoryCatalog.name, CategoryCatalog.category_catalog_id)
    )
    return list(result.scalars().all())
