from __future__ import annotations

from typing import Any
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from dgat.domain.enums import AssessmentStatus
from dgat.domain.models import Assessment, AssessmentCategory, AssessmentResponse, Report, SyncQueueEntry


async def get_assessment(
    session: AsyncSession, assessment_id: UUID, *, for_update: bool = False
) -> Assessment | None:
    stmt = select(Assessment).where(Assessment.assessment_id == assessment_id)
    if for_update:
        stmt = stmt.with_for_update()
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def list_assessments_by_user(session: AsyncSession, user_id: UUID) -> list[Assessment]:
    result = await session.execute(
        select(Assessment)
        .where(Assessment.user_id == user_id)
        .order_by(Assessment.created_at, Assessment.assessment_id)
    )
    return list(result.scalars().all())


async def create_assessment(
    session: AsyncSession,
    *,
    assessment_id: UUID,
    user_id: UUID,
    data: dict[str, Any],
    name: str | None,
    status: AssessmentStatus,
) -> Assessment:
    assessment = Assessment(
        assessment_id=assessment_id,
        user_id=user_id,
        data=data,
        name=name,
        status=status,
        version=1,
    )
    session.add(assessment)
    await session.flush()
    return assessment


async def delete_assessment_cascade(session: AsyncSession, assessment_id: UUID) -> bool:
    # Remove owned children explicitly so the cascade is visible in one transaction.
    await session.execute(delete(SyncQueueEntry).where(SyncQueueEntry.assessment_id == assessment_id))
    await session.execute(delete(Report).where(Report.assessment_id == assessment_id))
    await session.execute(delete(AssessmentResponse).where(AssessmentResponse.assessment_id == assessment_id))
    await session.execute(
        delete(AssessmentCategory).where(AssessmentCategory.assessment_id == assessment_id)
    )
    result = await session.execute(delete(Assessment).where(Assessment.assessment_id == assessment_id))
    return (result.rowcount or 0) > 0
