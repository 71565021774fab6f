from __future__ import annotations

from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from dgat.domain.models import AssessmentResponse


async def get_response(session: AsyncSession, response_id: UUID) -> AssessmentResponse | None:
    result = await session.execute(select(AssessmentResponse).where(AssessmentResponse.response_id == response_id))
    return result.scalar_one_or_none()


async def list_responses_by_assessment(session: AsyncSession, assessment_id: UUID) -> list[AssessmentResponse]:
    result = await session.execute(
        select(AssessmentResponse)
        .where(AssessmentResponse.assessment_id == assessment_id)
        .order_by(AssessmentResponse.question_revision_id, AssessmentResponse.version)
    )
    return list(result.scalars().all())


async def list_latest_responses(session: AsyncSession, assessment_id: UUID) -> list[AssessmentResponse]:
    # Highest version per question revision.
    result = await session.execute(
        select(AssessmentResponse)
        .where(AssessmentResponse.assessment_id == assessment_id)
        .distinct(AssessmentResponse.question_revision_id)
        .order_by(AssessmentResponse.question_revision_id, AssessmentResponse.version.desc())
    )
    return list(result.scalars().all())


async def latest_version(session: AsyncSession, *, assessment_id: UUID, question_revision_id: UUID) -> int:
    result = await session.execute(
        select(func.max(AssessmentResponse.version)).where(
            AssessmentResponse.assessment_id == assessment_id,
            AssessmentResponse.question_revision_id == question_revision_id,
        )
    )
    return result.scalar() or 0


async def create_response(
    session: AsyncSession,
    *,
    response_id: UUID,
    assessment_id: UUID,
    question_revision_id: UUID,
    response: str,
    version: int,
) -> AssessmentResponse:
    row = AssessmentResponse(
        response_id=response_id,
        assessment_id=assessment_id,
        question_revision_id=question_revision_id,
        response=response,
        version=version,
    )
    session.add(row)
    await session.flush()
    return row


async def delete_response(session: AsyncSession, response_id: UUID) -> bool:
    result = await session.execute(delete(AssessmentResponse).where(AssessmentResponse.response_id == response_id))
    return (result.rowcount or 0) > 0
