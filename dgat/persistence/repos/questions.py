from __future__ import annotations

from typing import Any
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from dgat.domain.models import Question, QuestionRevision


async def get_question(session: AsyncSession, question_id: UUID) -> Question | None:
    result = await session.execute(select(Question).where(Question.question_id == question_id))
    return result.scalar_one_or_none()


async def list_questions_by_category(session: AsyncSession, category: str) -> list[Question]:
    result = await session.execute(
        select(Question).where(Question.category == category).order_by(Question.created_at, Question.question_id)
    )
    return list(result.scalars().all())


async def create_question(
    session: AsyncSession,
    *,
    question_id: UUID,
    text: dict[str, Any],
    category: str,
    weight: float,
) -> Question:
    question = Question(question_id=question_id, text=text, category=category, weight=weight)
    session.add(question)
    await session.flush()
    return question


async def delete_question(session: AsyncSession, question_id: UUID) -> bool:
    result = await session.execute(delete(Question).where(Question.question_id == question_id))
    return (result.rowcount or 0) > 0


async def get_revision(session: AsyncSession, question_revision_id: UUID) -> QuestionRevision | None:
    result = await session.execute(
        select(QuestionRevision).where(QuestionRevision.question_revision_id == question_revision_id)
    )
    return result.scalar_one_or_none()


async def list_revisions_by_question(session: AsyncSession, question_id: UUID) -> list[QuestionRevision]:
    result = await session.execute(
        select(QuestionRevision)
        .where(QuestionRevision.question_id == question_id)
        .order_by(QuestionRevision.created_at, QuestionRevision.question_revision_id)
    )
    return list(result.scalars().all())


async def get_latest_revision(session: AsyncSession, question_id: UUID) -> QuestionRevision | None:
    result = await session.execute(
        select(QuestionRevision)
        .where(QuestionRevision.question_id == question_id)
        .order_by(QuestionRevision.created_at.desc(), QuestionRevision.question_revision_id.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def create_revision(
    session: AsyncSession,
    *,
    question_revision_id: UUID,
    question_id: UUID,
    text: dict[str, Any],
    weight: float,
) -> QuestionRevision:
    revision = QuestionRevision(
        question_revision_id=question_revision_id, question_id=question_id, text=text, weight=weight
    )
    session.add(revision)
    await session.flush()
    return revision


async def delete_revision(session: AsyncSession, question_revision_id: UUID) -> bool:
    result = await session.execute(
        delete(QuestionRevision).where(QuestionRevision.question_revision_id == question_revision_id)
    )
    return (result.rowcount or 0) > 0
