from __future__ import annotations

import logging
import math
from typing import Any, Mapping
from uuid import UUID, uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from dgat.core.errors import PreconditionFailedError, ValidationFailedError
from dgat.domain.models import Question, QuestionRevision
from dgat.persistence.repos import questions as question_repo
from dgat.services.base import BaseService, DeleteOutcome


logger = logging.getLogger(__name__)


def validate_question(text: Any, weight: Any) -> None:
    if not isinstance(text, Mapping) or not text:
        raise ValidationFailedError("question text must map at least one language to a string")
    for language, value in text.items():
        if not isinstance(language, str) or not language or not isinstance(value, str):
            raise ValidationFailedError("question text must map language tags to strings")
    if isinstance(weight, bool) or not isinstance(weight, (int, float)) or math.isnan(weight):
        raise ValidationFailedError("question weight must be a number")
    if not 0.0 <= float(weight) <= 1.0:
        raise ValidationFailedError(f"question weight {weight} is outside [0, 1]")


class QuestionService(BaseService):
    """Questions are immutable once published; there is no update."""

    entity = "question"

    async def create(
        self,
        *,
        text: Mapping[str, str],
        category: str,
        weight: float,
        question_id: UUID | None = None,
        session: AsyncSession | None = None,
        deadline: float | None = None,
    ) -> Question:
        validate_question(text, weight)
        if not category:
            raise ValidationFailedError("question category must be non-empty")
        question_id = question_id or uuid4()

        async def work(s: AsyncSession) -> Question:
            question = await question_repo.create_question(
                s, question_id=question_id, text=dict(text), category=category, weight=float(weight)
            )
            logger.info("question_created question_id=%s category=%s", question_id, category)
            return question

        return await self._run(work, session=session, deadline=deadline, context="create question")

    async def find_by_id(
        self, question_id: UUID, *, session: AsyncSession | None = None, deadline: float | None = None
    ) -> Question | None:
        async def work(s: AsyncSession) -> Question | None:
            return await question_repo.get_question(s, question_id)

        return await self._run(work, session=session, deadline=deadline, context="find question")

    async def list_by_category(
        self, category: str, *, session: AsyncSession | None = None, deadline: float | None = None
    ) -> list[Question]:
        async def work(s: AsyncSession) -> list[Question]:
            return await question_repo.list_questions_by_category(s, category)

        return await self._run(work, session=session, deadline=deadline, context="list questions")

    async def delete(
        self, question_id: UUID, *, session: AsyncSession | None = None, deadline: float | None = None
    ) -> DeleteOutcome:
        async def work(s: AsyncSession) -> DeleteOutcome:
            if not await question_repo.delete_question(s, question_id):
                return DeleteOutcome.NOT_FOUND
            return DeleteOutcome.DELETED

        return await self._run(work, session=session, deadline=deadline, context="delete question")


class QuestionRevisionService(BaseService):
    """Rewording a question publishes a new revision; responses keep the one they answered."""

    entity = "question revision"

    async def create(
        self,
        question_id: UUID,
        *,
        text: Mapping[str, str],
        weight: float,
        question_revision_id: UUID | None = None,
        session: AsyncSession | None = None,
        deadline: float | None = None,
    ) -> QuestionRevision:
        validate_question(text, weight)
        question_revision_id = question_revision_id or uuid4()

        async def work(s: AsyncSession) -> QuestionRevision:
            if await question_repo.get_question(s, question_id) is None:
                raise PreconditionFailedError(f"question {question_id} does not exist")
            revision = await question_repo.create_revision(
                s,
                question_revision_id=question_revision_id,
                question_id=question_id,
                text=dict(text),
                weight=float(weight),
            )
            logger.info(
                "question_revision_created question_revision_id=%s question_id=%s",
                question_revision_id,
                question_id,
            )
            return revision

        return await self._run(work, session=session, deadline=deadline, context="create question revision")

    async def find_by_id(
        self, question_revision_id: UUID, *, session: AsyncSession | None = None, deadline: float | None = None
    ) -> QuestionRevision | None:
        async def work(s: AsyncSession) -> QuestionRevision | None:
            return await question_repo.get_revision(s, question_revision_id)

        return await self._run(work, session=session, deadline=deadline, context="find question revision")

    async def list_by_question(
        self, question_id: UUID, *, session: AsyncSession | None = None, deadline: float | None = None
    ) -> list[QuestionRevision]:
        async def work(s: AsyncSession) -> list[QuestionRevision]:
            return await question_repo.list_revisions_by_question(s, question_id)

        return await self._run(work, session=session, deadline=deadline, context="list question revisions")

    async def latest_by_question(
        self, question_id: UUID, *, session: AsyncSession | None = None, deadline: float | None = None
    ) -> QuestionRevision | None:
        async def work(s: AsyncSession) -> QuestionRevision | None:
            return await question_repo.get_latest_revision(s, question_id)

        return await self._run(work, session=session, deadline=deadline, context="find latest question revision")

    async def delete(
        self, question_revision_id: UUID, *, session: AsyncSession | None = None, deadline: float | None = None
    ) -> DeleteOutcome:
        # Revisions with recorded responses are kept: the foreign key refuses the delete.
        async def work(s: AsyncSession) -> DeleteOutcome:
            if not await question_repo.delete_revision(s, question_revision_id):
                return DeleteOutcome.NOT_FOUND
            return DeleteOutcome.DELETED

        return await self._run(work, session=session, deadline=deadline, context="delete question revision")
