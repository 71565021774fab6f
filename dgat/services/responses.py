"""Versioned answers to question revisions within an assessment.

Recording an answer never overwrites: it inserts the next version for the
(assessment, question revision) pair, so earlier answers stay readable.
"""

from __future__ import annotations

import logging
from uuid import UUID, uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from dgat.core.errors import ConflictError, NotFoundError, PreconditionFailedError, ValidationFailedError
from dgat.domain.enums import AssessmentStatus
from dgat.domain.models import AssessmentResponse
from dgat.persistence.repos import assessments as assessment_repo
from dgat.persistence.repos import questions as question_repo
from dgat.persistence.repos import responses as response_repo
from dgat.services.base import BaseService, DeleteOutcome


logger = logging.getLogger(__name__)

EDITABLE_STATUSES = frozenset({AssessmentStatus.DRAFT, AssessmentStatus.IN_PROGRESS})


class AssessmentResponseService(BaseService):
    entity = "assessment response"

    async def record(
        self,
        assessment_id: UUID,
        question_revision_id: UUID,
        response: str,
        *,
        expected_version: int | None = None,
        response_id: UUID | None = None,
        session: AsyncSession | None = None,
        deadline: float | None = None,
    ) -> AssessmentResponse:
        """Store the next version of an answer.

        `expected_version` is the version the client last saw (0 for a first
        answer); a mismatch raises ConflictError and stores nothing.
        """
        if not isinstance(response, str):
            raise ValidationFailedError("response must be a string")
        response_id = response_id or uuid4()

        async def work(s: AsyncSession) -> AssessmentResponse:
            # The assessment row lock serializes writers of the same assessment.
            assessment = await assessment_repo.get_assessment(s, assessment_id, for_update=True)
            if assessment is None:
                raise NotFoundError(f"assessment {assessment_id} not found")
            if assessment.status not in EDITABLE_STATUSES:
                raise PreconditionFailedError(
                    f"assessment {assessment_id} is {assessment.status.value}; responses are closed"
                )
            if await question_repo.get_revision(s, question_revision_id) is None:
                raise PreconditionFailedError(f"question revision {question_revision_id} does not exist")
            current = await response_repo.latest_version(
                s, assessment_id=assessment_id, question_revision_id=question_revision_id
            )
            if expected_version is not None and expected_version != current:
                raise ConflictError(
                    f"response version {expected_version} is stale; latest is {current}"
                )
            row = await response_repo.create_response(
                s,
                response_id=response_id,
                assessment_id=assessment_id,
                question_revision_id=question_revision_id,
                response=response,
                version=current + 1,
            )
            logger.info(
                "assessment_response_recorded assessment_id=%s question_revision_id=%s version=%s",
                assessment_id,
                question_revision_id,
                row.version,
            )
            return row

        return await self._run(work, session=session, deadline=deadline, context="record response")

    async def find_by_id(
        self, response_id: UUID, *, session: AsyncSession | None = None, deadline: float | None = None
    ) -> AssessmentResponse | None:
        async def work(s: AsyncSession) -> AssessmentResponse | None:
            return await response_repo.get_response(s, response_id)

        return await self._run(work, session=session, deadline=deadline, context="find response")

    async def list_by_assessment(
        self, assessment_id: UUID, *, session: AsyncSession | None = None, deadline: float | None = None
    ) -> list[AssessmentResponse]:
        async def work(s: AsyncSession) -> list[AssessmentResponse]:
            return await response_repo.list_responses_by_assessment(s, assessment_id)

        return await self._run(work, session=session, deadline=deadline, context="list responses")

    async def latest_by_assessment(
        self, assessment_id: UUID, *, session: AsyncSession | None = None, deadline: float | None = None
    ) -> list[AssessmentResponse]:
        async def work(s: AsyncSession) -> list[AssessmentResponse]:
            return await response_repo.list_latest_responses(s, assessment_id)

        return await self._run(work, session=session, deadline=deadline, context="list latest responses")

    async def delete(
        self, response_id: UUID, *, session: AsyncSession | None = None, deadline: float | None = None
    ) -> DeleteOutcome:
        async def work(s: AsyncSession) -> DeleteOutcome:
            if not await response_repo.delete_response(s, response_id):
                return DeleteOutcome.NOT_FOUND
            return DeleteOutcome.DELETED

        return await self._run(work, session=session, deadline=deadline, context="delete response")
