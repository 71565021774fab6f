from __future__ import annotations

import logging
from typing import Any, Mapping
from uuid import UUID, uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from dgat.core.errors import IllegalTransitionError, PreconditionFailedError, ValidationFailedError
from dgat.domain.enums import AssessmentStatus, can_transition_assessment
from dgat.domain.models import Assessment, utc_now
from dgat.persistence.repos import assessments as assessment_repo
from dgat.persistence.repos import reports as report_repo
from dgat.persistence.repos import users as user_repo
from dgat.services.base import BaseService, DeleteOutcome


logger = logging.getLogger(__name__)

_UNSET: Any = object()


class AssessmentService(BaseService):
    entity = "assessment"

    async def create(
        self,
        *,
        user_id: UUID,
        data: Mapping[str, Any] | None = None,
        name: str | None = None,
        assessment_id: UUID | None = None,
        session: AsyncSession | None = None,
        deadline: float | None = None,
    ) -> Assessment:
        if data is not None and not isinstance(data, Mapping):
            raise ValidationFailedError("assessment data must be a JSON object")
        assessment_id = assessment_id or uuid4()

        async def work(s: AsyncSession) -> Assessment:
            if await user_repo.get_user(s, user_id) is None:
                raise PreconditionFailedError(f"user {user_id} does not exist")
            assessment = await assessment_repo.create_assessment(
                s,
                assessment_id=assessment_id,
                user_id=user_id,
                data=dict(data or {}),
                name=name,
                status=AssessmentStatus.DRAFT,
            )
            logger.info("assessment_created assessment_id=%s user_id=%s", assessment_id, user_id)
            return assessment

        return await self._run(work, session=session, deadline=deadline, context="create assessment")

    async def find_by_id(
        self, assessment_id: UUID, *, session: AsyncSession | None = None, deadline: float | None = None
    ) -> Assessment | None:
        async def work(s: AsyncSession) -> Assessment | None:
            return await assessment_repo.get_assessment(s, assessment_id)

        return await self._run(work, session=session, deadline=deadline, context="find assessment")

    async def list_by_user(
        self, user_id: UUID, *, session: AsyncSession | None = None, deadline: float | None = None
    ) -> list[Assessment]:
        async def work(s: AsyncSession) -> list[Assessment]:
            return await assessment_repo.list_assessments_by_user(s, user_id)

        return await self._run(work, session=session, deadline=deadline, context="list assessments")

    async def update(
        self,
        assessment_id: UUID,
        *,
        name: str | None = _UNSET,
        data: Mapping[str, Any] = _UNSET,
        session: AsyncSession | None = None,
        deadline: float | None = None,
    ) -> Assessment:
        """Replace name and/or data. Writing `data` bumps the version counter."""
        if data is not _UNSET and not isinstance(data, Mapping):
            raise ValidationFailedError("assessment data must be a JSON object")

        async def work(s: AsyncSession) -> Assessment:
            assessment = self._require(
                await assessment_repo.get_assessment(s, assessment_id, for_update=True), assessment_id
            )
            if name is not _UNSET:
                assessment.name = name
            if data is not _UNSET:
                assessment.data = dict(data)
                assessment.version += 1
            assessment.updated_at = utc_now()
            await s.flush()
            return assessment

        return await self._run(work, session=session, deadline=deadline, context="update assessment")

    async def update_status(
        self,
        assessment_id: UUID,
        new_status: AssessmentStatus | str,
        *,
        session: AsyncSession | None = None,
        deadline: float | None = None,
    ) -> Assessment:
        """Move the assessment one edge along the status DAG.

        Entering a reportable status never creates a report. Reopening a
        Rejected assessment deletes its reports in the same transaction so no
        report outlives the states that permit one.
        """
        try:
            target = AssessmentStatus(new_status)
        except ValueError as exc:
            raise ValidationFailedError(f"{new_status!r} is not an assessment status") from exc

        async def work(s: AsyncSession) -> Assessment:
            assessment = self._require(
                await assessment_repo.get_assessment(s, assessment_id, for_update=True), assessment_id
            )
            current = assessment.status
            if not can_transition_assessment(current, target):
                raise IllegalTransitionError("assessment", current, target)
            if current is AssessmentStatus.REJECTED and target is AssessmentStatus.IN_PROGRESS:
                removed = await report_repo.delete_reports_for_assessment(s, assessment_id)
                if removed:
                    logger.info("assessment_reports_cleared assessment_id=%s count=%s", assessment_id, removed)
            assessment.status = target
            assessment.updated_at = utc_now()
            await s.flush()
            logger.info(
                "assessment_status_changed assessment_id=%s from=%s to=%s",
                assessment_id,
                current.value,
                target.value,
            )
            return assessment

        return await self._run(work, session=session, deadline=deadline, context="update assessment status")

    async def delete(
        self, assessment_id: UUID, *, session: AsyncSession | None = None, deadline: float | None = None
    ) -> DeleteOutcome:
        """Delete the assessment with its reports, category links and sync entries.

        Deleting an unknown id is not an error and reports NOT_FOUND.
        """

        async def work(s: AsyncSession) -> DeleteOutcome:
            if not await assessment_repo.delete_assessment_cascade(s, assessment_id):
                return DeleteOutcome.NOT_FOUND
            logger.info("assessment_deleted assessment_id=%s", assessment_id)
            return DeleteOutcome.DELETED

        return await self._run(work, session=session, deadline=deadline, context="delete assessment")
