from __future__ import annotations

import logging
from typing import Any, Mapping
from uuid import UUID, uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from dgat.core.errors import NotFoundError, PreconditionFailedError, ValidationFailedError
from dgat.domain.enums import REPORTABLE_STATUSES, ReportType
from dgat.domain.models import Report
from dgat.persistence.repos import assessments as assessment_repo
from dgat.persistence.repos import reports as report_repo
from dgat.services.base import BaseService, DeleteOutcome


logger = logging.getLogger(__name__)


class ReportService(BaseService):
    entity = "report"

    async def create(
        self,
        assessment_id: UUID,
        report_type: ReportType | str,
        data: Mapping[str, Any],
        *,
        report_id: UUID | None = None,
        session: AsyncSession | None = None,
        deadline: float | None = None,
    ) -> Report:
        try:
            report_type = ReportType(report_type)
        except ValueError as exc:
            raise ValidationFailedError(f"{report_type!r} is not a report type") from exc
        if not isinstance(data, Mapping):
            raise ValidationFailedError("report data must be a JSON object")
        report_id = report_id or uuid4()

        async def work(s: AsyncSession) -> Report:
            # Row lock keeps the status fixed until the report row commits.
            assessment = await assessment_repo.get_assessment(s, assessment_id, for_update=True)
            if assessment is None:
                raise NotFoundError(f"assessment {assessment_id} not found")
            if assessment.status not in REPORTABLE_STATUSES:
                raise PreconditionFailedError(
                    f"assessment {assessment_id} is {assessment.status.value}; reports need a submitted assessment"
                )
            report = await report_repo.create_report(
                s, report_id=report_id, assessment_id=assessment_id, report_type=report_type, data=dict(data)
            )
            logger.info(
                "report_created report_id=%s assessment_id=%s type=%s",
                report_id,
                assessment_id,
                report_type.value,
            )
            return report

        return await self._run(work, session=session, deadline=deadline, context="create report")

    async def find_by_id(
        self, report_id: UUID, *, session: AsyncSession | None = None, deadline: float | None = None
    ) -> Report | None:
        async def work(s: AsyncSession) -> Report | None:
            return await report_repo.get_report(s, report_id)

        return await self._run(work, session=session, deadline=deadline, context="find report")

    async def list_by_assessment(
        self, assessment_id: UUID, *, session: AsyncSession | None = None, deadline: float | None = None
    ) -> list[Report]:
        async def work(s: AsyncSession) -> list[Report]:
            return await report_repo.list_reports_by_assessment(s, assessment_id)

        return await self._run(work, session=session, deadline=deadline, context="list reports")

    async def update(
        self,
        report_id: UUID,
        *,
        data: Mapping[str, Any],
        session: AsyncSession | None = None,
        deadline: float | None = None,
    ) -> Report:
        if not isinstance(data, Mapping):
            raise ValidationFailedError("report data must be a JSON object")

        async def work(s: AsyncSession) -> Report:
            report = self._require(await report_repo.get_report(s, report_id), report_id)
            report.data = dict(data)
            await s.flush()
            return report

        return await self._run(work, session=session, deadline=deadline, context="update report")

    async def delete(
        self, report_id: UUID, *, session: AsyncSession | None = None, deadline: float | None = None
    ) -> DeleteOutcome:
        async def work(s: AsyncSession) -> DeleteOutcome:
            if not await report_repo.delete_report(s, report_id):
                return DeleteOutcome.NOT_FOUND
            return DeleteOutcome.DELETED

        return await self._run(work, session=session, deadline=deadline, context="delete report")
