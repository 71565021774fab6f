from __future__ import annotations

from typing import Any
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from dgat.domain.enums import ReportType
from dgat.domain.models import Report


async def get_report(session: AsyncSession, report_id: UUID) -> Report | None:
    result = await session.execute(select(Report).where(Report.report_id == report_id))
    return result.scalar_one_or_none()


async def list_reports_by_assessment(session: AsyncSession, assessment_id: UUID) -> list[Report]:
    result = await session.execute(
        select(Report).where(Report.assessment_id == assessment_id).order_by(Report.created_at, Report.report_id)
    )
    return list(result.scalars().all())


async def create_report(
    session: AsyncSession,
    *,
    report_id: UUID,
    assessment_id: UUID,
    report_type: ReportType,
    data: dict[str, Any],
) -> Report:
    report = Report(report_id=report_id, assessment_id=assessment_id, type=report_type, data=data)
    session.add(report)
    await session.flush()
    return report


async def delete_report(session: AsyncSession, report_id: UUID) -> bool:
    result = await session.execute(delete(Report).where(Report.report_id == report_id))
    return (result.rowcount or 0) > 0


async def delete_reports_for_assessment(session: AsyncSession, assessment_id: UUID) -> int:
    result = await session.execute(delete(Report).where(Report.assessment_id == assessment_id))
    return int(result.rowcount or 0)
