from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import delete, exists, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from dgat.domain.enums import SyncStatus
from dgat.domain.models import SyncQueueEntry, utc_now


async def create_entry(
    session: AsyncSession,
    *,
    sync_id: UUID,
    user_id: UUID,
    assessment_id: UUID,
    data: dict[str, Any],
) -> SyncQueueEntry:
    entry = SyncQueueEntry(
        sync_id=sync_id,
        user_id=user_id,
        assessment_id=assessment_id,
        data=data,
        status=SyncStatus.PENDING,
        attempts=0,
    )
    session.add(entry)
    await session.flush()
    return entry


async def get_entry(
    session: AsyncSession, sync_id: UUID, *, for_update: bool = False
) -> SyncQueueEntry | None:
    stmt = select(SyncQueueEntry).where(SyncQueueEntry.sync_id == sync_id)
    if for_update:
        stmt = stmt.with_for_update()
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def list_entries_by_assessment(session: AsyncSession, assessment_id: UUID) -> list[SyncQueueEntry]:
    result = await session.execute(
        select(SyncQueueEntry)
        .where(SyncQueueEntry.assessment_id == assessment_id)
        .order_by(SyncQueueEntry.seq)
    )
    return list(result.scalars().all())


async def list_entries_by_user(session: AsyncSession, user_id: UUID) -> list[SyncQueueEntry]:
    result = await session.execute(
        select(SyncQueueEntry).where(SyncQueueEntry.user_id == user_id).order_by(SyncQueueEntry.seq)
    )
    return list(result.scalars().all())


async def list_entries_by_status(session: AsyncSession, status: SyncStatus) -> list[SyncQueueEntry]:
    result = await session.execute(
        select(SyncQueueEntry).where(SyncQueueEntry.status == status).order_by(SyncQueueEntry.seq)
    )
    return list(result.scalars().all())


async def claim_next(
    session: AsyncSession, *, user_id: UUID, assessment_id: UUID
) -> SyncQueueEntry | None:
    """Move the oldest Pending entry of the pair to Processing.

    The update only matches while no entry of the pair is Processing; the row
    lock taken by the subquery serializes concurrent claimers, and a claimer
    that waited re-checks `status = 'Pending'` and matches nothing.
    """
    processing = aliased(SyncQueueEntry)
    oldest_pending = (
        select(SyncQueueEntry.sync_id)
        .where(
            SyncQueueEntry.user_id == user_id,
            SyncQueueEntry.assessment_id == assessment_id,
            SyncQueueEntry.status == SyncStatus.PENDING,
            ~exists().where(
                processing.user_id == user_id,
                processing.assessment_id == assessment_id,
                processing.status == SyncStatus.PROCESSING,
            ),
        )
        .order_by(SyncQueueEntry.seq)
        .limit(1)
        .with_for_update()
        # Same table as the UPDATE target; must not auto-correlate to the outer row.
        .correlate(None)
        .scalar_subquery()
    )
    now = utc_now()
    stmt = (
        update(SyncQueueEntry)
        .where(
            SyncQueueEntry.sync_id == oldest_pending,
            SyncQueueEntry.status == SyncStatus.PENDING,
        )
        .values(
            status=SyncStatus.PROCESSING,
            claimed_at=now,
            attempts=SyncQueueEntry.attempts + 1,
            updated_at=now,
        )
        .returning(SyncQueueEntry)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def has_pending(session: AsyncSession, *, user_id: UUID, assessment_id: UUID) -> bool:
    result = await session.execute(
        select(
            exists().where(
                SyncQueueEntry.user_id == user_id,
                SyncQueueEntry.assessment_id == assessment_id,
                SyncQueueEntry.status == SyncStatus.PENDING,
            )
        )
    )
    return bool(result.scalar())


async def release_claim(
    session: AsyncSession,
    *,
    sync_id: UUID,
    claimed_at: datetime,
    status: SyncStatus,
    attempts: int | None = None,
    error_message: str | None = None,
) -> bool:
    # Only the claim identified by claimed_at is released.
    values: dict[str, Any] = {
        "status": status,
        "claimed_at": None,
        "error_message": error_message,
        "updated_at": utc_now(),
    }
    if attempts is not None:
        values["attempts"] = attempts
    stmt = (
        update(SyncQueueEntry)
        .where(
            SyncQueueEntry.sync_id == sync_id,
            SyncQueueEntry.status == SyncStatus.PROCESSING,
            SyncQueueEntry.claimed_at == claimed_at,
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    return (result.rowcount or 0) > 0


async def fail_exhausted_claims(
    session: AsyncSession, *, claimed_before: datetime, max_attempts: int
) -> list[UUID]:
    stmt = (
        update(SyncQueueEntry)
        .where(
            SyncQueueEntry.status == SyncStatus.PROCESSING,
            SyncQueueEntry.claimed_at < claimed_before,
            SyncQueueEntry.attempts >= max_attempts,
        )
        .values(
            status=SyncStatus.FAILED,
            claimed_at=None,
            error_message=f"claim abandoned after {max_attempts} attempts",
            updated_at=utc_now(),
        )
        .returning(SyncQueueEntry.sync_id)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    return [row[0] for row in result.fetchall()]


async def revert_stale_claims(session: AsyncSession, *, claimed_before: datetime) -> list[UUID]:
    # Processing entries whose worker vanished go back to Pending; attempts are kept.
    stmt = (
        update(SyncQueueEntry)
        .where(
            SyncQueueEntry.status == SyncStatus.PROCESSING,
            SyncQueueEntry.claimed_at < claimed_before,
        )
        .values(status=SyncStatus.PENDING, claimed_at=None, updated_at=utc_now())
        .returning(SyncQueueEntry.sync_id)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    return [row[0] for row in result.fetchall()]


async def delete_entry(session: AsyncSession, sync_id: UUID) -> bool:
    result = await session.execute(delete(SyncQueueEntry).where(SyncQueueEntry.sync_id == sync_id))
    return (result.rowcount or 0) > 0
