"""Offline-sync queue: durable client patches applied to assessments in order.

An entry moves Pending -> Processing (claim) -> Applied | Conflict | Failed,
or back to Pending on a retryable failure. The claim and the apply run in
separate transactions. A drain that is cancelled or times out hands its claim
back to Pending; a worker that dies in between leaves a Processing entry that
`requeue_stale_claims` returns to Pending, or fails once its attempts run out.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Mapping
from uuid import UUID, uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from dgat.core.errors import (
    ConflictError,
    IllegalTransitionError,
    PreconditionFailedError,
    TransientDatabaseError,
    ValidationFailedError,
)
from dgat.domain.enums import SyncStatus
from dgat.domain.merge import deep_merge, split_patch
from dgat.domain.models import SyncQueueEntry, utc_now
from dgat.persistence.db import Database
from dgat.persistence.repos import assessments as assessment_repo
from dgat.persistence.repos import sync_queue as sync_repo
from dgat.persistence.repos import users as user_repo
from dgat.services.base import BaseService, DeleteOutcome
from dgat.services.resilience import RetryPolicy, run_to_completion, with_deadline


logger = logging.getLogger(__name__)

APPLY_ISOLATION = "REPEATABLE READ"


class DrainOutcome(str, Enum):
    APPLIED = "applied"
    CONFLICT = "conflict"
    RETRY = "retry"
    FAILED = "failed"


@dataclass(frozen=True)
class DrainResult:
    sync_id: UUID
    outcome: DrainOutcome
    status: SyncStatus
    assessment_version: int | None = None
    error: str | None = None


class SyncQueueService(BaseService):
    entity = "sync entry"

    def __init__(
        self,
        db: Database,
        *,
        retry_policy: RetryPolicy | None = None,
        max_attempts: int | None = None,
        stale_claim_after_s: float | None = None,
    ) -> None:
        super().__init__(db, retry_policy=retry_policy)
        settings = db.settings
        self.max_attempts = max_attempts or (settings.sync_max_attempts if settings else 5)
        self.stale_claim_after_s = stale_claim_after_s or (
            settings.sync_stale_claim_after_s if settings else 300
        )

    async def enqueue(
        self,
        user_id: UUID,
        assessment_id: UUID,
        patch: Mapping[str, Any],
        *,
        sync_id: UUID | None = None,
        session: AsyncSession | None = None,
        deadline: float | None = None,
    ) -> UUID:
        if not isinstance(patch, Mapping):
            raise ValidationFailedError("sync patch must be a JSON object")
        sync_id = sync_id or uuid4()

        async def work(s: AsyncSession) -> UUID:
            if await user_repo.get_user(s, user_id) is None:
                raise PreconditionFailedError(f"user {user_id} does not exist")
            if await assessment_repo.get_assessment(s, assessment_id) is None:
                raise PreconditionFailedError(f"assessment {assessment_id} does not exist")
            entry = await sync_repo.create_entry(
                s, sync_id=sync_id, user_id=user_id, assessment_id=assessment_id, data=dict(patch)
            )
            logger.info(
                "sync_entry_enqueued sync_id=%s assessment_id=%s seq=%s", sync_id, assessment_id, entry.seq
            )
            return sync_id

        return await self._run(work, session=session, deadline=deadline, context="enqueue sync entry")

    async def drain(
        self, user_id: UUID, assessment_id: UUID, *, deadline: float | None = None
    ) -> DrainResult | None:
        """Claim and apply the oldest Pending entry of the pair.

        Returns None when nothing was claimable: no Pending entry, or another
        worker holds the pair's Processing slot. Drain always runs in its own
        transactions. A deadline that fires after the claim returns the entry
        to Pending with its attempt count restored.
        """
        return await with_deadline(self._drain(user_id, assessment_id), deadline)

    async def drain_all(
        self, user_id: UUID, assessment_id: UUID, *, deadline: float | None = None
    ) -> list[DrainResult]:
        async def loop() -> list[DrainResult]:
            results = []
            while True:
                result = await self._drain(user_id, assessment_id)
                if result is None:
                    return results
                results.append(result)

        return await with_deadline(loop(), deadline)

    async def _drain(self, user_id: UUID, assessment_id: UUID) -> DrainResult | None:
        claiming = asyncio.ensure_future(self._claim(user_id, assessment_id))
        try:
            claimed = await asyncio.shield(claiming)
        except asyncio.CancelledError:
            await run_to_completion(self._abandon(claiming))
            raise
        if claimed is None:
            return None
        try:
            return await self._run(
                lambda s: self._apply(s, claimed),
                context="apply sync entry",
                isolation_level=APPLY_ISOLATION,
            )
        except asyncio.CancelledError:
            await run_to_completion(self._unclaim(claimed))
            raise
        except TransientDatabaseError as exc:
            return await self._release(claimed, exc, retryable=True)
        except Exception as exc:  # noqa: BLE001 - recorded on the entry as a terminal failure
            logger.exception("sync_entry_apply_error sync_id=%s", claimed.sync_id)
            return await self._release(claimed, exc, retryable=False)

    async def _claim(self, user_id: UUID, assessment_id: UUID) -> SyncQueueEntry | None:
        async def work(s: AsyncSession) -> SyncQueueEntry | None:
            return await sync_repo.claim_next(s, user_id=user_id, assessment_id=assessment_id)

        try:
            claimed = await self._run(work, context="claim sync entry")
        except ConflictError:
            # Lost the race on the one-Processing-per-pair index.
            logger.info("sync_claim_lost user_id=%s assessment_id=%s", user_id, assessment_id)
            return None
        if claimed is not None:
            logger.info(
                "sync_entry_claimed sync_id=%s seq=%s attempts=%s", claimed.sync_id, claimed.seq, claimed.attempts
            )
        return claimed

    async def _apply(self, session: AsyncSession, claimed: SyncQueueEntry) -> DrainResult | None:
        entry = await sync_repo.get_entry(session, claimed.sync_id, for_update=True)
        if entry is None or entry.status is not SyncStatus.PROCESSING or entry.claimed_at != claimed.claimed_at:
            # Janitor or operator took the claim back; the new owner applies it.
            logger.warning("sync_claim_superseded sync_id=%s", claimed.sync_id)
            return None
        now = utc_now()
        assessment = await assessment_repo.get_assessment(session, entry.assessment_id, for_update=True)
        if assessment is None:
            entry.status = SyncStatus.FAILED
            entry.error_message = f"assessment {entry.assessment_id} no longer exists"
            entry.updated_at = now
            await session.flush()
            return DrainResult(entry.sync_id, DrainOutcome.FAILED, entry.status, error=entry.error_message)

        changes, base_version = split_patch(entry.data)
        if base_version is not None and base_version != assessment.version:
            entry.status = SyncStatus.CONFLICT
            entry.error_message = f"base_version {base_version} does not match assessment version {assessment.version}"
            entry.updated_at = now
            await session.flush()
            logger.warning(
                "sync_entry_conflict sync_id=%s base_version=%s version=%s",
                entry.sync_id,
                base_version,
                assessment.version,
            )
            return DrainResult(
                entry.sync_id,
                DrainOutcome.CONFLICT,
                entry.status,
                assessment_version=assessment.version,
                error=entry.error_message,
            )

        assessment.data = deep_merge(assessment.data or {}, changes)
        assessment.version += 1
        assessment.updated_at = now
        entry.status = SyncStatus.APPLIED
        entry.applied_at = now
        entry.error_message = None
        entry.updated_at = now
        await session.flush()
        logger.info(
            "sync_entry_applied sync_id=%s assessment_id=%s version=%s",
            entry.sync_id,
            assessment.assessment_id,
            assessment.version,
        )
        return DrainResult(entry.sync_id, DrainOutcome.APPLIED, entry.status, assessment_version=assessment.version)

    async def _release(self, claimed: SyncQueueEntry, exc: Exception, *, retryable: bool) -> DrainResult:
        give_up = not retryable or claimed.attempts >= self.max_attempts
        status = SyncStatus.FAILED if give_up else SyncStatus.PENDING
        message = str(exc) or exc.__class__.__name__

        async def work(s: AsyncSession) -> bool:
            return await sync_repo.release_claim(
                s,
                sync_id=claimed.sync_id,
                claimed_at=claimed.claimed_at,
                status=status,
                error_message=message,
            )

        await self._run(work, context="release sync entry")
        logger.warning(
            "sync_entry_released sync_id=%s status=%s attempts=%s error=%s",
            claimed.sync_id,
            status.value,
            claimed.attempts,
            message,
        )
        outcome = DrainOutcome.FAILED if give_up else DrainOutcome.RETRY
        return DrainResult(claimed.sync_id, outcome, status, error=message)

    async def _unclaim(self, claimed: SyncQueueEntry) -> None:
        """Hand an interrupted claim back to Pending without spending an attempt."""

        async def work(s: AsyncSession) -> bool:
            return await sync_repo.release_claim(
                s,
                sync_id=claimed.sync_id,
                claimed_at=claimed.claimed_at,
                status=SyncStatus.PENDING,
                attempts=max(claimed.attempts - 1, 0),
            )

        released = await self._run(work, context="abandon sync claim")
        logger.warning("sync_claim_abandoned sync_id=%s released=%s", claimed.sync_id, released)

    async def _abandon(self, claiming: asyncio.Future) -> None:
        # The claim transaction may have committed after the caller gave up.
        await asyncio.wait({claiming})
        if claiming.cancelled():
            return
        if claiming.exception() is not None:
            logger.error("sync_claim_failed_during_cancel error=%s", claiming.exception())
            return
        claimed = claiming.result()
        if claimed is not None:
            await self._unclaim(claimed)

    async def cancel(
        self, sync_id: UUID, *, session: AsyncSession | None = None, deadline: float | None = None
    ) -> SyncQueueEntry:
        async def work(s: AsyncSession) -> SyncQueueEntry:
            entry = self._require(await sync_repo.get_entry(s, sync_id, for_update=True), sync_id)
            if entry.status is not SyncStatus.PENDING:
                raise IllegalTransitionError("sync entry", entry.status, SyncStatus.FAILED)
            entry.status = SyncStatus.FAILED
            entry.error_message = "cancelled"
            entry.updated_at = utc_now()
            await s.flush()
            logger.info("sync_entry_cancelled sync_id=%s", sync_id)
            return entry

        return await self._run(work, session=session, deadline=deadline, context="cancel sync entry")

    async def requeue_conflict(
        self, sync_id: UUID, *, session: AsyncSession | None = None, deadline: float | None = None
    ) -> SyncQueueEntry:
        """Return a Conflict entry to Pending after an operator reconciled it."""

        async def work(s: AsyncSession) -> SyncQueueEntry:
            entry = self._require(await sync_repo.get_entry(s, sync_id, for_update=True), sync_id)
            if entry.status is not SyncStatus.CONFLICT:
                raise IllegalTransitionError("sync entry", entry.status, SyncStatus.PENDING)
            entry.status = SyncStatus.PENDING
            entry.claimed_at = None
            entry.attempts = 0
            entry.error_message = None
            entry.updated_at = utc_now()
            await s.flush()
            logger.info("sync_entry_requeued sync_id=%s", sync_id)
            return entry

        return await self._run(work, session=session, deadline=deadline, context="requeue sync entry")

    async def requeue_stale_claims(
        self,
        *,
        older_than: float | None = None,
        now: datetime | None = None,
        max_attempts: int | None = None,
        session: AsyncSession | None = None,
        deadline: float | None = None,
    ) -> list[UUID]:
        """Return abandoned Processing entries to Pending.

        Entries whose claim already used `max_attempts` attempts are marked
        Failed instead and are not part of the returned ids.
        """
        threshold = older_than if older_than is not None else self.stale_claim_after_s
        cutoff = (now or utc_now()) - timedelta(seconds=threshold)
        limit = max_attempts or self.max_attempts

        async def work(s: AsyncSession) -> tuple[list[UUID], list[UUID]]:
            exhausted = await sync_repo.fail_exhausted_claims(s, claimed_before=cutoff, max_attempts=limit)
            reverted = await sync_repo.revert_stale_claims(s, claimed_before=cutoff)
            return exhausted, reverted

        exhausted, reverted = await self._run(
            work, session=session, deadline=deadline, context="requeue stale claims"
        )
        for sync_id in exhausted:
            logger.warning("sync_claim_exhausted sync_id=%s max_attempts=%s", sync_id, limit)
        for sync_id in reverted:
            logger.warning("sync_claim_stale sync_id=%s", sync_id)
        return reverted

    async def find_by_id(
        self, sync_id: UUID, *, session: AsyncSession | None = None, deadline: float | None = None
    ) -> SyncQueueEntry | None:
        async def work(s: AsyncSession) -> SyncQueueEntry | None:
            return await sync_repo.get_entry(s, sync_id)

        return await self._run(work, session=session, deadline=deadline, context="find sync entry")

    async def list_by_assessment(
        self, assessment_id: UUID, *, session: AsyncSession | None = None, deadline: float | None = None
    ) -> list[SyncQueueEntry]:
        async def work(s: AsyncSession) -> list[SyncQueueEntry]:
            return await sync_repo.list_entries_by_assessment(s, assessment_id)

        return await self._run(work, session=session, deadline=deadline, context="list sync entries")

    async def list_by_user(
        self, user_id: UUID, *, session: AsyncSession | None = None, deadline: float | None = None
    ) -> list[SyncQueueEntry]:
        async def work(s: AsyncSession) -> list[SyncQueueEntry]:
            return await sync_repo.list_entries_by_user(s, user_id)

        return await self._run(work, session=session, deadline=deadline, context="list sync entries")

    async def list_by_status(
        self, status: SyncStatus | str, *, session: AsyncSession | None = None, deadline: float | None = None
    ) -> list[SyncQueueEntry]:
        try:
            wanted = SyncStatus(status)
        except ValueError as exc:
            raise ValidationFailedError(f"{status!r} is not a valid SyncStatus") from exc

        async def work(s: AsyncSession) -> list[SyncQueueEntry]:
            return await sync_repo.list_entries_by_status(s, wanted)

        return await self._run(work, session=session, deadline=deadline, context="list sync entries")

    async def has_pending(
        self, user_id: UUID, assessment_id: UUID, *, session: AsyncSession | None = None
    ) -> bool:
        async def work(s: AsyncSession) -> bool:
            return await sync_repo.has_pending(s, user_id=user_id, assessment_id=assessment_id)

        return await self._run(work, session=session, context="check pending sync entries")

    async def delete(
        self, sync_id: UUID, *, session: AsyncSession | None = None, deadline: float | None = None
    ) -> DeleteOutcome:
        async def work(s: AsyncSession) -> DeleteOutcome:
            if not await sync_repo.delete_entry(s, sync_id):
                return DeleteOutcome.NOT_FOUND
            return DeleteOutcome.DELETED

        return await self._run(work, session=session, deadline=deadline, context="delete sync entry")
