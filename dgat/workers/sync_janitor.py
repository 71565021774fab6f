from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import logging
from uuid import UUID

from dgat.core.config import get_settings
from dgat.core.logging import configure_logging
from dgat.domain.enums import SyncStatus
from dgat.persistence.db import Database
from dgat.services.sync_queue import DrainResult, SyncQueueService


logger = logging.getLogger(__name__)


@dataclass
class JanitorCycleResult:
    requeued: list[UUID] = field(default_factory=list)
    drained: list[DrainResult] = field(default_factory=list)


def _is_missing_table_error(exc: Exception) -> bool:
    # Before the first migration the queue table does not exist yet; treat it as an idle cycle.
    message = str(exc).lower()
    return "undefinedtableerror" in message or "does not exist" in message


async def run_sync_janitor_cycle(service: SyncQueueService, *, drain: bool = True) -> JanitorCycleResult:
    """Return stale claims to Pending, then drain every pair with Pending work."""
    result = JanitorCycleResult()
    result.requeued = await service.requeue_stale_claims()
    if not drain:
        return result
    pending = await service.list_by_status(SyncStatus.PENDING)
    # One drain per pair; list order is seq order so older pairs go first.
    pairs = list(dict.fromkeys((entry.user_id, entry.assessment_id) for entry in pending))
    for user_id, assessment_id in pairs:
        result.drained.extend(await service.drain_all(user_id, assessment_id))
    if result.requeued or result.drained:
        logger.info(
            "sync_janitor_cycle requeued=%s drained=%s pairs=%s",
            len(result.requeued),
            len(result.drained),
            len(pairs),
        )
    return result


async def run_sync_janitor_loop(db: Database | None = None, *, drain: bool = True) -> None:
    # Runs on a fixed cadence and keeps going after failures.
    settings = get_settings()
    db = db or Database.from_settings(settings)
    service = SyncQueueService(db)
    interval = max(1, int(settings.sync_janitor_interval_s))
    try:
        while True:
            try:
                await run_sync_janitor_cycle(service, drain=drain)
            except Exception as exc:  # noqa: BLE001 - keep loop alive while surfacing errors in logs.
                if _is_missing_table_error(exc):
                    logger.warning("sync_janitor_waiting_for_schema")
                else:
                    logger.exception("sync janitor cycle failed")
            await asyncio.sleep(interval)
    finally:
        await db.close()


async def _main() -> None:
    configure_logging()
    await run_sync_janitor_loop()


def main() -> None:
    asyncio.run(_main())


if __name__ == "__main__":
    main()
