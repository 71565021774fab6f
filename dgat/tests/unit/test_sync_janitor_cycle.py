from __future__ import annotations

from types import SimpleNamespace
from uuid import uuid4

import pytest

from dgat.domain.enums import SyncStatus
from dgat.services.sync_queue import DrainOutcome, DrainResult
from dgat.workers.sync_janitor import _is_missing_table_error, run_sync_janitor_cycle


class FakeSyncService:
    def __init__(self, pending, requeued=None) -> None:
        self.pending = pending
        self.requeued = requeued or []
        self.drained_pairs: list[tuple] = []
        self.calls = {"requeue": 0}

    async def requeue_stale_claims(self):
        self.calls["requeue"] += 1
        return self.requeued

    async def list_by_status(self, status):
        assert status is SyncStatus.PENDING
        return self.pending

    async def drain_all(self, user_id, assessment_id):
        self.drained_pairs.append((user_id, assessment_id))
        return [DrainResult(uuid4(), DrainOutcome.APPLIED, SyncStatus.APPLIED, assessment_version=2)]


@pytest.mark.asyncio
async def test_cycle_drains_each_pair_once_in_queue_order() -> None:
    user_a, user_b = uuid4(), uuid4()
    assessment_a, assessment_b = uuid4(), uuid4()
    pending = [
        SimpleNamespace(user_id=user_b, assessment_id=assessment_b),
        SimpleNamespace(user_id=user_a, assessment_id=assessment_a),
        SimpleNamespace(user_id=user_b, assessment_id=assessment_b),
    ]
    stale = [uuid4()]
    service = FakeSyncService(pending, requeued=stale)

    result = await run_sync_janitor_cycle(service)

    assert result.requeued == stale
    assert service.drained_pairs == [(user_b, assessment_b), (user_a, assessment_a)]
    assert len(result.drained) == 2


@pytest.mark.asyncio
async def test_cycle_without_drain_only_requeues() -> None:
    service = FakeSyncService([SimpleNamespace(user_id=uuid4(), assessment_id=uuid4())])

    result = await run_sync_janitor_cycle(service, drain=False)

    assert service.calls["requeue"] == 1
    assert service.drained_pairs == []
    assert result.drained == []


def test_missing_table_error_detection() -> None:
    assert _is_missing_table_error(Exception('relation "sync_queue" does not exist'))
    assert not _is_missing_table_error(Exception("deadlock detected"))
