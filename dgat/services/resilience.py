from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from dgat.core.config import get_settings
from dgat.core.errors import DeadlineExceededError, TransientDatabaseError


logger = logging.getLogger(__name__)


def _default_retryable(exc: Exception) -> bool:
    # Services translate driver errors first, so only the transient kind is retried.
    return isinstance(exc, TransientDatabaseError)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int
    backoff_ms: int


def default_retry_policy() -> RetryPolicy:
    settings = get_settings()
    return RetryPolicy(
        max_attempts=settings.db_retry_max_attempts,
        backoff_ms=settings.db_retry_backoff_ms,
    )


async def retry_async(
    func: Callable[[], Awaitable[Any]],
    *,
    policy: RetryPolicy | None = None,
    retryable: Callable[[Exception], bool] | None = None,
) -> Any:
    # Retry helper with jittered exponential backoff for transient failures only.
    policy = policy or default_retry_policy()
    retryable = retryable or _default_retryable
    attempt = 1
    while True:
        try:
            return await func()
        except Exception as exc:  # noqa: BLE001 - non-retryable errors are re-raised below
            if attempt >= max(policy.max_attempts, 1) or not retryable(exc):
                raise
            jitter = random.uniform(0.5, 1.5)
            sleep_s = (policy.backoff_ms / 1000.0) * (2 ** (attempt - 1)) * jitter
            logger.warning("transient_retry attempt=%s sleep_s=%.3f error=%s", attempt, sleep_s, exc)
            await asyncio.sleep(sleep_s)
            attempt += 1


async def with_deadline(awaitable: Awaitable[Any], deadline: float | None) -> Any:
    # Cancel the wrapped task once the deadline passes; open transactions roll back on unwind.
    if deadline is None:
        return await awaitable
    try:
        return await asyncio.wait_for(awaitable, timeout=deadline)
    except asyncio.TimeoutError as exc:
        raise DeadlineExceededError(f"operation exceeded deadline of {deadline:.3f}s") from exc


async def run_to_completion(work: Awaitable[Any]) -> Any:
    # Cancellation of the caller waits for `work` to finish, then propagates.
    task = asyncio.ensure_future(work)
    try:
        return await asyncio.shield(task)
    except asyncio.CancelledError:
        await asyncio.wait({task})
        if not task.cancelled() and task.exception() is not None:
            logger.error("shielded_work_failed_during_cancel error=%s", task.exception())
        raise
