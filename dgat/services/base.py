from __future__ import annotations

from contextlib import contextmanager
from enum import Enum
from typing import Any, Awaitable, Callable, Iterator, TypeVar

from sqlalchemy.exc import DBAPIError, StatementError
from sqlalchemy.ext.asyncio import AsyncSession

from dgat.core.config import Settings
from dgat.core.errors import DgatError, NotFoundError, translate_db_error
from dgat.persistence.db import Database
from dgat.services.resilience import RetryPolicy, retry_async, with_deadline


T = TypeVar("T")


class DeleteOutcome(str, Enum):
    DELETED = "deleted"
    NOT_FOUND = "not_found"


def retry_policy_for(settings: Settings | None) -> RetryPolicy:
    if settings is None:
        return RetryPolicy(max_attempts=3, backoff_ms=50)
    return RetryPolicy(
        max_attempts=settings.db_retry_max_attempts,
        backoff_ms=settings.db_retry_backoff_ms,
    )


@contextmanager
def translated(context: str) -> Iterator[None]:
    # Driver errors leave the service layer as taxonomy errors.
    try:
        yield
    except DBAPIError as exc:
        raise translate_db_error(exc, context=context) from exc
    except StatementError as exc:
        # Bind-time type errors arrive wrapped by the statement that carried them.
        if isinstance(exc.orig, DgatError):
            raise exc.orig from exc
        raise


class BaseService:
    """Runs unit-of-work callables on a caller transaction or an owned one.

    With an external session the callable joins it and the caller commits.
    Without one, the service opens a transaction, commits it and retries
    transient failures with backoff. Both paths honour an optional deadline.
    """

    entity = "entity"

    def __init__(self, db: Database, *, retry_policy: RetryPolicy | None = None) -> None:
        self.db = db
        self.retry_policy = retry_policy or retry_policy_for(db.settings)

    async def _run(
        self,
        work: Callable[[AsyncSession], Awaitable[T]],
        *,
        session: AsyncSession | None = None,
        deadline: float | None = None,
        context: str,
        isolation_level: str | None = None,
    ) -> T:
        if session is not None:
            return await with_deadline(self._joined(work, session, context), deadline)

        async def attempt() -> T:
            with translated(context):
                async with self.db.transaction(isolation_level=isolation_level) as owned:
                    return await work(owned)

        return await with_deadline(retry_async(attempt, policy=self.retry_policy), deadline)

    @staticmethod
    async def _joined(
        work: Callable[[AsyncSession], Awaitable[T]], session: AsyncSession, context: str
    ) -> T:
        with translated(context):
            return await work(session)

    def _require(self, row: Any, key: Any) -> Any:
        if row is None:
            raise NotFoundError(f"{self.entity} {key} not found")
        return row
