from __future__ import annotations

from typing import Any

from sqlalchemy.exc import DBAPIError


class DgatError(Exception):
    """Base error for the DGAT backend."""


class NotFoundError(DgatError):
    """A lookup by primary key yielded no row."""


class ValidationFailedError(DgatError):
    """Caller-supplied data violated an invariant or operation precondition."""


class InactiveCategoryError(ValidationFailedError):
    """A category catalog entry is inactive and cannot be newly linked."""


class IllegalTransitionError(DgatError):
    """A state machine edge outside the allowed transitions was requested."""

    def __init__(self, entity: str, current: Any, requested: Any) -> None:
        self.entity = entity
        self.current = current
        self.requested = requested
        super().__init__(f"{entity} cannot move from {_label(current)} to {_label(requested)}")


class ConflictError(DgatError):
    """Uniqueness or optimistic-concurrency violation."""


class PreconditionFailedError(DgatError):
    """A referential or lifecycle prerequisite is unmet."""


class IntegrityViolationError(DgatError):
    """Persisted data is inconsistent with the schema; never recovered locally."""


class TransientDatabaseError(DgatError):
    """Deadlock, serialization failure or connection loss; safe to retry."""


class DeadlineExceededError(DgatError):
    """A service call ran past its deadline and was cancelled."""


class ExternalIdentityError(DgatError):
    """The identity-provider collaborator failed."""


class FatalError(DgatError):
    """Unrecoverable startup or migration failure."""


class DatabaseClosedError(FatalError):
    """The database handle is shutting down and accepts no new work."""


class MigrationError(FatalError):
    """A migration failed; the run was aborted."""

    def __init__(self, migration_name: str, message: str) -> None:
        self.migration_name = migration_name
        super().__init__(f"{migration_name}: {message}")


class MigrationConfigError(FatalError):
    """The migration set is malformed (bad or duplicate names, unknown target)."""


class MigrationLockTimeoutError(FatalError):
    """The migrator advisory lock could not be acquired within the bound."""


def _label(value: Any) -> str:
    return str(getattr(value, "value", value))


# SQLSTATE classes used by PostgreSQL.
_UNIQUE_VIOLATION = "23505"
_FOREIGN_KEY_VIOLATION = "23503"
_CHECK_VIOLATION = "23514"
_NOT_NULL_VIOLATION = "23502"
_TRANSIENT_STATES = {
    "40001",  # serialization_failure
    "40P01",  # deadlock_detected
    "08000",
    "08003",
    "08006",
    "57P01",  # admin_shutdown
}


def sqlstate_of(exc: BaseException) -> str | None:
    # Walk the DBAPI wrapper chain; asyncpg exposes the code as `sqlstate`.
    current: BaseException | None = getattr(exc, "orig", None) or exc
    seen = 0
    while current is not None and seen < 5:
        code = getattr(current, "sqlstate", None) or getattr(current, "pgcode", None)
        if isinstance(code, str) and code:
            return code
        current = current.__cause__
        seen += 1
    return None


def is_transient_db_error(exc: BaseException) -> bool:
    if isinstance(exc, TransientDatabaseError):
        return True
    if isinstance(exc, DBAPIError):
        if exc.connection_invalidated:
            return True
        return sqlstate_of(exc) in _TRANSIENT_STATES
    return isinstance(exc, (ConnectionError, TimeoutError))


def translate_db_error(exc: DBAPIError, *, context: str) -> DgatError:
    """Map a driver error onto the service error taxonomy."""
    code = sqlstate_of(exc)
    detail = f"{context}: {getattr(exc, 'orig', exc)}"
    if code == _UNIQUE_VIOLATION:
        return ConflictError(detail)
    if code == _FOREIGN_KEY_VIOLATION:
        return PreconditionFailedError(detail)
    if code in {_CHECK_VIOLATION, _NOT_NULL_VIOLATION} or (code or "").startswith("22"):
        return ValidationFailedError(detail)
    if is_transient_db_error(exc):
        return TransientDatabaseError(detail)
    return IntegrityViolationError(detail) if code and code.startswith("23") else FatalError(detail)
