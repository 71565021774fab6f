from __future__ import annotations

from typing import Any, TypeVar

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from dgat.domain.models import ENTITY_KEYS, Base


ModelT = TypeVar("ModelT", bound=Base)


def primary_key_columns(model: type[Base]) -> tuple[Any, ...]:
    try:
        return ENTITY_KEYS[model]
    except KeyError as exc:
        raise TypeError(f"{model.__name__} is not a registered entity") from exc


async def find_by_id(
    session: AsyncSession, model: type[ModelT], key: Any, *, for_update: bool = False
) -> ModelT | None:
    # Generic primary-key lookup; composite keys are passed as tuples in column order.
    columns = primary_key_columns(model)
    values = key if isinstance(key, tuple) else (key,)
    if len(values) != len(columns):
        raise ValueError(f"{model.__name__} key expects {len(columns)} value(s)")
    stmt = select(model).where(*(column == value for column, value in zip(columns, values)))
    if for_update:
        stmt = stmt.with_for_update()
    result = await session.execute(stmt)
    return result.scalar_one_or_none()
