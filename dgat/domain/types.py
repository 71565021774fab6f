from __future__ import annotations

from enum import Enum
from typing import Any

from sqlalchemy import String
from sqlalchemy.types import TypeDecorator

from dgat.core.errors import IntegrityViolationError, ValidationFailedError


class EnumText(TypeDecorator):
    """Persist a str-valued Enum by its textual name in a plain varchar column.

    Binding accepts members or their names; reading a value outside the enum
    raises IntegrityViolationError instead of silently returning a string.
    """

    impl = String(32)
    cache_ok = True

    def __init__(self, enum_cls: type[Enum], *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.enum_cls = enum_cls

    def process_bind_param(self, value: Any, dialect: Any) -> str | None:
        if value is None:
            return None
        if isinstance(value, self.enum_cls):
            return value.value
        try:
            return self.enum_cls(value).value
        except ValueError as exc:
            raise ValidationFailedError(
                f"{value!r} is not a valid {self.enum_cls.__name__}"
            ) from exc

    def process_result_value(self, value: Any, dialect: Any) -> Enum | None:
        if value is None:
            return None
        try:
            return self.enum_cls(value)
        except ValueError as exc:
            raise IntegrityViolationError(
                f"stored value {value!r} is not a member of {self.enum_cls.__name__}"
            ) from exc

    def copy(self, **kwargs: Any) -> "EnumText":
        return EnumText(self.enum_cls)
