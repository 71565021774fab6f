from __future__ import annotations

import logging
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from dgat.core.errors import (
    InactiveCategoryError,
    NotFoundError,
    PreconditionFailedError,
    ValidationFailedError,
)
from dgat.domain.models import CategoryCatalog, utc_now
from dgat.persistence.repos import assessments as assessment_repo
from dgat.persistence.repos import categories as category_repo
from dgat.services.base import BaseService, DeleteOutcome


logger = logging.getLogger(__name__)

_UPDATABLE = frozenset({"name", "description", "is_active"})


def validate_catalog_changes(changes: dict[str, Any]) -> None:
    unknown = set(changes) - _UPDATABLE
    if unknown:
        raise ValidationFailedError(f"unknown catalog fields: {', '.join(sorted(unknown))}")
    if "name" in changes and (not isinstance(changes["name"], str) or not changes["name"].strip()):
        raise ValidationFailedError("catalog entry name must be a non-empty string")
    if "description" in changes and not isinstance(changes["description"], (str, type(None))):
        raise ValidationFailedError("catalog entry description must be a string or null")
    if "is_active" in changes and not isinstance(changes["is_active"], bool):
        raise ValidationFailedError("catalog entry is_active must be a boolean")


class CategoryCatalogService(BaseService):
    entity = "category catalog entry"

    async def create(
        self,
        *,
        name: str,
        template_id: str,
        description: str | None = None,
        is_active: bool = True,
        category_catalog_id: UUID | None = None,
        session: AsyncSession | None = None,
        deadline: float | None = None,
    ) -> CategoryCatalog:
        if not name or not template_id:
            raise ValidationFailedError("catalog entries need a name and a template_id")
        category_catalog_id = category_catalog_id or uuid4()

        async def work(s: AsyncSession) -> CategoryCatalog:
            return await category_repo.create_catalog_entry(
                s,
                category_catalog_id=category_catalog_id,
                name=name,
                description=description,
                template_id=template_id,
                is_active=is_active,
            )

        return await self._run(work, session=session, deadline=deadline, context="create catalog entry")

    async def find_by_id(
        self, category_catalog_id: UUID, *, session: AsyncSession | None = None, deadline: float | None = None
    ) -> CategoryCatalog | None:
        async def work(s: AsyncSession) -> CategoryCatalog | None:
            return await category_repo.get_catalog_entry(s, category_catalog_id)

        return await self._run(work, session=session, deadline=deadline, context="find catalog entry")

    async def list_active(
        self, *, session: AsyncSession | None = None, deadline: float | None = None
    ) -> list[CategoryCatalog]:
        return await self._run(
            category_repo.list_active_entries, session=session, deadline=deadline, context="list catalog"
        )

    async def list_by_template(
        self, template_id: str, *, session: AsyncSession | None = None, deadline: float | None = None
    ) -> list[CategoryCatalog]:
        async def work(s: AsyncSession) -> list[CategoryCatalog]:
            return await category_repo.list_entries_by_template(s, template_id)

        return await self._run(work, session=session, deadline=deadline, context="list catalog")

    async def update(
        self,
        category_catalog_id: UUID,
        *,
        session: AsyncSession | None = None,
        deadline: float | None = None,
        **changes: Any,
    ) -> CategoryCatalog:
        validate_catalog_changes(changes)

        async def work(s: AsyncSession) -> CategoryCatalog:
            entry = self._require(await category_repo.get_catalog_entry(s, category_catalog_id), category_catalog_id)
            for key, value in changes.items():
                setattr(entry, key, value)
            entry.updated_at = utc_now()
            await s.flush()
            if changes.get("is_active") is False:
                # Existing links stay; only new links are refused.
                logger.info("category_catalog_deactivated category_catalog_id=%s", category_catalog_id)
            return entry

        return await self._run(work, session=session, deadline=deadline, context="update catalog entry")

    async def delete(
        self, category_catalog_id: UUID, *, session: AsyncSession | None = None, deadline: float | None = None
    ) -> DeleteOutcome:
        async def work(s: AsyncSession) -> DeleteOutcome:
            if await category_repo.is_linked(s, category_catalog_id):
                raise PreconditionFailedError(
                    f"category catalog entry {category_catalog_id} is linked to assessments"
                )
            if not await category_repo.delete_catalog_entry(s, category_catalog_id):
                return DeleteOutcome.NOT_FOUND
            return DeleteOutcome.DELETED

        return await self._run(work, session=session, deadline=deadline, context="delete catalog entry")


class AssessmentCategoryService(BaseService):
    entity = "assessment category link"

    async def link(
        self,
        assessment_id: UUID,
        category_catalog_id: UUID,
        *,
        session: AsyncSession | None = None,
        deadline: float | None = None,
    ) -> bool:
        """Link a catalog entry to an assessment; returns False when already linked."""

        async def work(s: AsyncSession) -> bool:
            if await assessment_repo.get_assessment(s, assessment_id) is None:
                raise NotFoundError(f"assessment {assessment_id} not found")
            entry = await category_repo.get_catalog_entry(s, category_catalog_id, for_share=True)
            if entry is None:
                raise NotFoundError(f"category catalog entry {category_catalog_id} not found")
            if not entry.is_active:
                raise InactiveCategoryError(f"category catalog entry {category_catalog_id} is inactive")
            added = await category_repo.link(s, assessment_id, category_catalog_id)
            if added:
                logger.info(
                    "assessment_category_linked assessment_id=%s category_catalog_id=%s",
                    assessment_id,
                    category_catalog_id,
                )
            return added

        return await self._run(work, session=session, deadline=deadline, context="link category")

    async def unlink(
        self,
        assessment_id: UUID,
        category_catalog_id: UUID,
        *,
        session: AsyncSession | None = None,
        deadline: float | None = None,
    ) -> DeleteOutcome:
        async def work(s: AsyncSession) -> DeleteOutcome:
            if not await category_repo.unlink(s, assessment_id, category_catalog_id):
                return DeleteOutcome.NOT_FOUND
            return DeleteOutcome.DELETED

        return await self._run(work, session=session, deadline=deadline, context="unlink category")

    async def list_for_assessment(
        self, assessment_id: UUID, *, session: AsyncSession | None = None, deadline: float | None = None
    ) -> list[CategoryCatalog]:
        async def work(s: AsyncSession) -> list[CategoryCatalog]:
            return await category_repo.list_linked_entries(s, assessment_id)

        return await self._run(work, session=session, deadline=deadline, context="list linked categories")
