from __future__ import annotations

import asyncio
from uuid import uuid4

import pytest

from dgat.core.errors import (
    ConflictError,
    NotFoundError,
    PreconditionFailedError,
    ValidationFailedError,
)
from dgat.domain.enums import AssessmentStatus
from dgat.persistence.db import Database
from dgat.services.base import DeleteOutcome
from dgat.services.questions import QuestionRevisionService, QuestionService
from dgat.services.responses import AssessmentResponseService
from dgat.tests.utils.factories import create_assessment, create_org_and_user, create_question_revision


@pytest.mark.asyncio
async def test_question_revisions_track_rewording(migrated_db: Database) -> None:
    questions = QuestionService(migrated_db)
    revisions = QuestionRevisionService(migrated_db)
    question = await questions.create(text={"en": "Do you recycle?"}, category="waste", weight=0.4)

    first = await revisions.create(question.question_id, text={"en": "Do you recycle paper?"}, weight=0.4)
    second = await revisions.create(
        question.question_id, text={"en": "Do you recycle paper and glass?", "fr": "Recyclez-vous?"}, weight=0.6
    )

    listed = await revisions.list_by_question(question.question_id)
    assert [r.question_revision_id for r in listed] == [first.question_revision_id, second.question_revision_id]
    latest = await revisions.latest_by_question(question.question_id)
    assert latest.question_revision_id == second.question_revision_id
    assert latest.weight == 0.6
    assert await revisions.latest_by_question(uuid4()) is None


@pytest.mark.asyncio
async def test_question_revision_validation(migrated_db: Database) -> None:
    revisions = QuestionRevisionService(migrated_db)
    question = await QuestionService(migrated_db).create(text={"en": "Q"}, category="waste", weight=0.4)

    with pytest.raises(ValidationFailedError):
        await revisions.create(question.question_id, text={}, weight=0.4)
    with pytest.raises(ValidationFailedError):
        await revisions.create(question.question_id, text={"en": "Q"}, weight=1.5)
    with pytest.raises(PreconditionFailedError):
        await revisions.create(uuid4(), text={"en": "Q"}, weight=0.4)


@pytest.mark.asyncio
async def test_recording_appends_versions(migrated_db: Database) -> None:
    service = AssessmentResponseService(migrated_db)
    _, user = await create_org_and_user(migrated_db)
    assessment = await create_assessment(migrated_db, user)
    energy = await create_question_revision(migrated_db)
    water = await create_question_revision(migrated_db, category="water")

    first = await service.record(assessment.assessment_id, energy.question_revision_id, "no")
    second = await service.record(assessment.assessment_id, energy.question_revision_id, "yes", expected_version=1)
    other = await service.record(assessment.assessment_id, water.question_revision_id, "partly")

    assert (first.version, second.version, other.version) == (1, 2, 1)
    history = await service.list_by_assessment(assessment.assessment_id)
    assert len(history) == 3
    latest = {r.question_revision_id: r for r in await service.latest_by_assessment(assessment.assessment_id)}
    assert latest[energy.question_revision_id].response == "yes"
    assert latest[energy.question_revision_id].version == 2
    assert latest[water.question_revision_id].response == "partly"
    assert (await service.find_by_id(first.response_id)).response == "no"


@pytest.mark.asyncio
async def test_stale_expected_version_is_a_conflict(migrated_db: Database) -> None:
    service = AssessmentResponseService(migrated_db)
    _, user = await create_org_and_user(migrated_db)
    assessment = await create_assessment(migrated_db, user)
    revision = await create_question_revision(migrated_db)
    await service.record(assessment.assessment_id, revision.question_revision_id, "no", expected_version=0)

    with pytest.raises(ConflictError):
        await service.record(assessment.assessment_id, revision.question_revision_id, "yes", expected_version=0)

    assert len(await service.list_by_assessment(assessment.assessment_id)) == 1


@pytest.mark.asyncio
async def test_concurrent_answers_get_distinct_versions(migrated_db: Database) -> None:
    service = AssessmentResponseService(migrated_db)
    _, user = await create_org_and_user(migrated_db)
    assessment = await create_assessment(migrated_db, user)
    revision = await create_question_revision(migrated_db)

    rows = await asyncio.gather(
        *(service.record(assessment.assessment_id, revision.question_revision_id, f"answer {i}") for i in range(5))
    )

    assert sorted(row.version for row in rows) == [1, 2, 3, 4, 5]


@pytest.mark.asyncio
async def test_responses_close_once_submitted(migrated_db: Database) -> None:
    service = AssessmentResponseService(migrated_db)
    _, user = await create_org_and_user(migrated_db)
    submitted = await create_assessment(migrated_db, user, status=AssessmentStatus.SUBMITTED)
    revision = await create_question_revision(migrated_db)

    with pytest.raises(PreconditionFailedError):
        await service.record(submitted.assessment_id, revision.question_revision_id, "late")
    with pytest.raises(NotFoundError):
        await service.record(uuid4(), revision.question_revision_id, "orphan")
    with pytest.raises(ValidationFailedError):
        await service.record(submitted.assessment_id, revision.question_revision_id, 42)

    draft = await create_assessment(migrated_db, user)
    with pytest.raises(PreconditionFailedError):
        await service.record(draft.assessment_id, uuid4(), "unknown revision")


@pytest.mark.asyncio
async def test_answered_revision_cannot_be_deleted(migrated_db: Database) -> None:
    service = AssessmentResponseService(migrated_db)
    revisions = QuestionRevisionService(migrated_db)
    _, user = await create_org_and_user(migrated_db)
    assessment = await create_assessment(migrated_db, user)
    revision = await create_question_revision(migrated_db)
    answer = await service.record(assessment.assessment_id, revision.question_revision_id, "yes")

    with pytest.raises(PreconditionFailedError):
        await revisions.delete(revision.question_revision_id)

    assert await service.delete(answer.response_id) is DeleteOutcome.DELETED
    assert await service.delete(answer.response_id) is DeleteOutcome.NOT_FOUND
    assert await revisions.delete(revision.question_revision_id) is DeleteOutcome.DELETED
    assert await revisions.find_by_id(revision.question_revision_id) is None
