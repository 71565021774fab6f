from __future__ import annotations

import pytest

from dgat.core.errors import IntegrityViolationError, ValidationFailedError
from dgat.domain.enums import (
    ASSESSMENT_TRANSITIONS,
    REPORTABLE_STATUSES,
    AssessmentStatus,
    SyncStatus,
    UserRole,
    can_transition_assessment,
    can_transition_sync,
)
from dgat.domain.types import EnumText


ALLOWED_ASSESSMENT_EDGES = {
    (AssessmentStatus.DRAFT, AssessmentStatus.IN_PROGRESS),
    (AssessmentStatus.IN_PROGRESS, AssessmentStatus.SUBMITTED),
    (AssessmentStatus.SUBMITTED, AssessmentStatus.APPROVED),
    (AssessmentStatus.SUBMITTED, AssessmentStatus.REJECTED),
    (AssessmentStatus.REJECTED, AssessmentStatus.IN_PROGRESS),
}


def test_enum_values_are_textual_names() -> None:
    assert AssessmentStatus.IN_PROGRESS.value == "InProgress"
    assert UserRole.CONTRIBUTOR.value == "Contributor"
    assert SyncStatus.PENDING.value == "Pending"


def test_assessment_transitions_match_dag_exactly() -> None:
    edges = {
        (current, new)
        for current in AssessmentStatus
        for new in AssessmentStatus
        if can_transition_assessment(current, new)
    }
    assert edges == ALLOWED_ASSESSMENT_EDGES
    assert set(ASSESSMENT_TRANSITIONS) == set(AssessmentStatus)


def test_reportable_statuses() -> None:
    assert REPORTABLE_STATUSES == {
        AssessmentStatus.SUBMITTED,
        AssessmentStatus.APPROVED,
        AssessmentStatus.REJECTED,
    }


def test_sync_transitions() -> None:
    assert can_transition_sync(SyncStatus.PENDING, SyncStatus.PROCESSING)
    assert can_transition_sync(SyncStatus.PENDING, SyncStatus.FAILED)
    assert can_transition_sync(SyncStatus.PROCESSING, SyncStatus.CONFLICT)
    assert can_transition_sync(SyncStatus.CONFLICT, SyncStatus.PENDING)
    assert not can_transition_sync(SyncStatus.APPLIED, SyncStatus.PENDING)
    assert not can_transition_sync(SyncStatus.FAILED, SyncStatus.PENDING)
    assert not can_transition_sync(SyncStatus.PENDING, SyncStatus.APPLIED)


def test_enum_text_binds_members_and_names() -> None:
    column_type = EnumText(AssessmentStatus)

    assert column_type.process_bind_param(AssessmentStatus.SUBMITTED, None) == "Submitted"
    assert column_type.process_bind_param("Rejected", None) == "Rejected"
    assert column_type.process_bind_param(None, None) is None
    with pytest.raises(ValidationFailedError):
        column_type.process_bind_param("Archived", None)


def test_enum_text_rejects_unknown_stored_values() -> None:
    column_type = EnumText(SyncStatus)

    assert column_type.process_result_value("Conflict", None) is SyncStatus.CONFLICT
    with pytest.raises(IntegrityViolationError):
        column_type.process_result_value("Done", None)
