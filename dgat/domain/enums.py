"""Enumerations shared by the ORM models, migrations and services.

Values are the textual names persisted in the database. Adding a member never
remaps existing rows because nothing is stored by ordinal.
"""

from __future__ import annotations

from enum import Enum


class UserRole(str, Enum):
    ADMIN = "Admin"
    MANAGER = "Manager"
    CONTRIBUTOR = "Contributor"
    VIEWER = "Viewer"


class AssessmentStatus(str, Enum):
    DRAFT = "Draft"
    IN_PROGRESS = "InProgress"
    SUBMITTED = "Submitted"
    APPROVED = "Approved"
    REJECTED = "Rejected"


class ReportType(str, Enum):
    SUMMARY = "Summary"
    DETAILED = "Detailed"
    BENCHMARK = "Benchmark"


class SyncStatus(str, Enum):
    PENDING = "Pending"
    PROCESSING = "Processing"
    APPLIED = "Applied"
    FAILED = "Failed"
    CONFLICT = "Conflict"


ASSESSMENT_TRANSITIONS: dict[AssessmentStatus, frozenset[AssessmentStatus]] = {
    AssessmentStatus.DRAFT: frozenset({AssessmentStatus.IN_PROGRESS}),
    AssessmentStatus.IN_PROGRESS: frozenset({AssessmentStatus.SUBMITTED}),
    AssessmentStatus.SUBMITTED: frozenset({AssessmentStatus.APPROVED, AssessmentStatus.REJECTED}),
    AssessmentStatus.APPROVED: frozenset(),
    AssessmentStatus.REJECTED: frozenset({AssessmentStatus.IN_PROGRESS}),
}

# Reports may only exist while an assessment sits in one of these states.
REPORTABLE_STATUSES = frozenset(
    {AssessmentStatus.SUBMITTED, AssessmentStatus.APPROVED, AssessmentStatus.REJECTED}
)

SYNC_TRANSITIONS: dict[SyncStatus, frozenset[SyncStatus]] = {
    SyncStatus.PENDING: frozenset({SyncStatus.PROCESSING, SyncStatus.FAILED}),
    SyncStatus.PROCESSING: frozenset(
        {SyncStatus.APPLIED, SyncStatus.PENDING, SyncStatus.FAILED, SyncStatus.CONFLICT}
    ),
    SyncStatus.APPLIED: frozenset(),
    SyncStatus.FAILED: frozenset(),
    # Operator reconciliation after a manual merge.
    SyncStatus.CONFLICT: frozenset({SyncStatus.PENDING}),
}


def can_transition_assessment(current: AssessmentStatus, new: AssessmentStatus) -> bool:
    return new in ASSESSMENT_TRANSITIONS.get(current, frozenset())


def can_transition_sync(current: SyncStatus, new: SyncStatus) -> bool:
    return new in SYNC_TRANSITIONS.get(current, frozenset())
