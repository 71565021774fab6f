from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Identity,
    Index,
    Integer,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from dgat.domain.enums import AssessmentStatus, ReportType, SyncStatus, UserRole
from dgat.domain.types import EnumText


def utc_now() -> datetime:
    # Keep timestamps in UTC across services and workers.
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class Organization(Base):
    __tablename__ = "organizations"

    org_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True)
    # Organization id in the identity provider, when provisioned there.
    external_org_id: Mapped[str | None] = mapped_column(String, unique=True, nullable=True)
    name: Mapped[str] = mapped_column(String)
    description: Mapped[str | None] = mapped_column(String, nullable=True)
    country: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, server_default=func.now()
    )


class User(Base):
    __tablename__ = "users"

    user_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True)
    external_identity_id: Mapped[str] = mapped_column(String, unique=True)
    organization_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("organizations.org_id", ondelete="RESTRICT"), index=True
    )
    role: Mapped[UserRole] = mapped_column(EnumText(UserRole))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, server_default=func.now()
    )


class Question(Base):
    __tablename__ = "questions"
    __table_args__ = (
        CheckConstraint("weight >= 0 AND weight <= 1", name="ck_questions_weight_range"),
    )

    question_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True)
    # Localized text: language tag -> string.
    text: Mapped[dict[str, Any]] = mapped_column(JSONB)
    category: Mapped[str] = mapped_column(String, index=True)
    weight: Mapped[float] = mapped_column(Float)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, server_default=func.now()
    )


class QuestionRevision(Base):
    """One published wording and weight of a question; responses pin a revision."""

    __tablename__ = "questions_revisions"
    __table_args__ = (
        CheckConstraint("weight >= 0 AND weight <= 1", name="ck_questions_revisions_weight_range"),
    )

    question_revision_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True)
    question_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("questions.question_id", ondelete="CASCADE"), index=True
    )
    text: Mapped[dict[str, Any]] = mapped_column(JSONB)
    weight: Mapped[float] = mapped_column(Float)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, server_default=func.now()
    )


class Category(Base):
    # Legacy category rows; superseded by category_catalog and kept for the data migration.
    __tablename__ = "categories"

    category_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True)
    name: Mapped[str] = mapped_column(String)
    template_id: Mapped[str] = mapped_column(String)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, server_default=func.now()
    )


class CategoryCatalog(Base):
    __tablename__ = "category_catalog"

    category_catalog_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True)
    name: Mapped[str] = mapped_column(String)
    description: Mapped[str | None] = mapped_column(String, nullable=True)
    template_id: Mapped[str] = mapped_column(String, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, server_default=text("true"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


class Assessment(Base):
    __tablename__ = "assessments"

    assessment_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True)
    user_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("users.user_id", ondelete="CASCADE"), index=True
    )
    name: Mapped[str | None] = mapped_column(String, nullable=True)
    data: Mapped[dict[str, Any]] = mapped_column(JSONB, default=dict)
    status: Mapped[AssessmentStatus] = mapped_column(
        EnumText(AssessmentStatus), default=AssessmentStatus.DRAFT
    )
    # Optimistic concurrency counter; bumped on every write to `data`.
    version: Mapped[int] = mapped_column(Integer, default=1, server_default=text("1"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, server_default=func.now()
    )


class AssessmentCategory(Base):
    __tablename__ = "assessment_categories"

    assessment_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("assessments.assessment_id", ondelete="CASCADE"),
        primary_key=True,
    )
    category_catalog_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("category_catalog.category_catalog_id", ondelete="RESTRICT"),
        primary_key=True,
    )


class AssessmentResponse(Base):
    # Append-only: an edit inserts the next version for the same (assessment, revision).
    __tablename__ = "assessments_response"
    __table_args__ = (
        Index(
            "uq_assessments_response_assessment_revision_version",
            "assessment_id",
            "question_revision_id",
            "version",
            unique=True,
        ),
    )

    response_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True)
    assessment_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("assessments.assessment_id", ondelete="CASCADE")
    )
    question_revision_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("questions_revisions.question_revision_id", ondelete="RESTRICT"),
        index=True,
    )
    response: Mapped[str] = mapped_column(Text)
    version: Mapped[int] = mapped_column(Integer, default=1, server_default=text("1"))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, server_default=func.now()
    )


class Report(Base):
    __tablename__ = "reports"

    report_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True)
    assessment_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("assessments.assessment_id", ondelete="CASCADE"), index=True
    )
    type: Mapped[ReportType] = mapped_column(EnumText(ReportType))
    data: Mapped[dict[str, Any]] = mapped_column(JSONB, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, server_default=func.now()
    )


class SyncQueueEntry(Base):
    __tablename__ = "sync_queue"
    __table_args__ = (
        Index("ix_sync_queue_pair_status_seq", "user_id", "assessment_id", "status", "seq"),
        # Backstop for the claim query: one Processing entry per (user, assessment).
        Index(
            "uq_sync_queue_one_processing",
            "user_id",
            "assessment_id",
            unique=True,
            postgresql_where=text("status = 'Processing'"),
        ),
    )

    sync_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True)
    # Server acceptance order; entries of one pair are applied in this order.
    seq: Mapped[int] = mapped_column(BigInteger, Identity(always=False), unique=True)
    user_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("users.user_id", ondelete="CASCADE")
    )
    assessment_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), ForeignKey("assessments.assessment_id", ondelete="CASCADE"), index=True
    )
    data: Mapped[dict[str, Any]] = mapped_column(JSONB)
    status: Mapped[SyncStatus] = mapped_column(EnumText(SyncStatus), default=SyncStatus.PENDING)
    attempts: Mapped[int] = mapped_column(Integer, default=0, server_default=text("0"))
    claimed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    applied_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, server_default=func.now()
    )


# Generic capability per entity: its table and primary key column(s).
ENTITY_KEYS: dict[type[Base], tuple[Any, ...]] = {
    Organization: (Organization.org_id,),
    User: (User.user_id,),
    Question: (Question.question_id,),
    QuestionRevision: (QuestionRevision.question_revision_id,),
    Category: (Category.category_id,),
    CategoryCatalog: (CategoryCatalog.category_catalog_id,),
    Assessment: (Assessment.assessment_id,),
    AssessmentCategory: (AssessmentCategory.assessment_id, AssessmentCategory.category_catalog_id),
    AssessmentResponse: (AssessmentResponse.response_id,),
    Report: (Report.report_id,),
    SyncQueueEntry: (SyncQueueEntry.sync_id,),
}
