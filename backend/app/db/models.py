"""
Database models for templates, audit sessions, responses and reports
"""
import uuid
from datetime import date, datetime, timezone
from typing import Optional, List

from sqlalchemy import (
    String, Text, Integer, Boolean, Date, DateTime, ForeignKey, JSON, Index,
    UniqueConstraint, Enum as SQLEnum
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.dialects.postgresql import UUID

from app.db.database import Base
from app.core.progress import SessionStatus, ResolutionState


def utcnow() -> datetime:
    """Naive UTC timestamp (columns are stored without timezone)"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# === MODELS ===

class AuditTemplate(Base):
    """Reusable audit definition: ordered sections of questions"""
    __tablename__ = "audit_templates"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    category: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    version: Mapped[int] = mapped_column(Integer, default=1)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    # [{name, questions: [{id, text, type}]}]
    sections: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    created_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    sessions: Mapped[List["AuditSession"]] = relationship(back_populates="template")


class AuditSession(Base):
    """One execution of a template against a department/auditor/due date"""
    __tablename__ = "audit_sessions"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    template_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("audit_templates.id"), nullable=False)
    template_name: Mapped[str] = mapped_column(String(255), nullable=False)  # Denormalized
    auditor_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    auditor_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    auditor_email: Mapped[Optional[str]] = mapped_column(String(320), nullable=True)
    department: Mapped[str] = mapped_column(String(255), nullable=False)
    due_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    # IMPORTANT: Persist enum *values* ("In Progress") to match the migration.
    status: Mapped[SessionStatus] = mapped_column(
        SQLEnum(
            SessionStatus,
            name="sessionstatus",
            values_callable=lambda enum_cls: [e.value for e in enum_cls],
        ),
        default=SessionStatus.PENDING,
    )
    # Cached result of the progress engine; responses are authoritative
    progress: Mapped[int] = mapped_column(Integer, default=0)
    created_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Relationships
    template: Mapped["AuditTemplate"] = relationship(back_populates="sessions")
    responses: Mapped[List["AuditResponse"]] = relationship(
        back_populates="session", cascade="all, delete-orphan"
    )
    report: Mapped[Optional["AuditReport"]] = relationship(
        back_populates="session", uselist=False, cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_audit_sessions_org_created", "organization_id", "created_at"),
    )


class AuditResponse(Base):
    """
    Answer to one question within one session.

    At most one row per (session_id, question_id); writes go through
    ResponseLedger.upsert. Responses with status warning/non-compliance are
    findings, whose resolution state (is_resolved) is independent of status.
    """
    __tablename__ = "audit_responses"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    session_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("audit_sessions.id", ondelete="CASCADE"), nullable=False
    )
    organization_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    question_id: Mapped[str] = mapped_column(String(100), nullable=False)
    # compliance | warning | non-compliance, or a free-form answer; "" = unanswered
    status: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    evidence_path: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    is_resolved: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    session: Mapped["AuditSession"] = relationship(back_populates="responses")

    __table_args__ = (
        UniqueConstraint("session_id", "question_id", name="uq_audit_responses_session_question"),
        Index("ix_audit_responses_org_status", "organization_id", "status"),
    )

    @property
    def resolution(self) -> ResolutionState:
        return ResolutionState.RESOLVED if self.is_resolved else ResolutionState.OPEN


class AuditReport(Base):
    """Narrative report generated from a session's findings (one per session)"""
    __tablename__ = "ai_audit_reports"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    session_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("audit_sessions.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    organization_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    report_content: Mapped[str] = mapped_column(Text, nullable=False)
    model: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    # Relationships
    session: Mapped["AuditSession"] = relationship(back_populates="report")
