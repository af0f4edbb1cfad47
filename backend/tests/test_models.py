"""
Tests for database models
"""
import uuid

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.progress import ResolutionState, SessionStatus
from app.db.models import AuditTemplate, AuditSession, AuditResponse, AuditReport


class TestAuditTemplateModel:
    """Tests for AuditTemplate model"""

    @pytest.mark.asyncio
    async def test_create_template(self, db_session: AsyncSession, org_id):
        template = AuditTemplate(organization_id=org_id, name="Kitchen Hygiene", sections=[])
        db_session.add(template)
        await db_session.commit()

        assert isinstance(template.id, uuid.UUID)
        assert template.version == 1
        assert template.is_active is True
        assert template.created_at is not None
        assert template.updated_at is not None

    @pytest.mark.asyncio
    async def test_sections_round_trip(self, db_session: AsyncSession, sample_template: AuditTemplate):
        result = await db_session.execute(
            select(AuditTemplate).where(AuditTemplate.id == sample_template.id)
        )
        template = result.scalar_one()
        assert template.sections[1]["questions"][0]["id"] == "q3"


class TestAuditSessionModel:
    """Tests for AuditSession model"""

    @pytest.mark.asyncio
    async def test_defaults(self, db_session: AsyncSession, org_id, sample_template: AuditTemplate):
        session = AuditSession(
            organization_id=org_id,
            template_id=sample_template.id,
            template_name=sample_template.name,
            department="Dock 4",
        )
        db_session.add(session)
        await db_session.commit()

        assert session.status == SessionStatus.PENDING
        assert session.progress == 0
        assert session.completed_at is None

    @pytest.mark.asyncio
    async def test_status_stores_enum_value(self, db_session: AsyncSession, sample_session: AuditSession):
        sample_session.status = SessionStatus.IN_PROGRESS
        await db_session.commit()

        raw = await db_session.execute(
            select(AuditSession.status).where(AuditSession.id == sample_session.id)
        )
        assert raw.scalar_one() == SessionStatus.IN_PROGRESS

    @pytest.mark.asyncio
    async def test_delete_cascades_to_responses_and_report(
        self, db_session: AsyncSession, org_id, sample_session: AuditSession
    ):
        session_id = sample_session.id
        db_session.add(AuditResponse(organization_id=org_id, session_id=session_id, question_id="q1", status="compliance"))
        db_session.add(AuditReport(organization_id=org_id, session_id=session_id, report_content="# Report"))
        await db_session.commit()

        await db_session.delete(sample_session)
        await db_session.commit()

        responses = await db_session.execute(select(AuditResponse).where(AuditResponse.session_id == session_id))
        reports = await db_session.execute(select(AuditReport).where(AuditReport.session_id == session_id))
        assert responses.scalars().all() == []
        assert reports.scalars().all() == []


class TestAuditResponseModel:
    """Tests for AuditResponse model"""

    @pytest.mark.asyncio
    async def test_defaults(self, db_session: AsyncSession, org_id, sample_session: AuditSession):
        response = AuditResponse(organization_id=org_id, session_id=sample_session.id, question_id="q1")
        db_session.add(response)
        await db_session.commit()

        assert response.status == ""
        assert response.is_resolved is False
        assert response.resolution == ResolutionState.OPEN

    @pytest.mark.asyncio
    async def test_unique_per_session_and_question(
        self, db_session: AsyncSession, org_id, sample_session: AuditSession
    ):
        db_session.add(AuditResponse(organization_id=org_id, session_id=sample_session.id, question_id="q1"))
        await db_session.commit()

        db_session.add(AuditResponse(organization_id=org_id, session_id=sample_session.id, question_id="q1"))
        with pytest.raises(IntegrityError):
            await db_session.commit()
        await db_session.rollback()

    @pytest.mark.asyncio
    async def test_resolution_property(self, sample_finding: AuditResponse):
        assert sample_finding.resolution == ResolutionState.OPEN
        sample_finding.is_resolved = True
        assert sample_finding.resolution == ResolutionState.RESOLVED


class TestAuditReportModel:
    """Tests for AuditReport model"""

    @pytest.mark.asyncio
    async def test_one_report_per_session(self, db_session: AsyncSession, org_id, sample_session: AuditSession):
        db_session.add(AuditReport(organization_id=org_id, session_id=sample_session.id, report_content="A"))
        await db_session.commit()

        db_session.add(AuditReport(organization_id=org_id, session_id=sample_session.id, report_content="B"))
        with pytest.raises(IntegrityError):
            await db_session.commit()
        await db_session.rollback()
