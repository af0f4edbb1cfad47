"""
Tests for the response ledger
"""
import uuid
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import select, func
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import NotFoundError, PersistenceError, ValidationError
from app.core.progress import ResolutionState
from app.db.ledger import ResponseLedger
from app.db.models import AuditResponse, AuditSession


async def _row_count(db: AsyncSession, session_id: uuid.UUID) -> int:
    result = await db.execute(
        select(func.count(AuditResponse.id)).where(AuditResponse.session_id == session_id)
    )
    return result.scalar_one()


class TestUpsert:

    @pytest.mark.asyncio
    async def test_creates_response(self, db_session: AsyncSession, org_id, sample_session: AuditSession):
        ledger = ResponseLedger(db_session)
        response = await ledger.upsert(org_id, sample_session.id, "q1", status="compliance", notes="ok")

        assert response.question_id == "q1"
        assert response.status == "compliance"
        assert response.notes == "ok"
        assert response.organization_id == org_id
        assert response.resolution == ResolutionState.OPEN

    @pytest.mark.asyncio
    async def test_idempotent(self, db_session: AsyncSession, org_id, sample_session: AuditSession):
        ledger = ResponseLedger(db_session)
        first = await ledger.upsert(org_id, sample_session.id, "q1", status="warning", notes="x")
        second = await ledger.upsert(org_id, sample_session.id, "q1", status="warning", notes="x")

        assert first.id == second.id
        assert await _row_count(db_session, sample_session.id) == 1
        assert len(await ledger.list_by_session(sample_session.id)) == 1

    @pytest.mark.asyncio
    async def test_partial_update_preserves_other_field(
        self, db_session: AsyncSession, org_id, sample_session: AuditSession
    ):
        ledger = ResponseLedger(db_session)
        await ledger.upsert(org_id, sample_session.id, "q1", status="warning")
        response = await ledger.upsert(org_id, sample_session.id, "q1", notes="x")

        assert response.status == "warning"
        assert response.notes == "x"
        assert await _row_count(db_session, sample_session.id) == 1

    @pytest.mark.asyncio
    async def test_notes_only_creates_unanswered_row(
        self, db_session: AsyncSession, org_id, sample_session: AuditSession
    ):
        ledger = ResponseLedger(db_session)
        response = await ledger.upsert(org_id, sample_session.id, "q3", notes="come back later")

        assert response.status == ""
        assert response.notes == "come back later"

    @pytest.mark.asyncio
    async def test_last_write_wins(self, db_session: AsyncSession, org_id, sample_session: AuditSession):
        first_caller = ResponseLedger(db_session)
        second_caller = ResponseLedger(db_session)

        await first_caller.upsert(org_id, sample_session.id, "q2", status="compliance", notes="A")
        await second_caller.upsert(org_id, sample_session.id, "q2", status="non-compliance", notes="B")

        response = await first_caller.get(sample_session.id, "q2")
        assert response.status == "non-compliance"
        assert response.notes == "B"

    @pytest.mark.asyncio
    async def test_requires_question_id(self, db_session: AsyncSession, org_id, sample_session: AuditSession):
        with pytest.raises(ValidationError):
            await ResponseLedger(db_session).upsert(org_id, sample_session.id, "", status="compliance")

    @pytest.mark.asyncio
    async def test_store_failure_is_retryable(self, db_session: AsyncSession, org_id, sample_session: AuditSession):
        ledger = ResponseLedger(db_session)
        session_id = sample_session.id
        failure = OperationalError("INSERT", {}, Exception("database is locked"))

        with patch.object(db_session, "execute", AsyncMock(side_effect=failure)):
            with pytest.raises(PersistenceError) as exc_info:
                await ledger.upsert(org_id, session_id, "q1", status="compliance")

        assert exc_info.value.status_code == 503

        # Retrying the same call succeeds once the store is back
        response = await ledger.upsert(org_id, session_id, "q1", status="compliance")
        assert response.status == "compliance"


class TestReads:

    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self, db_session: AsyncSession, org_id, sample_session: AuditSession):
        assert await ResponseLedger(db_session).get(sample_session.id, "q1") is None

    @pytest.mark.asyncio
    async def test_list_by_session(self, db_session: AsyncSession, org_id, sample_session: AuditSession):
        ledger = ResponseLedger(db_session)
        for question_id in ("q1", "q2", "q3"):
            await ledger.upsert(org_id, sample_session.id, question_id, status="compliance")

        responses = await ledger.list_by_session(sample_session.id)
        assert sorted(r.question_id for r in responses) == ["q1", "q2", "q3"]
        assert await ledger.list_by_session(uuid.uuid4()) == []

    @pytest.mark.asyncio
    async def test_list_findings(self, db_session: AsyncSession, org_id, other_org_id, sample_session: AuditSession):
        ledger = ResponseLedger(db_session)
        await ledger.upsert(org_id, sample_session.id, "q1", status="compliance")
        await ledger.upsert(org_id, sample_session.id, "q2", status="non-compliance")
        await ledger.upsert(org_id, sample_session.id, "q3", status="warning")

        rows = await ledger.list_findings(org_id)
        assert sorted(r.question_id for r, _ in rows) == ["q2", "q3"]
        assert all(s.id == sample_session.id for _, s in rows)

        only_nc = await ledger.list_findings(org_id, statuses=("non-compliance",))
        assert [r.question_id for r, _ in only_nc] == ["q2"]

        assert await ledger.list_findings(other_org_id) == []
        assert await ledger.list_findings(org_id, resolved=True) == []


class TestToggleResolution:

    @pytest.mark.asyncio
    async def test_toggle_twice_returns_to_open(self, db_session: AsyncSession, org_id, sample_finding: AuditResponse):
        ledger = ResponseLedger(db_session)

        assert await ledger.toggle_resolution(org_id, sample_finding.id) == ResolutionState.RESOLVED
        response = await ledger.get(sample_finding.session_id, "q2")
        assert response.is_resolved is True
        assert response.resolved_at is not None

        assert await ledger.toggle_resolution(org_id, sample_finding.id) == ResolutionState.OPEN
        response = await ledger.get(sample_finding.session_id, "q2")
        assert response.is_resolved is False
        assert response.resolved_at is None
        assert response.status == "non-compliance"
        assert response.notes == "Two extinguishers past inspection date"

    @pytest.mark.asyncio
    async def test_unknown_response(self, db_session: AsyncSession, org_id, sample_session: AuditSession):
        with pytest.raises(NotFoundError):
            await ResponseLedger(db_session).toggle_resolution(org_id, uuid.uuid4())

    @pytest.mark.asyncio
    async def test_other_organization_cannot_toggle(self, db_session: AsyncSession, org_id, other_org_id, sample_finding: AuditResponse):
        with pytest.raises(NotFoundError):
            await ResponseLedger(db_session).toggle_resolution(other_org_id, sample_finding.id)

    @pytest.mark.asyncio
    async def test_compliant_response_is_not_a_finding(
        self, db_session: AsyncSession, org_id, sample_session: AuditSession
    ):
        ledger = ResponseLedger(db_session)
        response = await ledger.upsert(org_id, sample_session.id, "q1", status="compliance")

        with pytest.raises(ValidationError):
            await ledger.toggle_resolution(org_id, response.id)


@pytest.mark.asyncio
async def test_delete_for_session(db_session: AsyncSession, org_id, sample_session: AuditSession):
    ledger = ResponseLedger(db_session)
    await ledger.upsert(org_id, sample_session.id, "q1", status="compliance")
    await ledger.upsert(org_id, sample_session.id, "q2", status="warning")

    assert await ledger.delete_for_session(sample_session.id) == 2
    assert await _row_count(db_session, sample_session.id) == 0
