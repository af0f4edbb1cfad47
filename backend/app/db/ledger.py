"""
Response ledger: the authoritative per-(session, question) answer store.

Writes are a single INSERT ... ON CONFLICT DO UPDATE on the composite key, so
the store's per-row atomicity is the only concurrency guarantee: last write
wins, no merge, no conflict detection. Only the fields a caller supplies are
written, which makes status and notes independently settable.
"""
import logging
import uuid
from typing import Iterable, Optional

from sqlalchemy import select, delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.dialects import postgresql, sqlite

from app.core.errors import NotFoundError, PersistenceError, ValidationError
from app.core.progress import FINDING_STATUSES, ResolutionState
from app.db.models import AuditResponse, AuditSession, utcnow

logger = logging.getLogger(__name__)

_UPSERT_DIALECTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class ResponseLedger:
    """Idempotent storage of one answer per (session, question)"""

    def __init__(self, db: AsyncSession):
        self.db = db

    def _insert(self):
        dialect = self.db.get_bind().dialect.name
        try:
            return _UPSERT_DIALECTS[dialect]
        except KeyError:
            raise PersistenceError(f"Upsert not supported for database dialect: {dialect}")

    async def _fail(self, action: str, error: Exception) -> PersistenceError:
        logger.error(f"Response ledger {action} failed: {error}")
        try:
            await self.db.rollback()
        except SQLAlchemyError as rollback_error:
            logger.error(f"Rollback after failed {action} also failed: {rollback_error}")
        return PersistenceError(f"Failed to {action}; please retry")

    async def upsert(
        self,
        organization_id: uuid.UUID,
        session_id: uuid.UUID,
        question_id: str,
        status: Optional[str] = None,
        notes: Optional[str] = None,
        evidence_path: Optional[str] = None,
    ) -> AuditResponse:
        """
        Create or update the response for (session_id, question_id).

        Arguments left as None keep their stored value (or the column default
        on first insert). Repeating the same call is a no-op beyond updated_at.
        """
        if not question_id:
            raise ValidationError("question_id is required")

        now = utcnow()
        changes = {"updated_at": now}
        if status is not None:
            changes["status"] = status
        if notes is not None:
            changes["notes"] = notes
        if evidence_path is not None:
            changes["evidence_path"] = evidence_path

        insert = self._insert()
        stmt = insert(AuditResponse).values(
            id=uuid.uuid4(),
            session_id=session_id,
            organization_id=organization_id,
            question_id=question_id,
            status=status or "",
            notes=notes,
            evidence_path=evidence_path,
            is_resolved=False,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[AuditResponse.session_id, AuditResponse.question_id],
            set_=changes,
        )

        try:
            await self.db.execute(stmt)
            await self.db.commit()
        except SQLAlchemyError as e:
            raise await self._fail("save response", e)

        response = await self.get(session_id, question_id)
        if response is None:
            raise PersistenceError("Response was not persisted; please retry")
        return response

    async def get(self, session_id: uuid.UUID, question_id: str) -> Optional[AuditResponse]:
        try:
            result = await self.db.execute(
                select(AuditResponse)
                .where(AuditResponse.session_id == session_id)
                .where(AuditResponse.question_id == question_id)
                .execution_options(populate_existing=True)
            )
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise await self._fail("read response", e)

    async def list_by_session(self, session_id: uuid.UUID) -> list[AuditResponse]:
        try:
            result = await self.db.execute(
                select(AuditResponse)
                .where(AuditResponse.session_id == session_id)
                .order_by(AuditResponse.created_at)
                .execution_options(populate_existing=True)
            )
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise await self._fail("list responses", e)

    async def list_findings(
        self,
        organization_id: uuid.UUID,
        statuses: Iterable[str] = FINDING_STATUSES,
        resolved: Optional[bool] = None,
        session_id: Optional[uuid.UUID] = None,
    ) -> list[tuple[AuditResponse, AuditSession]]:
        """Organization-wide finding rows, newest first, paired with their session"""
        query = (
            select(AuditResponse, AuditSession)
            .join(AuditSession, AuditSession.id == AuditResponse.session_id)
            .where(AuditResponse.organization_id == organization_id)
            .where(AuditResponse.status.in_(list(statuses)))
            .order_by(AuditResponse.updated_at.desc())
        )
        if resolved is not None:
            query = query.where(AuditResponse.is_resolved == resolved)
        if session_id is not None:
            query = query.where(AuditResponse.session_id == session_id)

        try:
            result = await self.db.execute(query)
            return [(row[0], row[1]) for row in result.all()]
        except SQLAlchemyError as e:
            raise await self._fail("list findings", e)

    async def toggle_resolution(
        self,
        organization_id: uuid.UUID,
        response_id: uuid.UUID,
    ) -> ResolutionState:
        """Flip a finding between Open and Resolved; status and notes are untouched"""
        try:
            result = await self.db.execute(
                select(AuditResponse)
                .where(AuditResponse.id == response_id)
                .where(AuditResponse.organization_id == organization_id)
            )
            response = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise await self._fail("read finding", e)

        if response is None:
            raise NotFoundError("Finding not found")
        if response.status not in FINDING_STATUSES:
            raise ValidationError(f"Response with status '{response.status}' is not a finding")

        response.is_resolved = not response.is_resolved
        response.resolved_at = utcnow() if response.is_resolved else None

        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            raise await self._fail("update finding", e)

        logger.info(f"Finding {response_id} marked {response.resolution.value}")
        return response.resolution

    async def delete_for_session(self, session_id: uuid.UUID, commit: bool = True) -> int:
        try:
            result = await self.db.execute(
                delete(AuditResponse).where(AuditResponse.session_id == session_id)
            )
            if commit:
                await self.db.commit()
            return result.rowcount or 0
        except SQLAlchemyError as e:
            raise await self._fail("delete responses", e)
