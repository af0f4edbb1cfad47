"""
Organization-scoped lookups and cache writes for templates, sessions and reports.

Same error contract as the response ledger: missing rows raise NotFoundError,
store failures raise PersistenceError after rolling back.
"""
import logging
import uuid
from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import NotFoundError, PersistenceError
from app.core.progress import ProgressState, SessionStatus
from app.db.models import AuditTemplate, AuditSession, AuditReport

logger = logging.getLogger(__name__)


async def _rollback_and_wrap(db: AsyncSession, action: str, error: Exception) -> PersistenceError:
    logger.error(f"Store {action} failed: {error}")
    try:
        await db.rollback()
    except SQLAlchemyError as rollback_error:
        logger.error(f"Rollback after failed {action} also failed: {rollback_error}")
    return PersistenceError(f"Failed to {action}; please retry")


async def commit(db: AsyncSession, action: str) -> None:
    try:
        await db.commit()
    except SQLAlchemyError as e:
        raise await _rollback_and_wrap(db, action, e)


async def get_template(
    db: AsyncSession,
    organization_id: uuid.UUID,
    template_id: uuid.UUID,
) -> AuditTemplate:
    try:
        result = await db.execute(
            select(AuditTemplate)
            .where(AuditTemplate.id == template_id)
            .where(AuditTemplate.organization_id == organization_id)
        )
        template = result.scalar_one_or_none()
    except SQLAlchemyError as e:
        raise await _rollback_and_wrap(db, "load template", e)

    if not template:
        raise NotFoundError("Audit template not found")
    return template


async def list_templates(
    db: AsyncSession,
    organization_id: uuid.UUID,
    active: Optional[bool] = None,
    category: Optional[str] = None,
) -> List[AuditTemplate]:
    query = (
        select(AuditTemplate)
        .where(AuditTemplate.organization_id == organization_id)
        .order_by(AuditTemplate.created_at.desc())
    )
    if active is not None:
        query = query.where(AuditTemplate.is_active == active)
    if category:
        query = query.where(AuditTemplate.category == category)

    try:
        result = await db.execute(query)
        return list(result.scalars().all())
    except SQLAlchemyError as e:
        raise await _rollback_and_wrap(db, "list templates", e)


async def get_templates_by_ids(
    db: AsyncSession,
    template_ids: Sequence[uuid.UUID],
) -> List[AuditTemplate]:
    if not template_ids:
        return []
    try:
        result = await db.execute(select(AuditTemplate).where(AuditTemplate.id.in_(template_ids)))
        return list(result.scalars().all())
    except SQLAlchemyError as e:
        raise await _rollback_and_wrap(db, "load templates", e)


async def get_session(
    db: AsyncSession,
    organization_id: uuid.UUID,
    session_id: uuid.UUID,
) -> AuditSession:
    try:
        result = await db.execute(
            select(AuditSession)
            .where(AuditSession.id == session_id)
            .where(AuditSession.organization_id == organization_id)
        )
        session = result.scalar_one_or_none()
    except SQLAlchemyError as e:
        raise await _rollback_and_wrap(db, "load audit session", e)

    if not session:
        raise NotFoundError("Audit session not found")
    return session


async def list_sessions(
    db: AsyncSession,
    organization_id: uuid.UUID,
    status: Optional[SessionStatus] = None,
) -> List[AuditSession]:
    """Sessions of an organization, newest first"""
    query = (
        select(AuditSession)
        .where(AuditSession.organization_id == organization_id)
        .order_by(AuditSession.created_at.desc())
    )
    if status is not None:
        query = query.where(AuditSession.status == status)

    try:
        result = await db.execute(query)
        return list(result.scalars().all())
    except SQLAlchemyError as e:
        raise await _rollback_and_wrap(db, "list audit sessions", e)


async def count_sessions_for_template(db: AsyncSession, template_id: uuid.UUID) -> int:
    try:
        result = await db.execute(
            select(func.count(AuditSession.id)).where(AuditSession.template_id == template_id)
        )
        return int(result.scalar_one())
    except SQLAlchemyError as e:
        raise await _rollback_and_wrap(db, "count audit sessions", e)


async def save_progress(
    db: AsyncSession,
    session: AuditSession,
    state: ProgressState,
) -> AuditSession:
    """Persist recomputed progress/status on the session (best-effort cache)"""
    session.progress = state.progress
    session.status = state.status
    if state.completed_at is not None:
        session.completed_at = state.completed_at
    await commit(db, "update audit session")
    return session


def cache_is_stale(session: AuditSession, state: ProgressState) -> bool:
    return session.progress != state.progress or session.status != state.status


async def get_report(db: AsyncSession, session_id: uuid.UUID) -> Optional[AuditReport]:
    try:
        result = await db.execute(
            select(AuditReport).where(AuditReport.session_id == session_id)
        )
        return result.scalar_one_or_none()
    except SQLAlchemyError as e:
        raise await _rollback_and_wrap(db, "load report", e)


async def save_report(
    db: AsyncSession,
    session: AuditSession,
    content: str,
    model: Optional[str],
) -> AuditReport:
    session_id = session.id
    report = AuditReport(
        session_id=session_id,
        organization_id=session.organization_id,
        report_content=content,
        model=model,
    )
    db.add(report)
    try:
        await db.commit()
    except IntegrityError:
        # Another request stored a report for this session first
        await db.rollback()
        existing = await get_report(db, session_id)
        if existing is None:
            raise PersistenceError("Failed to save report; please retry")
        return existing
    except SQLAlchemyError as e:
        raise await _rollback_and_wrap(db, "save report", e)
    await db.refresh(report)
    return report


def format_date(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None
