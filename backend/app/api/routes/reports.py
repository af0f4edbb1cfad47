"""
Narrative report routes
"""
import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from app.db import get_db
from app.db import store
from app.db.ledger import ResponseLedger
from app.core.errors import NotFoundError, ValidationError
from app.core.flatten import flatten
from app.core.progress import classify
from app.adapters.report_generator import build_audit_context, report_adapter

logger = logging.getLogger(__name__)

router = APIRouter()


class ReportResponse(BaseModel):
    id: uuid.UUID
    session_id: uuid.UUID
    report_content: str
    model: Optional[str]
    created_at: str
    cached: bool = False


def _report_response(report, cached: bool) -> ReportResponse:
    return ReportResponse(
        id=report.id,
        session_id=report.session_id,
        report_content=report.report_content,
        model=report.model,
        created_at=report.created_at.isoformat(),
        cached=cached,
    )


@router.post("/{session_id}/report", response_model=ReportResponse)
async def generate_report(
    organization_id: uuid.UUID,
    session_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
):
    """
    Generate the narrative report of a session.

    A session has at most one report: once stored it is returned as-is and
    the completion service is not called again.
    """
    session = await store.get_session(db, organization_id, session_id)

    existing = await store.get_report(db, session.id)
    if existing:
        return _report_response(existing, cached=True)

    template = await store.get_template(db, organization_id, session.template_id)
    questions = flatten(template)

    ledger = ResponseLedger(db)
    responses = await ledger.list_by_session(session.id)
    classification = classify(responses, questions)
    if classification.total == 0:
        raise ValidationError("Session has no responses to report on")

    audit_context = build_audit_context(
        template_name=session.template_name,
        department=session.department,
        auditor_name=session.auditor_name,
        audit_date=session.completed_at or session.created_at,
        classification=classification,
    )

    logger.info(
        f"Generating report for session {session.id}: "
        f"{len(classification.non_compliances)} non-compliance(s), {len(classification.warnings)} warning(s)"
    )
    content, metadata = await report_adapter.generate(audit_context)

    report = await store.save_report(db, session, content, metadata.get("model"))
    return _report_response(report, cached=False)


@router.get("/{session_id}/report", response_model=ReportResponse)
async def get_report(
    organization_id: uuid.UUID,
    session_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
):
    session = await store.get_session(db, organization_id, session_id)
    report = await store.get_report(db, session.id)
    if not report:
        raise NotFoundError("Report not generated yet")
    return _report_response(report, cached=True)
