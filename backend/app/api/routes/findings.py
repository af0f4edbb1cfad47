"""
Organization-wide findings: warning and non-compliance responses across sessions
"""
import logging
import uuid
from typing import Dict, List, Optional, Sequence

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from app.db import get_db
from app.db import store
from app.db.ledger import ResponseLedger
from app.core.flatten import FlatQuestion, flatten, question_index
from app.core.progress import FINDING_STATUSES, ResolutionState, ResponseStatus
from app.api.validation import validate_finding_status

logger = logging.getLogger(__name__)

router = APIRouter()


class FindingOut(BaseModel):
    id: uuid.UUID
    session_id: uuid.UUID
    template_name: str
    department: str
    auditor_name: Optional[str]
    question_id: str
    question_text: str
    section: str
    status: str
    notes: Optional[str]
    evidence_path: Optional[str]
    resolution: str
    resolved_at: Optional[str]
    updated_at: str


class FindingsSummary(BaseModel):
    total: int
    open: int
    resolved: int
    warnings: int
    non_compliances: int


class FindingsList(BaseModel):
    summary: FindingsSummary
    findings: List[FindingOut]


class ResolutionOut(BaseModel):
    id: uuid.UUID
    resolution: str


async def _question_lookup(
    db: AsyncSession,
    template_ids: Sequence[uuid.UUID],
) -> Dict[uuid.UUID, Dict[str, FlatQuestion]]:
    templates = await store.get_templates_by_ids(db, template_ids)
    return {t.id: question_index(flatten(t)) for t in templates}


@router.get("", response_model=FindingsList)
async def list_findings(
    organization_id: uuid.UUID,
    status: Optional[str] = None,
    resolved: Optional[bool] = None,
    session_id: Optional[uuid.UUID] = None,
    db: AsyncSession = Depends(get_db),
):
    """
    List findings with their question text and section.

    Findings whose question no longer exists in the template are left out.
    """
    statuses = (validate_finding_status(status),) if status else FINDING_STATUSES

    ledger = ResponseLedger(db)
    rows = await ledger.list_findings(
        organization_id,
        statuses=statuses,
        resolved=resolved,
        session_id=session_id,
    )
    lookup = await _question_lookup(db, list({s.template_id for _, s in rows}))

    findings: List[FindingOut] = []
    for response, session in rows:
        question = lookup.get(session.template_id, {}).get(response.question_id)
        if question is None:
            logger.warning(
                f"Finding {response.id} references unknown question {response.question_id} "
                f"in template {session.template_id}, skipping"
            )
            continue
        findings.append(FindingOut(
            id=response.id,
            session_id=session.id,
            template_name=session.template_name,
            department=session.department,
            auditor_name=session.auditor_name,
            question_id=question.id,
            question_text=question.text,
            section=question.section,
            status=response.status,
            notes=response.notes,
            evidence_path=response.evidence_path,
            resolution=response.resolution.value,
            resolved_at=response.resolved_at.isoformat() if response.resolved_at else None,
            updated_at=response.updated_at.isoformat(),
        ))

    summary = FindingsSummary(
        total=len(findings),
        open=sum(1 for f in findings if f.resolution == ResolutionState.OPEN.value),
        resolved=sum(1 for f in findings if f.resolution == ResolutionState.RESOLVED.value),
        warnings=sum(1 for f in findings if f.status == ResponseStatus.WARNING.value),
        non_compliances=sum(1 for f in findings if f.status == ResponseStatus.NON_COMPLIANCE.value),
    )
    return FindingsList(summary=summary, findings=findings)


@router.patch("/{response_id}/resolution", response_model=ResolutionOut)
async def toggle_resolution(
    organization_id: uuid.UUID,
    response_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
):
    """Flip a finding between Open and Resolved"""
    ledger = ResponseLedger(db)
    resolution = await ledger.toggle_resolution(organization_id, response_id)
    return ResolutionOut(id=response_id, resolution=resolution.value)
