"""
Audit session routes: launch, execution (responses), submission and summary
"""
import asyncio
import logging
import shutil
import uuid
from datetime import date
from typing import Any, Dict, List, Optional, Sequence, Tuple

import aiofiles
from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from fastapi.responses import FileResponse
from kombu.exceptions import OperationalError as BrokerError
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from app.db import get_db
from app.db import store
from app.db.ledger import ResponseLedger
from app.db.models import AuditSession, AuditResponse, AuditTemplate, utcnow
from app.core.config import settings
from app.core.errors import NotFoundError, NotificationError, PersistenceError, ValidationError
from app.core.flatten import FlatQuestion, find_question, flatten
from app.core.paths import evidence_dir, session_data_dir, to_absolute_path, to_relative_path
from app.core.progress import (
    ProgressState, SessionStatus, classify, finalize, recompute, responses_by_question, risk_score,
)
from app.api.validation import (
    MAX_EVIDENCE_PATH_LENGTH, sanitize_filename, validate_email, validate_question_id,
    validate_response_status, validate_session_status,
)
from app.adapters.notifier import AuditLinkNotification, build_access_link, email_notifier
from app.workers.tasks import send_audit_link_task

logger = logging.getLogger(__name__)

# File upload limits
CHUNK_SIZE = 1024 * 1024  # 1 MB chunks for streaming

router = APIRouter()


# === Schemas ===

class SessionCreate(BaseModel):
    template_id: uuid.UUID
    auditor_id: Optional[str] = None
    auditor_name: str
    auditor_email: Optional[str] = None
    department: str
    due_date: date
    created_by: Optional[str] = None


class SessionResponse(BaseModel):
    id: uuid.UUID
    organization_id: uuid.UUID
    template_id: uuid.UUID
    template_name: str
    auditor_id: Optional[str]
    auditor_name: Optional[str]
    auditor_email: Optional[str]
    department: str
    due_date: Optional[str]
    status: str
    progress: int
    created_at: str
    updated_at: str
    completed_at: Optional[str]
    access_link: str


class LaunchResponse(SessionResponse):
    warnings: List[str] = Field(default_factory=list)


class QuestionOut(BaseModel):
    id: str
    text: str
    type: str
    section: str
    index: int


class SessionDetail(SessionResponse):
    questions: List[QuestionOut]
    responses: Dict[str, Dict[str, Any]]
    answered_count: int
    total_questions: int
    non_compliance_count: int


class ResponseUpdate(BaseModel):
    status: Optional[str] = None
    notes: Optional[str] = None


class ResponseRow(BaseModel):
    id: uuid.UUID
    session_id: uuid.UUID
    question_id: str
    status: str
    notes: Optional[str]
    evidence_path: Optional[str]
    resolution: str
    created_at: str
    updated_at: str


class ProgressOut(BaseModel):
    progress: int
    status: str
    answered_count: int
    total_questions: int


class ResponseSaved(BaseModel):
    response: ResponseRow
    session: ProgressOut


class ClassifiedOut(BaseModel):
    question_id: str
    question_text: str
    section: str
    status: str
    notes: Optional[str]


class SessionSummary(BaseModel):
    session_id: uuid.UUID
    progress: ProgressOut
    compliant: List[ClassifiedOut]
    warnings: List[ClassifiedOut]
    non_compliances: List[ClassifiedOut]
    risk_score: int


# === Helpers ===

def _session_fields(session: AuditSession) -> dict:
    return dict(
        id=session.id,
        organization_id=session.organization_id,
        template_id=session.template_id,
        template_name=session.template_name,
        auditor_id=session.auditor_id,
        auditor_name=session.auditor_name,
        auditor_email=session.auditor_email,
        department=session.department,
        due_date=session.due_date.isoformat() if session.due_date else None,
        status=SessionStatus(session.status).value,
        progress=session.progress,
        created_at=session.created_at.isoformat(),
        updated_at=session.updated_at.isoformat(),
        completed_at=store.format_date(session.completed_at),
        access_link=build_access_link(session.id),
    )


def _response_row(response: AuditResponse) -> ResponseRow:
    return ResponseRow(
        id=response.id,
        session_id=response.session_id,
        question_id=response.question_id,
        status=response.status,
        notes=response.notes,
        evidence_path=response.evidence_path,
        resolution=response.resolution.value,
        created_at=response.created_at.isoformat(),
        updated_at=response.updated_at.isoformat(),
    )


def _progress_out(state: ProgressState) -> ProgressOut:
    return ProgressOut(
        progress=state.progress,
        status=state.status.value,
        answered_count=state.answered_count,
        total_questions=state.total_questions,
    )


async def _load_execution_context(
    db: AsyncSession,
    organization_id: uuid.UUID,
    session_id: uuid.UUID,
) -> Tuple[AuditSession, AuditTemplate, Sequence[FlatQuestion]]:
    session = await store.get_session(db, organization_id, session_id)
    template = await store.get_template(db, organization_id, session.template_id)
    return session, template, flatten(template)


async def _sync_progress(
    db: AsyncSession,
    ledger: ResponseLedger,
    session: AuditSession,
    questions: Sequence[FlatQuestion],
) -> Tuple[ProgressState, List[AuditResponse]]:
    """Recompute from the response rows and refresh the session's cached fields if stale"""
    responses = await ledger.list_by_session(session.id)
    state = recompute(session.status, questions, responses)
    if store.cache_is_stale(session, state):
        logger.info(
            f"Session {session.id} progress {session.progress}% ({SessionStatus(session.status).value}) "
            f"-> {state.progress}% ({state.status.value})"
        )
        await store.save_progress(db, session, state)
    return state, responses


def _require_open(session: AuditSession) -> None:
    if session.status == SessionStatus.COMPLETED:
        raise ValidationError("Audit session is completed and locked for records")


async def _notify_auditor(session: AuditSession) -> Optional[str]:
    """
    Send the access link to the assigned auditor.

    Returns a warning message instead of raising: a launched session must
    never be rolled back because the email could not go out.
    """
    if not session.auditor_email:
        return "Audit launched, but the auditor has no email address; share the access link manually"

    notification = AuditLinkNotification(
        to=session.auditor_email,
        auditor_name=session.auditor_name or "",
        template_name=session.template_name,
        access_link=build_access_link(session.id),
    )

    try:
        if settings.NOTIFY_VIA_WORKER:
            try:
                send_audit_link_task.apply_async(kwargs=notification.as_dict(), retry=False)
            except (BrokerError, OSError) as e:
                raise NotificationError(f"Could not queue notification: {e}") from e
        else:
            await asyncio.to_thread(email_notifier.send_audit_link, notification)
    except NotificationError as e:
        logger.warning(f"Notification for session {session.id} failed: {e.message}")
        return f"Audit launched, but email notification failed: {e.message}"
    except Exception as e:
        logger.exception(f"Unexpected error notifying auditor for session {session.id}")
        return f"Audit launched, but email notification failed: {e}"

    return None


# === Routes ===

@router.post("", response_model=LaunchResponse, status_code=201)
async def launch_session(
    organization_id: uuid.UUID,
    data: SessionCreate,
    db: AsyncSession = Depends(get_db),
):
    """Launch a template against an auditor; the session starts Pending at 0%"""
    department = data.department.strip()
    auditor_name = data.auditor_name.strip()
    if not department:
        raise ValidationError("Department is required")
    if not auditor_name:
        raise ValidationError("Auditor is required")
    auditor_email = validate_email(data.auditor_email)

    template = await store.get_template(db, organization_id, data.template_id)
    if not template.is_active:
        raise ValidationError("Cannot launch an inactive template")

    session = AuditSession(
        organization_id=organization_id,
        template_id=template.id,
        template_name=template.name,
        auditor_id=data.auditor_id,
        auditor_name=auditor_name,
        auditor_email=auditor_email,
        department=department,
        due_date=data.due_date,
        status=SessionStatus.PENDING,
        progress=0,
        created_by=data.created_by,
    )
    db.add(session)
    await store.commit(db, "create audit session")
    await db.refresh(session)

    logger.info(f"Launched session {session.id} from template {template.id} for {auditor_name}")

    warnings: List[str] = []
    warning = await _notify_auditor(session)
    if warning:
        warnings.append(warning)

    return LaunchResponse(**_session_fields(session), warnings=warnings)


@router.get("", response_model=List[SessionResponse])
async def list_sessions(
    organization_id: uuid.UUID,
    status: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
):
    """
    List sessions, newest first.

    Progress/status here are the cached values; open a session to get them
    recomputed from its responses.
    """
    sessions = await store.list_sessions(
        db,
        organization_id,
        status=validate_session_status(status) if status else None,
    )
    return [SessionResponse(**_session_fields(s)) for s in sessions]


@router.get("/{session_id}", response_model=SessionDetail)
async def get_session(
    organization_id: uuid.UUID,
    session_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
):
    """Session with its flattened questions and answers keyed by question id"""
    session, _, questions = await _load_execution_context(db, organization_id, session_id)
    ledger = ResponseLedger(db)
    state, responses = await _sync_progress(db, ledger, session, questions)

    return SessionDetail(
        **_session_fields(session),
        questions=[QuestionOut(id=q.id, text=q.text, type=q.type, section=q.section, index=q.index) for q in questions],
        responses=responses_by_question(responses),
        answered_count=state.answered_count,
        total_questions=state.total_questions,
        non_compliance_count=len(classify(responses, questions).non_compliances),
    )


@router.delete("/{session_id}")
async def delete_session(
    organization_id: uuid.UUID,
    session_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
):
    """Delete a session with its responses, report and evidence files"""
    session = await store.get_session(db, organization_id, session_id)

    ledger = ResponseLedger(db)
    await ledger.delete_for_session(session.id, commit=False)
    await db.delete(session)
    await store.commit(db, "delete audit session")

    session_dir = session_data_dir(organization_id, session_id)
    if session_dir.exists():
        shutil.rmtree(session_dir, ignore_errors=True)

    logger.info(f"Deleted session {session_id}")
    return {"status": "deleted"}


@router.get("/{session_id}/responses", response_model=List[ResponseRow])
async def list_responses(
    organization_id: uuid.UUID,
    session_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
):
    session = await store.get_session(db, organization_id, session_id)
    ledger = ResponseLedger(db)
    return [_response_row(r) for r in await ledger.list_by_session(session.id)]


@router.put("/{session_id}/responses/{question_id}", response_model=ResponseSaved)
async def save_response(
    organization_id: uuid.UUID,
    session_id: uuid.UUID,
    question_id: str,
    data: ResponseUpdate,
    db: AsyncSession = Depends(get_db),
):
    """
    Record an answer (status and/or notes) and refresh session progress.

    Omitted fields keep their stored value. Retrying after a failed save
    is safe: the write is an upsert on (session, question).
    """
    if data.status is None and data.notes is None:
        raise ValidationError("Provide status and/or notes")

    session, _, questions = await _load_execution_context(db, organization_id, session_id)
    _require_open(session)

    question = find_question(questions, question_id)
    if question is None:
        raise NotFoundError(f"Question not found in template: {question_id}")
    status = validate_response_status(question, data.status)

    ledger = ResponseLedger(db)
    response = await ledger.upsert(
        organization_id=organization_id,
        session_id=session.id,
        question_id=question.id,
        status=status,
        notes=data.notes,
    )
    state, _ = await _sync_progress(db, ledger, session, questions)

    return ResponseSaved(response=_response_row(response), session=_progress_out(state))


@router.post("/{session_id}/responses/{question_id}/evidence", response_model=ResponseSaved)
async def upload_evidence(
    organization_id: uuid.UUID,
    session_id: uuid.UUID,
    question_id: str,
    file: UploadFile = File(...),
    db: AsyncSession = Depends(get_db),
):
    """
    Attach an evidence file to a question.

    For file-type questions the uploaded filename is also the answer.
    """
    question_id = validate_question_id(question_id)
    filename = sanitize_filename(file.filename or "")

    session, _, questions = await _load_execution_context(db, organization_id, session_id)
    _require_open(session)

    question = find_question(questions, question_id)
    if question is None:
        raise NotFoundError(f"Question not found in template: {question_id}")

    # File questions store the filename as the answer
    status = validate_response_status(question, filename) if question.type == "file" else None

    target_dir = evidence_dir(organization_id, session.id, question.id)
    target_path = target_dir / filename
    relative_path = to_relative_path(target_path)
    if len(relative_path) > MAX_EVIDENCE_PATH_LENGTH:
        raise ValidationError("Evidence filename too long")

    ledger = ResponseLedger(db)
    previous = await ledger.get(session.id, question.id)
    previous_path = previous.evidence_path if previous else None

    target_dir.mkdir(parents=True, exist_ok=True)

    max_size = settings.MAX_EVIDENCE_SIZE_MB * 1024 * 1024
    total_size = 0
    async with aiofiles.open(target_path, "wb") as f:
        while chunk := await file.read(CHUNK_SIZE):
            total_size += len(chunk)
            if total_size > max_size:
                # Clean up partial file
                await f.close()
                target_path.unlink(missing_ok=True)
                raise HTTPException(
                    status_code=413,
                    detail=f"File too large. Maximum size is {settings.MAX_EVIDENCE_SIZE_MB} MB"
                )
            await f.write(chunk)

    try:
        response = await ledger.upsert(
            organization_id=organization_id,
            session_id=session.id,
            question_id=question.id,
            status=status,
            evidence_path=relative_path,
        )
    except PersistenceError:
        # No row points at the new file
        if previous_path != relative_path:
            target_path.unlink(missing_ok=True)
        raise

    if previous_path and previous_path != relative_path:
        to_absolute_path(previous_path).unlink(missing_ok=True)

    state, _ = await _sync_progress(db, ledger, session, questions)
    logger.info(f"Stored evidence {filename} ({total_size} bytes) for session {session.id}, question {question.id}")

    return ResponseSaved(response=_response_row(response), session=_progress_out(state))


@router.get("/{session_id}/responses/{question_id}/evidence")
async def download_evidence(
    organization_id: uuid.UUID,
    session_id: uuid.UUID,
    question_id: str,
    db: AsyncSession = Depends(get_db),
):
    """Serve the evidence file of a question with path traversal protection"""
    question_id = validate_question_id(question_id)
    session = await store.get_session(db, organization_id, session_id)

    ledger = ResponseLedger(db)
    response = await ledger.get(session.id, question_id)
    if not response or not response.evidence_path:
        raise NotFoundError("Evidence not found")

    base_dir = evidence_dir(organization_id, session.id, question_id).resolve()
    resolved_path = to_absolute_path(response.evidence_path).resolve()

    # Verify path is within the question's evidence dir (prevent traversal)
    if not resolved_path.is_relative_to(base_dir):
        raise ValidationError("Invalid file path")

    if not resolved_path.exists():
        raise NotFoundError("Evidence file not found")

    return FileResponse(path=resolved_path, filename=resolved_path.name)


@router.post("/{session_id}/submit", response_model=SessionResponse)
async def submit_session(
    organization_id: uuid.UUID,
    session_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
):
    """
    Finalize the session.

    Always forces Completed and stamps completion time, even below 100%
    (early submission). Submitting an already completed session is a no-op.
    """
    session, _, questions = await _load_execution_context(db, organization_id, session_id)
    if session.status == SessionStatus.COMPLETED and session.completed_at:
        return SessionResponse(**_session_fields(session))

    ledger = ResponseLedger(db)
    responses = await ledger.list_by_session(session.id)
    state = finalize(recompute(session.status, questions, responses), utcnow())
    await store.save_progress(db, session, state)

    logger.info(f"Session {session.id} submitted at {state.progress}%")
    return SessionResponse(**_session_fields(session))


@router.get("/{session_id}/summary", response_model=SessionSummary)
async def session_summary(
    organization_id: uuid.UUID,
    session_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
):
    """Compliance buckets, progress and risk score of a session"""
    session, _, questions = await _load_execution_context(db, organization_id, session_id)
    ledger = ResponseLedger(db)
    state, responses = await _sync_progress(db, ledger, session, questions)
    classification = classify(responses, questions)

    def _out(entries):
        return [
            ClassifiedOut(
                question_id=e.question_id,
                question_text=e.question_text,
                section=e.section,
                status=e.status,
                notes=e.notes,
            )
            for e in entries
        ]

    return SessionSummary(
        session_id=session.id,
        progress=_progress_out(state),
        compliant=_out(classification.compliant),
        warnings=_out(classification.warnings),
        non_compliances=_out(classification.non_compliances),
        risk_score=risk_score(classification.non_compliances),
    )
