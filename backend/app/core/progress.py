"""
Session progress engine.

Pure functions deriving session-level state from the response rows:

- progress / status (`recompute`, `finalize`)
- compliance buckets for findings and narrative reports (`classify`)
- the cosmetic risk score (`risk_score`)

Responses are duck-typed: anything with `question_id`, `status` and `notes`
attributes works (AuditResponse rows, ResponseRecord values, mocks).
The response rows are the source of truth; the session's stored
progress/status are a cache of `recompute` output.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Optional, Sequence

from app.core.flatten import FlatQuestion, question_index

logger = logging.getLogger(__name__)


class SessionStatus(str, Enum):
    PENDING = "Pending"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"


class ResponseStatus(str, Enum):
    """Status values of yes/no questions; other types store free-form answers"""
    COMPLIANCE = "compliance"
    WARNING = "warning"
    NON_COMPLIANCE = "non-compliance"


class ResolutionState(str, Enum):
    OPEN = "Open"
    RESOLVED = "Resolved"


FINDING_STATUSES = (ResponseStatus.WARNING.value, ResponseStatus.NON_COMPLIANCE.value)
RISK_POINTS_PER_NON_COMPLIANCE = 10


@dataclass(frozen=True)
class ResponseRecord:
    """Immutable response value"""

    question_id: str
    status: str = ""
    notes: Optional[str] = None


@dataclass(frozen=True)
class ProgressState:
    progress: int
    status: SessionStatus
    answered_count: int
    total_questions: int
    completed_at: Optional[datetime] = None


@dataclass(frozen=True)
class ClassifiedResponse:
    question_id: str
    question_text: str
    section: str
    status: str
    notes: Optional[str] = None


@dataclass(frozen=True)
class Classification:
    compliant: list[ClassifiedResponse] = field(default_factory=list)
    warnings: list[ClassifiedResponse] = field(default_factory=list)
    non_compliances: list[ClassifiedResponse] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.compliant) + len(self.warnings) + len(self.non_compliances)


def _status_value(status: Any) -> str:
    if status is None:
        return ""
    if isinstance(status, Enum):
        return str(status.value)
    return str(status)


def is_answered(response: Any) -> bool:
    return _status_value(getattr(response, "status", None)).strip() != ""


def compute_progress(answered_count: int, total_questions: int) -> int:
    """
    Percentage of answered questions, rounded half-up and clamped to [0, 100].

    A template with zero questions yields 0.
    """
    if total_questions <= 0 or answered_count <= 0:
        return 0
    # Integer half-up rounding of 100 * answered / total
    pct = (200 * answered_count + total_questions) // (2 * total_questions)
    return max(0, min(100, pct))


def count_answered(questions: Iterable[FlatQuestion], responses: Iterable[Any]) -> int:
    """Answered responses whose question is still part of the template"""
    known = {q.id for q in questions}
    answered = {
        r.question_id for r in responses
        if r.question_id in known and is_answered(r)
    }
    return len(answered)


def recompute(
    current_status: SessionStatus | str,
    questions: Sequence[FlatQuestion],
    responses: Iterable[Any],
) -> ProgressState:
    """
    Derive {progress, status} from the response set.

    Stale responses for questions no longer in the template are ignored.
    A Completed session stays Completed (it is locked once finalized); when
    nothing is answered the status is left unchanged.
    """
    current = SessionStatus(_status_value(current_status) or SessionStatus.PENDING.value)
    total = len(questions)
    answered = count_answered(questions, responses)
    progress = compute_progress(answered, total)

    if current == SessionStatus.COMPLETED or progress == 100:
        status = SessionStatus.COMPLETED
    elif answered > 0:
        status = SessionStatus.IN_PROGRESS
    else:
        status = current

    return ProgressState(
        progress=progress,
        status=status,
        answered_count=answered,
        total_questions=total,
    )


def finalize(state: ProgressState, now: datetime) -> ProgressState:
    """Explicit submit: force Completed regardless of progress and stamp completion time"""
    return ProgressState(
        progress=state.progress,
        status=SessionStatus.COMPLETED,
        answered_count=state.answered_count,
        total_questions=state.total_questions,
        completed_at=now,
    )


def classify(responses: Iterable[Any], questions: Sequence[FlatQuestion]) -> Classification:
    """
    Partition responses into compliant / warnings / non_compliances.

    Every response whose question id resolves against `questions` lands in
    exactly one bucket; unresolvable ones are dropped. Buckets follow the
    flattened question order.
    """
    index = question_index(questions)
    resolved: list[tuple[int, ClassifiedResponse]] = []
    dropped = 0

    for r in responses:
        q = index.get(r.question_id)
        if q is None:
            dropped += 1
            logger.warning(f"Response for unknown question '{r.question_id}' ignored")
            continue
        resolved.append((
            q.index,
            ClassifiedResponse(
                question_id=q.id,
                question_text=q.text,
                section=q.section,
                status=_status_value(r.status),
                notes=getattr(r, "notes", None),
            ),
        ))

    result = Classification()
    for _, entry in sorted(resolved, key=lambda item: item[0]):
        if entry.status == ResponseStatus.NON_COMPLIANCE.value:
            result.non_compliances.append(entry)
        elif entry.status == ResponseStatus.WARNING.value:
            result.warnings.append(entry)
        else:
            result.compliant.append(entry)

    if dropped:
        logger.warning(f"classify dropped {dropped} response(s) with unresolvable question ids")
    return result


def risk_score(responses: Iterable[Any]) -> int:
    non_compliances = sum(
        1 for r in responses
        if _status_value(getattr(r, "status", None)) == ResponseStatus.NON_COMPLIANCE.value
    )
    return RISK_POINTS_PER_NON_COMPLIANCE * non_compliances


def responses_by_question(responses: Iterable[Any]) -> dict[str, dict[str, Any]]:
    """Keyed view {question_id: {status, notes, evidence_path}} computed from the rows"""
    return {
        r.question_id: {
            "status": _status_value(r.status),
            "notes": getattr(r, "notes", None),
            "evidence_path": getattr(r, "evidence_path", None),
        }
        for r in responses
    }
