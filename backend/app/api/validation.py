"""
Shared validation helpers for API routes.
"""

from __future__ import annotations

import os
import re
import uuid
from typing import AbstractSet, Any, Iterable, Mapping, Optional

from app.core.errors import ValidationError
from app.core.flatten import FlatQuestion, QUESTION_TYPES
from app.core.progress import FINDING_STATUSES, ResponseStatus, SessionStatus

# Status values accepted for yes/no questions ("" clears the answer)
YES_NO_STATUSES: AbstractSet[str] = frozenset(
    [""] + [s.value for s in ResponseStatus]
)

# Question ids double as evidence directory names
QUESTION_ID_PATTERN = re.compile(r"^[A-Za-z0-9_\-]{1,100}$")

# Filename pattern: allow dots in basename, enforce extension, forbid path separators.
FILENAME_PATTERN = re.compile(r"^[\w.\-]+\.[a-z0-9]+$", re.IGNORECASE)

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

MAX_ANSWER_LENGTH = 255
MAX_EVIDENCE_PATH_LENGTH = 500
MAX_FILENAME_LENGTH = 200


def new_question_id() -> str:
    return f"q-{uuid.uuid4().hex[:12]}"


def validate_question_id(question_id: str) -> str:
    question_id = (question_id or "").strip()
    if not QUESTION_ID_PATTERN.match(question_id):
        raise ValidationError(f"Invalid question id: {question_id!r}")
    return question_id


def normalize_sections(sections: Iterable[Mapping[str, Any]]) -> list[dict]:
    """
    Normalize template sections for storage.

    - assigns ids to questions that have none
    - rejects question ids duplicated anywhere in the template
      (responses are keyed by question id alone)
    - rejects unknown question types
    """
    normalized: list[dict] = []
    seen: set[str] = set()

    for section in sections:
        questions = []
        for question in section.get("questions") or []:
            raw_id = question.get("id")
            question_id = validate_question_id(raw_id) if raw_id else new_question_id()
            if question_id in seen:
                raise ValidationError(f"Duplicate question id in template: {question_id}")
            seen.add(question_id)

            q_type = question.get("type") or "yes-no"
            if q_type not in QUESTION_TYPES:
                raise ValidationError(f"Unsupported question type: {q_type}")

            questions.append({
                "id": question_id,
                "text": (question.get("text") or "").strip(),
                "type": q_type,
            })

        normalized.append({
            "name": (section.get("name") or "").strip(),
            "questions": questions,
        })

    return normalized


def validate_response_status(question: FlatQuestion, status: Optional[str]) -> Optional[str]:
    """
    Yes/no questions only take compliance statuses; other types hold a
    free-form answer value.
    """
    if status is None:
        return None
    status = status.strip()
    if question.type == "yes-no" and status not in YES_NO_STATUSES:
        allowed = ", ".join(s.value for s in ResponseStatus)
        raise ValidationError(f"Invalid status '{status}' for yes/no question. Allowed: {allowed}")
    if len(status) > MAX_ANSWER_LENGTH:
        raise ValidationError(f"Answer too long (max {MAX_ANSWER_LENGTH} characters)")
    return status


def validate_session_status(status: str) -> SessionStatus:
    try:
        return SessionStatus(status)
    except ValueError:
        allowed = ", ".join(s.value for s in SessionStatus)
        raise ValidationError(f"Invalid session status: {status}. Allowed: {allowed}")


def validate_finding_status(status: str) -> str:
    if status not in FINDING_STATUSES:
        raise ValidationError(f"Invalid finding status: {status}. Allowed: {', '.join(FINDING_STATUSES)}")
    return status


def validate_email(email: Optional[str]) -> Optional[str]:
    if email is None:
        return None
    email = email.strip()
    if not email:
        return None
    if not EMAIL_PATTERN.match(email):
        raise ValidationError(f"Invalid email address: {email}")
    return email


def sanitize_filename(filename: str) -> str:
    """
    Sanitize filename to prevent path traversal.

    Allows dots in the basename to support names like:
    - fire-exit.photo.jpg
    - checklist_v2.pdf
    """
    raw = (filename or "").strip()

    # Get only the basename, removing any directory components
    basename = os.path.basename(raw)

    # Reject any path separators / directory components
    if not raw or basename != raw or "/" in raw or "\\" in raw:
        raise ValidationError("Invalid filename")

    if len(basename) > MAX_FILENAME_LENGTH:
        raise ValidationError(f"Filename too long (max {MAX_FILENAME_LENGTH} characters)")

    # Reject hidden files and suspicious patterns
    if basename.startswith(".") or ".." in basename:
        raise ValidationError("Invalid filename")

    # Allow alphanumeric, underscore, hyphen, dot, plus extension
    if not FILENAME_PATTERN.match(basename):
        raise ValidationError("Invalid filename format")

    return basename
