"""
Template flattening.

Templates are stored as nested sections, each holding an ordered list of
questions. Audit execution, progress and findings all work on a flat,
order-preserving question list tagged with the originating section name;
the position in that list is the user-facing module index ("Module 3 of 12").
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional

logger = logging.getLogger(__name__)

QUESTION_TYPES = ("yes-no", "text", "score", "file")
DEFAULT_QUESTION_TYPE = "yes-no"


@dataclass(frozen=True)
class FlatQuestion:
    """A question in flattened order, with its section context"""

    id: str
    text: str
    type: str
    section: str
    index: int  # 0-based position in the flattened list


def _sections_of(template: Any) -> Any:
    if template is None:
        return []
    if isinstance(template, Mapping):
        return template.get("sections")
    if isinstance(template, (list, tuple)):
        return template
    return getattr(template, "sections", None)


def flatten(template: Any) -> tuple[FlatQuestion, ...]:
    """
    Flatten a template into questions in section order, then question order.

    Accepts an AuditTemplate row, a mapping with a "sections" key or a bare
    list of sections. Partially-authored templates never fail: a missing or
    malformed section/question list counts as empty, questions without an id
    are skipped, and a duplicated id keeps its first occurrence.
    """
    sections = _sections_of(template)
    if not isinstance(sections, (list, tuple)):
        if sections is not None:
            logger.warning(f"Template sections malformed ({type(sections).__name__}), treating as empty")
        return ()

    flat: list[FlatQuestion] = []
    seen: set[str] = set()

    for section_pos, section in enumerate(sections):
        if not isinstance(section, Mapping):
            logger.warning(f"Skipping malformed section at position {section_pos}")
            continue

        section_name = str(section.get("name") or "")
        questions = section.get("questions")
        if not isinstance(questions, (list, tuple)):
            continue

        for question in questions:
            if not isinstance(question, Mapping):
                logger.warning(f"Skipping malformed question in section '{section_name}'")
                continue

            raw_id = question.get("id")
            if raw_id is None or str(raw_id) == "":
                logger.warning(f"Skipping question without id in section '{section_name}'")
                continue

            question_id = str(raw_id)
            if question_id in seen:
                logger.warning(f"Duplicate question id '{question_id}' in section '{section_name}', keeping first")
                continue
            seen.add(question_id)

            flat.append(
                FlatQuestion(
                    id=question_id,
                    text=str(question.get("text") or ""),
                    type=str(question.get("type") or DEFAULT_QUESTION_TYPE),
                    section=section_name,
                    index=len(flat),
                )
            )

    return tuple(flat)


def question_index(questions: Iterable[FlatQuestion]) -> dict[str, FlatQuestion]:
    """Map question id -> FlatQuestion"""
    return {q.id: q for q in questions}


def find_question(questions: Iterable[FlatQuestion], question_id: str) -> Optional[FlatQuestion]:
    for q in questions:
        if q.id == question_id:
            return q
    return None
