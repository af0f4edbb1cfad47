"""
Audit template management routes
"""
import logging
import uuid
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from app.db import get_db
from app.db import store
from app.db.models import AuditTemplate
from app.core.errors import ValidationError
from app.core.flatten import flatten
from app.api.validation import normalize_sections

logger = logging.getLogger(__name__)

router = APIRouter()


# === Schemas ===

class QuestionIn(BaseModel):
    id: Optional[str] = None
    text: str = ""
    type: Literal["yes-no", "text", "score", "file"] = "yes-no"


class SectionIn(BaseModel):
    name: str = ""
    questions: List[QuestionIn] = Field(default_factory=list)


class TemplateCreate(BaseModel):
    name: str
    category: Optional[str] = None
    description: Optional[str] = None
    is_active: bool = True
    sections: List[SectionIn] = Field(default_factory=list)
    created_by: Optional[str] = None


class TemplateUpdate(BaseModel):
    name: Optional[str] = None
    category: Optional[str] = None
    description: Optional[str] = None
    is_active: Optional[bool] = None
    sections: Optional[List[SectionIn]] = None


class TemplateResponse(BaseModel):
    id: uuid.UUID
    organization_id: uuid.UUID
    name: str
    category: Optional[str]
    description: Optional[str]
    version: int
    is_active: bool
    sections: list
    question_count: int
    created_at: str
    updated_at: str
    warnings: List[str] = Field(default_factory=list)


def _template_response(template: AuditTemplate, warnings: Optional[List[str]] = None) -> TemplateResponse:
    return TemplateResponse(
        id=template.id,
        organization_id=template.organization_id,
        name=template.name,
        category=template.category,
        description=template.description,
        version=template.version,
        is_active=template.is_active,
        sections=template.sections or [],
        question_count=len(flatten(template)),
        created_at=template.created_at.isoformat(),
        updated_at=template.updated_at.isoformat(),
        warnings=warnings or [],
    )


def _require_name(name: str) -> str:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Template name is required")
    return name


# === Routes ===

@router.post("", response_model=TemplateResponse, status_code=201)
async def create_template(
    organization_id: uuid.UUID,
    data: TemplateCreate,
    db: AsyncSession = Depends(get_db),
):
    """Create a new audit template"""
    template = AuditTemplate(
        organization_id=organization_id,
        name=_require_name(data.name),
        category=data.category,
        description=data.description,
        is_active=data.is_active,
        sections=normalize_sections(s.model_dump() for s in data.sections),
        created_by=data.created_by,
        version=1,
    )
    db.add(template)
    await store.commit(db, "create template")
    await db.refresh(template)

    logger.info(f"Created template {template.id} '{template.name}' for organization {organization_id}")
    return _template_response(template)


@router.get("", response_model=List[TemplateResponse])
async def list_templates(
    organization_id: uuid.UUID,
    active: Optional[bool] = None,
    category: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
):
    """List templates of an organization, newest first"""
    templates = await store.list_templates(db, organization_id, active=active, category=category)
    return [_template_response(t) for t in templates]


@router.get("/{template_id}", response_model=TemplateResponse)
async def get_template(
    organization_id: uuid.UUID,
    template_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
):
    """Get template by ID"""
    template = await store.get_template(db, organization_id, template_id)
    return _template_response(template)


@router.patch("/{template_id}", response_model=TemplateResponse)
async def update_template(
    organization_id: uuid.UUID,
    template_id: uuid.UUID,
    data: TemplateUpdate,
    db: AsyncSession = Depends(get_db),
):
    """
    Update a template and bump its version.

    Sessions keep referencing the template by id, so changing the question
    set of a template that already has sessions changes how those sessions
    are evaluated. This is allowed but reported as a warning.
    """
    template = await store.get_template(db, organization_id, template_id)
    warnings: List[str] = []

    if data.name is not None:
        template.name = _require_name(data.name)
    if data.category is not None:
        template.category = data.category
    if data.description is not None:
        template.description = data.description
    if data.is_active is not None:
        template.is_active = data.is_active
    if data.sections is not None:
        template.sections = normalize_sections(s.model_dump() for s in data.sections)
        session_count = await store.count_sessions_for_template(db, template.id)
        if session_count:
            warning = (
                f"Template is used by {session_count} audit session(s); "
                "their progress and findings are now evaluated against the new question set"
            )
            logger.warning(f"Template {template.id} questions edited with existing sessions: {warning}")
            warnings.append(warning)

    template.version = (template.version or 1) + 1

    await store.commit(db, "update template")
    await db.refresh(template)
    return _template_response(template, warnings)


@router.delete("/{template_id}")
async def delete_template(
    organization_id: uuid.UUID,
    template_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
):
    """Delete a template that no session references"""
    template = await store.get_template(db, organization_id, template_id)

    session_count = await store.count_sessions_for_template(db, template.id)
    if session_count:
        raise ValidationError(
            f"Template is used by {session_count} audit session(s); delete them or deactivate the template"
        )

    await db.delete(template)
    await store.commit(db, "delete template")
    return {"status": "deleted"}
