from fastapi import APIRouter

from app.api.routes import templates, sessions, findings, reports

router = APIRouter()

ORG_PREFIX = "/organizations/{organization_id}"

router.include_router(
    templates.router,
    prefix=f"{ORG_PREFIX}/templates",
    tags=["templates"],
)
router.include_router(
    sessions.router,
    prefix=f"{ORG_PREFIX}/sessions",
    tags=["sessions"],
)
router.include_router(
    reports.router,
    prefix=f"{ORG_PREFIX}/sessions",
    tags=["reports"],
)
router.include_router(
    findings.router,
    prefix=f"{ORG_PREFIX}/findings",
    tags=["findings"],
)
