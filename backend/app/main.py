"""
FastAPI Application Entry Point
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.core.config import settings
from app.core.errors import AuditFlowError, PersistenceError
from app.db.database import dispose_engine
from app.api import router as api_router

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler"""
    # Startup
    print(f"🚀 Starting {settings.APP_NAME}")
    print(f"📁 Data directory: {settings.DATA_DIR}")

    # Ensure data directory exists (evidence uploads)
    settings.DATA_DIR.mkdir(parents=True, exist_ok=True)

    # NOTE: Database schema is managed by Alembic migrations.
    # Run `alembic upgrade head` before starting the app.

    yield

    # Shutdown
    await dispose_engine()
    print("👋 Shutting down")


app = FastAPI(
    title=settings.APP_NAME,
    description="Multi-tenant audit management",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS middleware - origins from env variable (comma-separated)
cors_origins = [origin.strip() for origin in settings.CORS_ORIGINS.split(",") if origin.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AuditFlowError)
async def audit_flow_error_handler(request: Request, exc: AuditFlowError):
    """Render domain errors as {"detail": message} with their mapped status"""
    if exc.status_code >= 500:
        logger.warning(f"{request.method} {request.url.path} failed: {exc.message}")

    body = {"detail": exc.message}
    if isinstance(exc, PersistenceError):
        body["retryable"] = True
    return JSONResponse(status_code=exc.status_code, content=body)


# API routes
app.include_router(api_router, prefix="/api")


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "app": settings.APP_NAME}
