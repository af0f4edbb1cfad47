"""
Test configuration and fixtures
"""
import os
import uuid
from datetime import date
from typing import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

# Set test environment
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["DATA_DIR"] = "/tmp/test_data"
os.environ["LLM_API_KEY"] = "test-key"
os.environ["SMTP_HOST"] = ""
os.environ["NOTIFY_VIA_WORKER"] = "false"
os.environ["PUBLIC_APP_URL"] = "https://audits.example.com"
os.environ["DEBUG"] = "false"

from app.db.database import Base, get_db
from app.main import app
from app.db.models import AuditTemplate, AuditSession, AuditResponse
from app.core.progress import SessionStatus


# Test database setup
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

ORG_ID = uuid.UUID("6b1f9a52-3c1e-4d8e-9a57-2f0c7d4b8e11")
OTHER_ORG_ID = uuid.UUID("0d3c5e7a-91b2-4f6c-8d0e-a1b2c3d4e5f6")

SAMPLE_SECTIONS = [
    {
        "name": "Fire Safety",
        "questions": [
            {"id": "q1", "text": "Are fire exits clear?", "type": "yes-no"},
            {"id": "q2", "text": "Are extinguishers inspected?", "type": "yes-no"},
        ],
    },
    {
        "name": "Records",
        "questions": [
            {"id": "q3", "text": "Is the training log up to date?", "type": "yes-no"},
            {"id": "q4", "text": "Are permits displayed?", "type": "yes-no"},
        ],
    },
]


@pytest.fixture
def org_id() -> uuid.UUID:
    return ORG_ID


@pytest.fixture
def other_org_id() -> uuid.UUID:
    return OTHER_ORG_ID


@pytest.fixture
def org_url():
    """Build an organization-scoped API path"""
    def _url(path: str = "", organization_id: uuid.UUID = ORG_ID) -> str:
        return f"/api/organizations/{organization_id}{path}"
    return _url


@pytest_asyncio.fixture(scope="function")
async def async_engine():
    """Create async engine for tests"""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(async_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for tests"""
    async_session = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )

    async with async_session() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture(scope="function")
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Create test client with database session override"""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# === Sample Data Fixtures ===

@pytest_asyncio.fixture
async def sample_template(db_session: AsyncSession) -> AuditTemplate:
    """Template with 2 sections x 2 yes/no questions"""
    template = AuditTemplate(
        organization_id=ORG_ID,
        name="Warehouse Safety",
        category="Safety",
        description="Quarterly warehouse walk-through",
        sections=SAMPLE_SECTIONS,
    )
    db_session.add(template)
    await db_session.commit()
    await db_session.refresh(template)
    return template


@pytest_asyncio.fixture
async def sample_session(db_session: AsyncSession, sample_template: AuditTemplate) -> AuditSession:
    """Pending session launched from sample_template"""
    session = AuditSession(
        organization_id=ORG_ID,
        template_id=sample_template.id,
        template_name=sample_template.name,
        auditor_name="Dana Reyes",
        auditor_email="dana@example.com",
        department="Warehouse B",
        due_date=date(2026, 11, 1),
        status=SessionStatus.PENDING,
        progress=0,
    )
    db_session.add(session)
    await db_session.commit()
    await db_session.refresh(session)
    return session


@pytest_asyncio.fixture
async def sample_finding(db_session: AsyncSession, sample_session: AuditSession) -> AuditResponse:
    """Non-compliance response on q2"""
    response = AuditResponse(
        organization_id=ORG_ID,
        session_id=sample_session.id,
        question_id="q2",
        status="non-compliance",
        notes="Two extinguishers past inspection date",
    )
    db_session.add(response)
    await db_session.commit()
    await db_session.refresh(response)
    return response


# === Mock Fixtures ===

@pytest.fixture
def mock_openai_client():
    """Mock OpenAI client for report generation tests"""
    mock_response = MagicMock()
    mock_response.choices = [MagicMock()]
    mock_response.choices[0].message.content = "## Executive Summary\nOverall compliant."

    mock_client = AsyncMock()
    mock_client.chat.completions.create = AsyncMock(return_value=mock_response)
    return mock_client


@pytest.fixture
def mock_celery_task():
    """Mock Celery task for testing queued notifications"""
    mock_task = MagicMock()
    mock_task.apply_async = MagicMock(return_value=MagicMock(id="test-task-id-123"))
    return mock_task
