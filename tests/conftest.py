"""
Pytest configuration and fixtures for SiteAudit tests.
"""
import os
import uuid
from datetime import datetime, timezone
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Must be set before any siteaudit module reads settings
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"
os.environ["DATABASE_URL"] = TEST_DATABASE_URL
os.environ["AUDIT_WEBHOOK_URL"] = ""
os.environ["NARRATIVE_ANALYZER_URL"] = ""

from fixtures.sample_signals import (  # noqa: E402
    SITE_FACTS_ALL_PRESENT,
    perfect_page,
    scenario_a_page,
    scenario_b_page,
    sparse_page,
)
from siteaudit.database import get_db  # noqa: E402
from siteaudit.models.audit import AuditStatus  # noqa: E402
from siteaudit.models.base import Base  # noqa: E402
from siteaudit.schemas.audit import AuditJobRecord  # noqa: E402
from siteaudit.schemas.signals import PageSignals, SiteFacts  # noqa: E402
from siteaudit.services.rule_engine import RuleEngine, RuleThresholds  # noqa: E402


# ============================================================================
# Database Fixtures
# ============================================================================

@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """Create a test database engine."""
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


@pytest.fixture(scope="function")
def session_maker(test_engine) -> async_sessionmaker:
    """Session maker bound to the test engine (what Celery tasks receive)."""
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async with session_maker() as session:
        yield session
        await session.rollback()


# ============================================================================
# FastAPI App Fixtures
# ============================================================================

@pytest.fixture(scope="function")
def app(db_session: AsyncSession) -> FastAPI:
    """Create test FastAPI application."""
    from siteaudit.main import app as main_app

    async def override_get_db():
        yield db_session

    main_app.dependency_overrides[get_db] = override_get_db

    yield main_app

    main_app.dependency_overrides.clear()


@pytest_asyncio.fixture(scope="function")
async def async_client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Create async test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# ============================================================================
# Signal Fixtures
# ============================================================================

@pytest.fixture
def default_thresholds() -> RuleThresholds:
    """Thresholds pinned to the documented defaults, independent of the environment."""
    return RuleThresholds()


@pytest.fixture
def engine(default_thresholds) -> RuleEngine:
    return RuleEngine(default_thresholds)


@pytest.fixture
def perfect_signals() -> PageSignals:
    return PageSignals.model_validate(perfect_page())


@pytest.fixture
def scenario_a_signals() -> PageSignals:
    return PageSignals.model_validate(scenario_a_page())


@pytest.fixture
def scenario_b_signals() -> PageSignals:
    return PageSignals.model_validate(scenario_b_page())


@pytest.fixture
def sparse_signals() -> PageSignals:
    return PageSignals.model_validate(sparse_page())


@pytest.fixture
def site_facts() -> SiteFacts:
    return SiteFacts.model_validate(SITE_FACTS_ALL_PRESENT)


# ============================================================================
# Job Fixtures
# ============================================================================

def make_job(**overrides) -> AuditJobRecord:
    data = {
        "id": uuid.uuid4(),
        "client_id": "client-1",
        "target_url": "https://example.com",
        "status": AuditStatus.QUEUED,
        "created_at": datetime.now(timezone.utc),
    }
    data.update(overrides)
    return AuditJobRecord(**data)


@pytest.fixture
def queued_job() -> AuditJobRecord:
    return make_job()
