"""Pytest configuration and fixtures."""

import os

# Must be set before the application settings are imported
os.environ.setdefault("ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from collections.abc import AsyncGenerator, Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import StaticPool
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from clinical_access import models  # noqa: F401
from clinical_access.api.deps import get_document_source, get_notifier
from clinical_access.core.security import ACTOR_CLINIC, ACTOR_PATIENT, ACTOR_PROFESSIONAL
from clinical_access.db.base import Base
from clinical_access.db.session import get_db
from clinical_access.main import app
from clinical_access.repositories.memory import InMemoryAccessRequestRepository, InMemoryPolicyRepository
from clinical_access.services.audit import InMemoryAuditTrail
from clinical_access.services.policy_cache import PolicyCache, policy_cache
from tests.factories import (
    OTHER_PATIENT_CI,
    PATIENT_CI,
    PROFESSIONAL_ID,
    FakeClock,
    FakeDocumentSource,
    RecordingNotifier,
    auth_headers_for,
)

# Use SQLite for testing (simpler than spinning up postgres)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture(autouse=True)
def clear_policy_cache() -> Generator[None, None, None]:
    """The API uses the process-wide cache; start every test empty."""
    policy_cache.clear()
    yield
    policy_cache.clear()


@pytest.fixture(scope="function")
async def async_engine():
    """Create async test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
async def async_session(async_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for tests."""
    async_session_maker = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )

    async with async_session_maker() as session:
        yield session


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def document_source() -> FakeDocumentSource:
    return FakeDocumentSource()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def audit_trail() -> InMemoryAuditTrail:
    return InMemoryAuditTrail()


@pytest.fixture
def policy_repo() -> InMemoryPolicyRepository:
    return InMemoryPolicyRepository()


@pytest.fixture
def request_repo() -> InMemoryAccessRequestRepository:
    return InMemoryAccessRequestRepository()


@pytest.fixture
def cache() -> PolicyCache:
    """A private cache so service tests do not share state."""
    return PolicyCache(ttl_seconds=0)


@pytest.fixture(scope="function")
def client(
    async_session: AsyncSession,
    notifier: RecordingNotifier,
    document_source: FakeDocumentSource,
) -> Generator[TestClient, None, None]:
    """Create FastAPI test client with overridden dependencies."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield async_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_document_source] = lambda: document_source

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
def patient_headers() -> dict[str, str]:
    """Create authorization headers for the test patient."""
    return auth_headers_for(PATIENT_CI, ACTOR_PATIENT)


@pytest.fixture
def other_patient_headers() -> dict[str, str]:
    return auth_headers_for(OTHER_PATIENT_CI, ACTOR_PATIENT)


@pytest.fixture
def professional_headers() -> dict[str, str]:
    """Create authorization headers for the test professional."""
    return auth_headers_for(PROFESSIONAL_ID, ACTOR_PROFESSIONAL)


@pytest.fixture
def clinic_headers() -> dict[str, str]:
    return auth_headers_for("clinic-1", ACTOR_CLINIC)
