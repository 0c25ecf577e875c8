"""
Pytest configuration and shared fixtures for all tests.

This module provides:
- Database session fixtures on in-memory SQLite
- Mock services (storage, redis, AI provider)
- Sample data factories (estimates, sections, workbooks)
"""

import io
import os
from collections.abc import AsyncGenerator
from typing import Any, Optional
from uuid import uuid4

import pytest
import pytest_asyncio
from sqlalchemy import JSON
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# Set test environment variables BEFORE importing app modules
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
os.environ.setdefault("S3_ENDPOINT_URL", "http://localhost:9000")
os.environ.setdefault("S3_ACCESS_KEY", "test_access_key")
os.environ.setdefault("S3_SECRET_KEY", "test_secret_key")
os.environ.setdefault("S3_BUCKET_NAME", "test-bucket")
os.environ.setdefault("LOG_DIR", "/tmp/test_logs")

# Monkey-patch JSONB to use JSON for SQLite compatibility
# This must be done before importing any models
from sqlalchemy.dialects import postgresql  # noqa: E402

postgresql.JSONB = JSON

from estimator.app.config import Settings  # noqa: E402
from estimator.app.domains.classification.llm_provider import (  # noqa: E402
    LLMProvider,
    LLMProviderError,
)
from estimator.app.domains.classification.models import NormativeRate  # noqa: E402, F401
from estimator.app.domains.estimate.models import (  # noqa: E402
    Estimate,
    EstimateSection,
)
from estimator.app.domains.estimate_import.models import ImportSession  # noqa: E402, F401
from estimator.app.domains.job.models import Job  # noqa: E402, F401
from estimator.app.infrastructure.database import Base  # noqa: E402

# ============================================================================
# Test Settings
# ============================================================================


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings with in-memory database."""
    return Settings(
        app_env="test",
        database_url="sqlite+aiosqlite:///:memory:",
        redis_url="redis://localhost:6379/15",
        s3_endpoint_url="http://localhost:9000",
        s3_access_key="test_access_key",
        s3_secret_key="test_secret_key",
        s3_bucket_name="test-bucket",
        log_dir="/tmp/test_logs",
        ai_classification_enabled=False,
    )


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest_asyncio.fixture
async def async_engine():
    """Create async SQLite engine for testing."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture
async def session_maker(async_engine):
    return async_sessionmaker(
        bind=async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db_session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session with automatic rollback after each test."""
    async with session_maker() as session:
        yield session
        await session.rollback()


# ============================================================================
# Mock Storage Fixture
# ============================================================================


class MockStorageService:
    """In-memory mock for S3 storage service."""

    def __init__(self):
        self._files: dict[str, bytes] = {}
        self.fail_on_put = False
        self.put_calls: list[str] = []
        self.deleted: list[str] = []

    def put(self, key: str, data: bytes, content_type: str | None = None) -> str:
        self.put_calls.append(key)
        if self.fail_on_put:
            raise OSError(f"simulated storage failure for {key}")
        self._files[key] = data
        return key

    def get(self, key: str) -> bytes | None:
        return self._files.get(key)

    def exists(self, key: str) -> bool:
        return key in self._files

    def delete(self, key: str) -> bool:
        self.deleted.append(key)
        if key in self._files:
            del self._files[key]
            return True
        return False

    def upload_import_source(self, estimate_id, session_id, file_name: str, data: bytes) -> str:
        suffix = file_name.rsplit(".", 1)[-1].lower() if "." in file_name else "xlsx"
        key = f"imports/{estimate_id}/{session_id}/source.{suffix}"
        return self.put(key, data)

    @property
    def keys(self) -> list[str]:
        return sorted(self._files)

    def clear(self):
        """Clear all stored files."""
        self._files.clear()


@pytest.fixture
def mock_storage() -> MockStorageService:
    """Provide a mock storage service."""
    return MockStorageService()


# ============================================================================
# Mock Redis Fixture
# ============================================================================


class MockRedisClient:
    """In-memory mock for Redis client."""

    def __init__(self):
        self._notifications: list[tuple] = []
        self._workers: dict[str, float] = {}
        self._locks: dict[str, str] = {}

    def notify_job_created(self, job_id, job_type: str):
        self._notifications.append((str(job_id), job_type))

    def register_worker(self, worker_id: str, ttl_seconds: int = 60):
        import time

        self._workers[worker_id] = time.time() + ttl_seconds

    def heartbeat(self, worker_id: str, ttl_seconds: int = 60):
        import time

        self._workers[worker_id] = time.time() + ttl_seconds

    def get_active_workers(self) -> list[str]:
        import time

        now = time.time()
        return [w for w, exp in self._workers.items() if exp > now]

    def acquire_lock(self, lock_name: str, ttl_seconds: int = 60) -> str | None:
        if lock_name in self._locks:
            return None
        token = str(uuid4())
        self._locks[lock_name] = token
        return token

    def release_lock(self, lock_name: str, token: str) -> bool:
        if self._locks.get(lock_name) == token:
            del self._locks[lock_name]
            return True
        return False

    def clear(self):
        self._notifications.clear()
        self._workers.clear()
        self._locks.clear()


@pytest.fixture
def mock_redis() -> MockRedisClient:
    """Provide a mock Redis client."""
    return MockRedisClient()


# ============================================================================
# Fake AI Provider
# ============================================================================


class FakeLLMProvider(LLMProvider):
    """Scripted provider: returns ``content`` or raises ``error``; records prompts."""

    def __init__(self, content: str = "{}", error: Optional[Exception] = None):
        self.content = content
        self.error = error
        self.calls: list[list[dict[str, Any]]] = []

    @property
    def name(self) -> str:
        return "fake"

    async def chat(
        self,
        messages: list[dict[str, Any]],
        temperature: float = 0.1,
        max_tokens: int = 2000,
    ) -> dict[str, Any]:
        self.calls.append(messages)
        if self.error is not None:
            raise self.error
        return {"content": self.content}


@pytest.fixture
def fake_provider() -> FakeLLMProvider:
    return FakeLLMProvider()


@pytest.fixture
def failing_provider() -> FakeLLMProvider:
    return FakeLLMProvider(error=LLMProviderError("provider timed out", "fake"))


# ============================================================================
# Repository Fixtures
# ============================================================================


@pytest_asyncio.fixture
async def structure_repository(db_session):
    from estimator.app.domains.estimate.repository import EstimateStructureRepository

    return EstimateStructureRepository(db_session)


@pytest_asyncio.fixture
async def job_repository(db_session):
    from estimator.app.domains.job.repository import JobRepository

    return JobRepository(db_session)


@pytest_asyncio.fixture
async def normative_repository(db_session):
    from estimator.app.domains.classification.repository import NormativeRepository

    return NormativeRepository(db_session)


@pytest_asyncio.fixture
async def import_session_repository(db_session):
    from estimator.app.domains.estimate_import.repository import ImportSessionRepository

    return ImportSessionRepository(db_session)


# ============================================================================
# Service Fixtures
# ============================================================================


@pytest_asyncio.fixture
async def job_service(job_repository):
    from estimator.app.domains.job.service import JobService

    return JobService(job_repository)


@pytest_asyncio.fixture
async def section_service(structure_repository, job_service):
    from estimator.app.domains.estimate.service import EstimateSectionService

    return EstimateSectionService(structure_repository, job_service)


# ============================================================================
# Sample Data Factories
# ============================================================================


@pytest_asyncio.fixture
async def estimate(structure_repository) -> Estimate:
    return await structure_repository.create_estimate(
        Estimate(name="Residential block, stage 1", organization_id=7)
    )


@pytest.fixture
def make_section(section_service, estimate):
    """Create a section through the service so numbering hooks run."""
    from estimator.app.domains.estimate.schemas import SectionCreate

    async def _create(
        name: str,
        parent: Optional[EstimateSection] = None,
        sort_order: Optional[int] = None,
    ) -> EstimateSection:
        return await section_service.create_section(
            estimate.id,
            SectionCreate(
                name=name,
                parent_section_id=parent.id if parent else None,
                sort_order=sort_order,
            ),
        )

    return _create


@pytest.fixture
def workbook_bytes():
    """Build an xlsx workbook in memory from a header and rows."""
    from openpyxl import Workbook

    def _create(rows: list[list[Any]], header: Optional[list[str]] = None, preamble: int = 0):
        workbook = Workbook()
        sheet = workbook.active
        sheet.title = "Смета"
        for index in range(preamble):
            sheet.append([f"Локальный сметный расчет, строка {index + 1}"])
        sheet.append(
            header
            or ["№ п/п", "Шифр расценки", "Наименование работ", "Ед. изм.", "Количество", "Цена"]
        )
        for row in rows:
            sheet.append(row)
        buffer = io.BytesIO()
        workbook.save(buffer)
        return buffer.getvalue()

    return _create


# ============================================================================
# Pytest Configuration
# ============================================================================


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line("markers", "integration: marks tests as integration tests")
