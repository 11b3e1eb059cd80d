"""
Shared fixtures for MindMap backend tests.

Every test gets a fresh database: a throw-away SQLite file (aiosqlite) by
default, or TEST_DATABASE_URL when set (e.g. a PostgreSQL test database).
Tables are created before and dropped after each test.  External services
(Ollama, moderation) are replaced by the fakes in ``tests/fakes.py``.
"""
from __future__ import annotations

import os
import tempfile
from typing import AsyncGenerator

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

# Override DATABASE_URL *before* any app module is imported, so that
# settings.DATABASE_URL and the global engine never point at a real database.
TEST_DATABASE_URL = os.environ.get("TEST_DATABASE_URL")
os.environ["DATABASE_URL"] = TEST_DATABASE_URL or (
    "sqlite+aiosqlite:///" + os.path.join(tempfile.gettempdir(), "mindmap_import.db")
)
os.environ["MODERATION_API_KEY"] = ""

from app.database import Base, get_db  # noqa: E402
from app.dependencies.services import (  # noqa: E402
    get_llm_service,
    get_moderation_service,
    get_pipeline_manager,
    get_session_factory,
)
from app.main import app  # noqa: E402
from app.services.chunking import ChunkingService  # noqa: E402
from app.services.content_validator import ContentValidator  # noqa: E402
from app.services.mindmap_generator import KnowledgeStructuringEngine  # noqa: E402
from app.services.pipeline import DocumentPipeline  # noqa: E402
from app.services.pipeline_manager import PipelineManager  # noqa: E402
from app.services.quiz_generator import AssessmentGenerator  # noqa: E402
from app.services.text_extractor import TextExtractor  # noqa: E402
from tests.fakes import FLASHCARDS, OUTLINE, QUESTIONS, FakeLLM, FakeModeration, as_json  # noqa: E402


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def engine(tmp_path):
    url = TEST_DATABASE_URL or f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"
    test_engine = create_async_engine(url, echo=False, poolclass=NullPool)

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await test_engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine) -> async_sessionmaker:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def fake_llm() -> FakeLLM:
    return FakeLLM(
        outline=as_json(OUTLINE),
        questions=as_json(QUESTIONS),
        flashcards=as_json(FLASHCARDS),
    )


@pytest_asyncio.fixture
async def fake_moderation() -> FakeModeration:
    return FakeModeration()


@pytest_asyncio.fixture
async def manager() -> AsyncGenerator[PipelineManager, None]:
    pipeline_manager = PipelineManager(max_concurrent=2)
    yield pipeline_manager
    await pipeline_manager.shutdown()


@pytest_asyncio.fixture
async def pipeline(session_factory, fake_llm, fake_moderation, manager) -> DocumentPipeline:
    chunker = ChunkingService(chunk_size=60)
    return DocumentPipeline(
        session_factory=session_factory,
        extractor=TextExtractor(),
        validator=ContentValidator(fake_moderation),
        structuring=KnowledgeStructuringEngine(fake_llm, chunker),
        assessment=AssessmentGenerator(fake_llm),
        manager=manager,
        chunker=chunker,
    )


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def client(
    session_factory, fake_llm, fake_moderation, manager
) -> AsyncGenerator[AsyncClient, None]:
    """
    httpx AsyncClient wired to the FastAPI app with the database and every
    external service overridden.
    """

    async def _override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_llm_service] = lambda: fake_llm
    app.dependency_overrides[get_moderation_service] = lambda: fake_moderation
    app.dependency_overrides[get_pipeline_manager] = lambda: manager

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
