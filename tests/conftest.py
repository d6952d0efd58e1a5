"""pytest fixtures for Vestis backend tests.

Provides:
- utc_timezone: Autouse fixture enforcing UTC timezone
- database_url: Per-test SQLite file by default, or a PostgreSQL testcontainer
  with migrations applied when TEST_POSTGRES=1
- session_factory / session / uow_factory: Database access for tests
- artifact_store, adapters, downloader: In-memory stand-ins for Supabase
  Storage, the provider adapters and the output download
- orchestrator: GenerationOrchestrator wired to the stand-ins above
- client: httpx AsyncClient bound to the FastAPI app through ASGITransport
"""

import os
import subprocess
from datetime import timedelta
from typing import AsyncGenerator, Optional

os.environ.setdefault("APP_ENV", "test")

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy import text  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import NullPool  # noqa: E402
from sqlmodel import SQLModel  # noqa: E402

from vestis.models.generation import GenerationType  # noqa: E402
from vestis.services.exceptions import StorageError  # noqa: E402
from vestis.services.generation.orchestrator import GenerationOrchestrator  # noqa: E402
from vestis.services.providers.base import GenerationInput, PollResult  # noqa: E402
from vestis.uow import create_uow_factory  # noqa: E402

USE_POSTGRES = os.environ.get("TEST_POSTGRES") == "1"

BUCKETS = {
    GenerationType.TRY_ON: "try-on-images",
    GenerationType.COMPOSITE: "composite-images",
}


@pytest.fixture(scope="session")
def postgres_container():
    """Provide session-scoped PostgreSQL container with migrations applied.

    Only started when TEST_POSTGRES=1. Migrations are applied using subprocess
    to avoid asyncio event loop conflicts.
    """
    from testcontainers.postgres import PostgresContainer

    with PostgresContainer(
        image="postgres:17",
        username="test",
        password="test",
        dbname="test_vestis",
    ) as container:
        db_url = container.get_connection_url(driver="psycopg")

        env = os.environ.copy()
        env["DATABASE_URL"] = db_url

        subprocess.run(
            ["alembic", "upgrade", "head"],
            check=True,
            capture_output=True,
            text=True,
            env=env,
        )

        yield container


@pytest.fixture(scope="session", autouse=True)
def utc_timezone():
    """Enforce UTC timezone for all tests."""
    os.environ["TZ"] = "UTC"
    yield


@pytest.fixture
def database_url(request, tmp_path) -> str:
    if USE_POSTGRES:
        container = request.getfixturevalue("postgres_container")
        return container.get_connection_url(driver="psycopg")
    return f"sqlite+aiosqlite:///{tmp_path / 'vestis.db'}"


@pytest_asyncio.fixture(scope="function")
async def session_factory(database_url: str) -> AsyncGenerator[async_sessionmaker, None]:
    """Provide a session factory over a fresh schema.

    SQLite files are created per test from SQLModel metadata. PostgreSQL
    tables come from the migrations and are emptied after each test.
    """
    engine = create_async_engine(database_url, poolclass=NullPool)
    if not USE_POSTGRES:
        async with engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)

    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    yield factory

    if USE_POSTGRES:
        async with factory() as cleanup:
            await cleanup.execute(text("DELETE FROM generations"))
            await cleanup.commit()
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Provide function-scoped database session."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture(scope="function")
async def uow_factory(session_factory):
    """Provide function-scoped UnitOfWork factory."""
    return create_uow_factory(session_factory)


class FakeArtifactStore:
    """In-memory artifact store keyed by (bucket, path)."""

    def __init__(self):
        self.objects: dict[tuple[str, str], bytes] = {}
        self.uploads: list[tuple[str, str]] = []
        self.deleted: list[tuple[str, str]] = []
        self.upload_error: Optional[Exception] = None
        self.signing_fails = False
        self.signed_calls = 0

    async def upload(
        self, bucket: str, path: str, data: bytes, content_type: str = "image/png"
    ) -> str:
        self.uploads.append((bucket, path))
        if self.upload_error is not None:
            raise self.upload_error
        self.objects[(bucket, path)] = data
        return path

    async def create_signed_url(self, bucket: str, path: str, expires_in: int = 3600) -> str:
        self.signed_calls += 1
        if self.signing_fails:
            raise StorageError("signing unavailable")
        return f"https://storage.test/sign/{bucket}/{path}?token={self.signed_calls}"

    def get_public_url(self, bucket: str, path: str) -> str:
        return f"https://storage.test/public/{bucket}/{path}"

    async def delete(self, bucket: str, paths: list[str]) -> None:
        for path in paths:
            self.objects.pop((bucket, path), None)
            self.deleted.append((bucket, path))


class FakeAdapter:
    """Scriptable provider adapter."""

    def __init__(self, name: str):
        self.name = name
        self.submitted: list[GenerationInput] = []
        self.submit_error: Optional[Exception] = None
        self.poll_result = PollResult.from_provider("starting")
        self.poll_error: Optional[Exception] = None
        self.poll_calls = 0

    async def submit(self, payload: GenerationInput) -> str:
        if self.submit_error is not None:
            raise self.submit_error
        self.submitted.append(payload)
        return f"{self.name}-job-{len(self.submitted)}"

    async def poll(self, external_id: str) -> PollResult:
        self.poll_calls += 1
        if self.poll_error is not None:
            raise self.poll_error
        return self.poll_result


class FakeDownloader:
    """Stands in for download_artifact."""

    def __init__(self):
        self.content = b"\x89PNG generated"
        self.error: Optional[Exception] = None
        self.urls: list[str] = []

    async def __call__(self, url: str) -> bytes:
        self.urls.append(url)
        if self.error is not None:
            raise self.error
        return self.content


@pytest.fixture
def artifact_store() -> FakeArtifactStore:
    return FakeArtifactStore()


@pytest.fixture
def adapters() -> dict[GenerationType, FakeAdapter]:
    return {
        GenerationType.TRY_ON: FakeAdapter("fake-tryon"),
        GenerationType.COMPOSITE: FakeAdapter("fake-composite"),
    }


@pytest.fixture
def downloader() -> FakeDownloader:
    return FakeDownloader()


@pytest.fixture
def orchestrator(uow_factory, adapters, artifact_store, downloader) -> GenerationOrchestrator:
    return GenerationOrchestrator(
        uow_factory=uow_factory,
        adapters=adapters,
        artifact_store=artifact_store,
        buckets=BUCKETS,
        download=downloader,
        stale_after=timedelta(hours=24),
    )


@pytest_asyncio.fixture(scope="function")
async def client(orchestrator, session_factory) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client for the app with the test orchestrator on app.state.

    ASGITransport does not run the lifespan, so app.state is filled in here.
    """
    from vestis.app import create_app

    app = create_app()
    app.state.orchestrator = orchestrator
    app.state.session_factory = session_factory

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
