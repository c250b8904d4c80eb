import os
import tempfile

# Settings are read at import time, so point them at a scratch database first
os.environ.setdefault(
    "DATABASE_URL",
    f"sqlite+aiosqlite:///{os.path.join(tempfile.gettempdir(), 'sql_ai_test.db')}",
)
os.environ.setdefault("SCHEMA_CONTEXT_ENABLED", "false")
os.environ.setdefault("LLM_API_KEY", "test-key")

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine

from app.main import app
from app.ai_feature.executor import SqlExecutor
from app.ai_feature.service import SqlQueryService, get_query_service, get_sql_executor
from stubs import StubExecutor, StubTranslator

USERS = [
    (1, "Ada", "Earth", "120.50"),
    (2, "Linus", "Earth", "80.00"),
    (3, "Grace", "Venus", None),
]


# =========================
# Database
# =========================
@pytest_asyncio.fixture(scope="function")
async def sqlite_engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'app.db'}")
    async with engine.begin() as conn:
        await conn.exec_driver_sql(
            "CREATE TABLE users ("
            "id INTEGER PRIMARY KEY, name TEXT NOT NULL, planet TEXT, balance NUMERIC)"
        )
        await conn.exec_driver_sql(
            "CREATE TABLE audit_log (id INTEGER PRIMARY KEY, message TEXT)"
        )
        for user in USERS:
            await conn.exec_driver_sql(
                "INSERT INTO users (id, name, planet, balance) VALUES (?, ?, ?, ?)",
                user,
            )
    yield engine
    await engine.dispose()


@pytest.fixture
def sql_executor(sqlite_engine):
    return SqlExecutor(sqlite_engine, timeout_seconds=5, max_rows=100)


# =========================
# Pipeline stubs
# =========================
@pytest.fixture
def stub_translator():
    return StubTranslator(sql="SELECT COUNT(*) FROM users")


@pytest.fixture
def stub_executor():
    return StubExecutor(headers=["count"], rows=[["42"]])


@pytest.fixture
def stub_service(stub_translator, stub_executor):
    return SqlQueryService(stub_translator, stub_executor)


# Client
@pytest_asyncio.fixture(scope="function")
async def client(stub_service, sql_executor):
    app.dependency_overrides[get_query_service] = lambda: stub_service
    app.dependency_overrides[get_sql_executor] = lambda: sql_executor

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
