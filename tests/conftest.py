import itertools
from typing import AsyncGenerator

import fakeredis
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from leadflow.db.base_class import Base
from leadflow.db.redis_client import get_redis
from leadflow.db.session import get_db
from leadflow.db.store import Store
from leadflow.main import app
from leadflow.models import Agent, Lead
from leadflow.services.lead_scoring import grade_for


@pytest.fixture
async def engine(tmp_path):
    """
    SQLite database file per test. pysqlite's implicit transaction handling is
    switched off so SAVEPOINTs and foreign keys behave as on PostgreSQL.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'leadflow.db'}")

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def store(session) -> Store:
    return Store(session)


@pytest.fixture
async def redis():
    client = fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)
    yield client
    await client.aclose()


@pytest.fixture
def make_agent(store):
    counter = itertools.count(1)

    async def _make(territory=None, status="ACTIVE", **fields) -> Agent:
        n = next(counter)
        agent = Agent(
            full_name=fields.pop("full_name", f"Agent {n}"),
            email=fields.pop("email", f"agent{n}@leadflow.test"),
            territory=territory,
            status=status,
            **fields,
        )
        async with store.transaction():
            await store.create(agent)
        return agent

    return _make


@pytest.fixture
def make_lead(store):
    """Lead with a preset score, for tests that do not go through the activity ledger."""
    counter = itertools.count(1)

    async def _make(score=0, preferred_areas=None, status="ACTIVE", **fields) -> Lead:
        n = next(counter)
        lead = Lead(
            full_name=fields.pop("full_name", f"Lead {n}"),
            email=fields.pop("email", f"lead{n}@buyers.test"),
            score=score,
            grade=grade_for(score).value,
            preferred_areas=list(preferred_areas or []),
            status=status,
            **fields,
        )
        async with store.transaction():
            await store.create(lead)
        return lead

    return _make


@pytest.fixture
async def client(session_factory, redis) -> AsyncGenerator[AsyncClient, None]:
    async def override_get_db():
        async with session_factory() as session:
            yield session

    async def override_get_redis():
        yield redis

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = override_get_redis
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()
