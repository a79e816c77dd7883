"""Test configuration and fixtures.

Each test gets a fresh in-memory SQLite database (aiosqlite + StaticPool so
every session shares the one connection) and an in-process fake Redis.
"""

import uuid
from collections.abc import AsyncGenerator
from decimal import Decimal

import pytest
import pytest_asyncio
import redis.asyncio as aioredis
from fakeredis import aioredis as fake_aioredis
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from jobbroker.auth.identity import Actor, issue_session_token
from jobbroker.config import settings
from jobbroker.database import Base, get_db
from jobbroker.main import app
from jobbroker.models import (  # noqa: F401 (registers every table on Base.metadata)
    actor,
    bid,
    dispute,
    job,
    ledger,
    notification,
    payment,
    rating,
    trust,
    warranty,
)
from jobbroker.models.actor import ActorRole
from jobbroker.redis import get_redis
from jobbroker.services import commission, notifications


@pytest.fixture(autouse=True)
def _isolate_settings() -> None:
    """Snapshot settings before each test and restore after to prevent mutation bleed."""
    original = settings.model_dump()
    object.__setattr__(settings, "rate_limit_enabled", False)
    object.__setattr__(settings, "deadline_consumer_enabled", False)
    yield  # type: ignore[misc]
    for key, value in original.items():
        object.__setattr__(settings, key, value)


@pytest.fixture(autouse=True)
def _isolate_collaborators() -> None:
    """Restore the default notifier and commission lookup after each test."""
    notifier = notifications.get_notifier()
    lookup = commission.get_commission_lookup()
    yield  # type: ignore[misc]
    notifications.set_notifier(notifier)
    commission.set_commission_lookup(lookup)


@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    engine = create_async_engine(
        settings.test_database_url,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as session:
        yield session


@pytest_asyncio.fixture
async def redis_client() -> AsyncGenerator[aioredis.Redis, None]:
    client = fake_aioredis.FakeRedis()
    await client.flushall()
    yield client
    await client.flushall()
    await client.aclose()


@pytest_asyncio.fixture
async def client(
    db_session: AsyncSession,
    redis_client: aioredis.Redis,
) -> AsyncGenerator[AsyncClient, None]:
    """HTTP test client with overridden DB and Redis dependencies."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    async def override_get_redis() -> AsyncGenerator[aioredis.Redis, None]:
        yield redis_client

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = override_get_redis

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def auth_headers(actor_id: uuid.UUID, role: ActorRole) -> dict[str, str]:
    """Bearer session header as the identity service would issue it."""
    return {"Authorization": f"Bearer {issue_session_token(actor_id, role)}"}


def new_actor(role: ActorRole) -> tuple[Actor, dict[str, str]]:
    actor = Actor(actor_id=uuid.uuid4(), role=role)
    return actor, auth_headers(actor.actor_id, role)


def make_job_data(estimated_cost: str = "10000.00", **overrides) -> dict:
    """Factory for a job posting payload."""
    data = {
        "title": "Replace kitchen faucet",
        "description": "Leaking mixer tap, parts on site",
        "category_id": "plumbing",
        "region": "north",
        "estimated_cost": estimated_cost,
    }
    data.update(overrides)
    return data


async def post_job(client: AsyncClient, headers: dict[str, str], **overrides) -> dict:
    resp = await client.post("/jobs", json=make_job_data(**overrides), headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()


async def place_bid(
    client: AsyncClient, job_id: str, headers: dict[str, str], price: str
) -> dict:
    resp = await client.post(
        f"/jobs/{job_id}/bids", json={"offered_price": price}, headers=headers
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


async def assigned_job(
    client: AsyncClient,
    client_headers: dict[str, str],
    provider_headers: dict[str, str],
    price: str = "10000.00",
    **job_overrides,
) -> dict:
    """Post a job, have the provider bid at ``price`` and the client accept."""
    job = await post_job(client, client_headers, estimated_cost=price, **job_overrides)
    bid = await place_bid(client, job["job_id"], provider_headers, price)
    resp = await client.post(
        f"/jobs/{job['job_id']}/bids/{bid['bid_id']}/accept", headers=client_headers
    )
    assert resp.status_code == 200, resp.text
    return resp.json()


async def paid_job(
    client: AsyncClient,
    client_headers: dict[str, str],
    provider_headers: dict[str, str],
    price: str = "10000.00",
    split: dict | None = None,
    **job_overrides,
) -> tuple[dict, dict]:
    """An ASSIGNED job with its payment split recorded. Returns (job, payment)."""
    job = await assigned_job(client, client_headers, provider_headers, price, **job_overrides)
    resp = await client.post(
        f"/jobs/{job['job_id']}/payment-split", json=split or {}, headers=client_headers
    )
    assert resp.status_code == 201, resp.text
    return job, resp.json()


async def completed_job(
    client: AsyncClient,
    client_headers: dict[str, str],
    provider_headers: dict[str, str],
    price: str = "10000.00",
    split: dict | None = None,
    **job_overrides,
) -> tuple[dict, dict]:
    """Run a paid job through start, complete and approve."""
    job, payment = await paid_job(client, client_headers, provider_headers, price, split, **job_overrides)
    job_id = job["job_id"]
    for path, headers in (
        ("start", provider_headers),
        ("complete", provider_headers),
        ("approve", client_headers),
    ):
        resp = await client.post(f"/jobs/{job_id}/{path}", headers=headers)
        assert resp.status_code == 200, resp.text
    return resp.json(), payment


def money(value: str | Decimal) -> Decimal:
    return Decimal(str(value))
