"""Shared fixtures: in-memory database, fake agent API, HTTP client, record factories."""

import asyncio
import itertools
import json
from collections.abc import AsyncGenerator
from datetime import UTC, datetime

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import backend.app.models  # noqa: F401 - register models on Base.metadata
from backend.app.config import settings
from backend.app.db import Base, get_db
from backend.app.models.agent import Agent
from backend.app.models.build import Build
from backend.app.models.game_server_instance import GameServerInstance, InstanceStatus
from backend.app.services.agent_gateway import AgentGateway
from backend.app.services.allocator import AllocationCoordinator
from backend.app.services.lifecycle import heartbeat_tracker, pending_terminations

ORCHESTRATOR_IP = "203.0.113.5"
AGENT_PUBLIC_IP = "198.51.100.10"

# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db(engine) -> AsyncGenerator[AsyncSession, None]:
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as session:
        yield session


@pytest.fixture(autouse=True)
def reset_trackers():
    heartbeat_tracker.clear()
    pending_terminations.clear()
    yield
    heartbeat_tracker.clear()
    pending_terminations.clear()


@pytest.fixture
def port_range(monkeypatch):
    """Shrink the per-agent port range to [5000, 5001]."""
    monkeypatch.setattr(settings, "start_port", 5000)
    monkeypatch.setattr(settings, "end_port", 5001)
    return (5000, 5001)


# ---------------------------------------------------------------------------
# Fake agent API
# ---------------------------------------------------------------------------


class FakeAgentApi:
    """In-process stand-in for the agent HTTP API, served through httpx.MockTransport."""

    def __init__(self, public_ip: str = AGENT_PUBLIC_IP) -> None:
        self.public_ip = public_ip
        self.requests: list[tuple[str, str, dict]] = []  # (host, path, body)
        self.fail_create = False
        self.fail_start = False
        self.busy_ports: set[str] = set()
        self.port_check_unreachable = False
        self.delay = 0.0
        self._ids = itertools.count(1)

    def paths(self) -> list[str]:
        return [path for _, path, _ in self.requests]

    async def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content or b"{}")
        path = request.url.path
        self.requests.append((request.url.host, path, body))
        if self.delay:
            await asyncio.sleep(self.delay)

        if path.endswith("/createContainer"):
            if self.fail_create:
                return httpx.Response(500, json={"error": "image pull failed"})
            return httpx.Response(200, json={"containerId": f"container-{next(self._ids)}"})
        if "/startContainer/" in path:
            if self.fail_start:
                return httpx.Response(500, json={"error": "start failed"})
            return httpx.Response(200, json={"publicIp": self.public_ip})
        if path.endswith("/isPortAvailable"):
            if self.port_check_unreachable:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(
                200, json={"isPortAvailable": str(body["port"]) not in self.busy_ports}
            )
        return httpx.Response(404)


@pytest.fixture
def fake_agent() -> FakeAgentApi:
    return FakeAgentApi()


@pytest.fixture
async def gateway(fake_agent: FakeAgentApi) -> AsyncGenerator[AgentGateway, None]:
    gateway = AgentGateway(httpx.AsyncClient(transport=httpx.MockTransport(fake_agent.handler)))
    yield gateway
    await gateway.close()


@pytest.fixture
def coordinator(gateway: AgentGateway) -> AllocationCoordinator:
    return AllocationCoordinator(
        gateway, public_ip=ORCHESTRATOR_IP, heartbeat_port=9006, probe_agent_ports=True
    )


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------


@pytest.fixture
async def client(
    db: AsyncSession, coordinator: AllocationCoordinator
) -> AsyncGenerator[AsyncClient, None]:
    from backend.app.main import app

    async def _override_get_db():
        yield db

    app.dependency_overrides[get_db] = _override_get_db
    app.state.coordinator = coordinator
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Record factories
# ---------------------------------------------------------------------------


def _now() -> str:
    return datetime.now(UTC).isoformat()


async def create_build(
    db: AsyncSession, build_id: str = "b1", image_name: str = "img:1"
) -> Build:
    now = _now()
    build = Build(build_id=build_id, image_name=image_name, created_at=now, updated_at=now)
    db.add(build)
    await db.flush()
    return build


async def create_agent(db: AsyncSession, host: str = "http://agent-1:7000") -> Agent:
    now = _now()
    agent = Agent(host=host, created_at=now, updated_at=now)
    db.add(agent)
    await db.flush()
    return agent


async def create_instance(
    db: AsyncSession,
    agent: Agent,
    server_id: str = "server-1",
    build_id: str = "b1",
    port: str = "5000",
    status: InstanceStatus = InstanceStatus.STANDING_BY,
    created_at: str | None = None,
    session_id: str = "6f0c3a4e-2c1b-4d7e-9a55-1f2e3d4c5b6a",
) -> GameServerInstance:
    created_at = created_at or _now()
    instance = GameServerInstance(
        server_id=server_id,
        agent_id=agent.id,
        build_id=build_id,
        port=port,
        session_config={
            "sessionId": session_id,
            "sessionCookie": "cookie",
            "metadata": {"gamePort": port},
        },
        status=status.value,
        created_at=created_at,
        updated_at=created_at,
    )
    db.add(instance)
    await db.flush()
    return instance
