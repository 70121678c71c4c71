"""Allocation coordinator tests: protocol order, failure handling, serialization."""

import asyncio
import uuid
from unittest.mock import AsyncMock, patch

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.errors import ErrorCategory, Failure, FailureCode
from backend.app.models.game_server_instance import GameServerInstance, InstanceStatus
from backend.app.services.agent_gateway import AgentGateway
from backend.app.services.allocator import Allocation, AllocationCoordinator
from tests.conftest import (
    AGENT_PUBLIC_IP,
    ORCHESTRATOR_IP,
    FakeAgentApi,
    create_agent,
    create_build,
    create_instance,
)

SESSION_ID = str(uuid.UUID("6f0c3a4e-2c1b-4d7e-9a55-1f2e3d4c5b6a"))


async def _request(coordinator: AllocationCoordinator, db: AsyncSession, build_id: str = "b1"):
    return await coordinator.request_server(
        db, build_id=build_id, session_id=SESSION_ID, session_cookie="cookie"
    )


async def _instances(db: AsyncSession) -> list[GameServerInstance]:
    result = await db.execute(select(GameServerInstance).order_by(GameServerInstance.id))
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------------


async def test_allocation_fills_range_then_exhausts(
    db: AsyncSession, coordinator: AllocationCoordinator, port_range
):
    """b1 on an empty agent with range [5000, 5001]: 5000, then 5001, then capacity exhausted."""
    await create_build(db, build_id="b1", image_name="img:1")
    await create_agent(db)

    first = await _request(coordinator, db)
    assert isinstance(first, Allocation)
    assert first.port == "5000"
    assert first.public_ip == AGENT_PUBLIC_IP

    second = await _request(coordinator, db)
    assert isinstance(second, Allocation)
    assert second.port == "5001"

    third = await _request(coordinator, db)
    assert isinstance(third, Failure)
    assert third.category == ErrorCategory.CAPACITY_EXHAUSTED
    assert third.status_code == 400

    instances = await _instances(db)
    assert [i.status for i in instances] == ["StandingBy", "StandingBy"]
    assert [i.server_id for i in instances] == [first.server_id, second.server_id]


async def test_allocation_falls_through_to_next_agent(
    db: AsyncSession, coordinator: AllocationCoordinator, fake_agent: FakeAgentApi, port_range
):
    await create_build(db)
    first = await create_agent(db, host="http://agent-1:7000")
    second = await create_agent(db, host="http://agent-2:7000")

    results = [await _request(coordinator, db) for _ in range(3)]

    assert all(isinstance(r, Allocation) for r in results)
    instances = await _instances(db)
    assert [(i.agent_id, i.port) for i in instances] == [
        (first.id, "5000"),
        (first.id, "5001"),
        (second.id, "5000"),
    ]
    assert fake_agent.requests[-1][0] == "agent-2"


async def test_allocation_persists_session_config(
    db: AsyncSession, coordinator: AllocationCoordinator, port_range
):
    await create_build(db)
    agent = await create_agent(db)

    result = await _request(coordinator, db)

    [instance] = await _instances(db)
    assert instance.server_id == result.server_id
    assert instance.agent_id == agent.id
    assert instance.build_id == "b1"
    assert instance.port == "5000"
    assert instance.status == InstanceStatus.STANDING_BY
    assert instance.session_config == {
        "sessionId": SESSION_ID,
        "sessionCookie": "cookie",
        "metadata": {"gamePort": "5000"},
    }


async def test_allocation_drives_agent_in_order(
    db: AsyncSession, coordinator: AllocationCoordinator, fake_agent: FakeAgentApi, port_range
):
    """probe -> create -> start, with our heartbeat endpoint and the agent's container id."""
    await create_build(db, image_name="img:1")
    await create_agent(db)

    result = await _request(coordinator, db)

    assert fake_agent.paths() == [
        "/isPortAvailable",
        "/createContainer",
        f"/startContainer/{result.server_id}",
    ]
    _, _, create_body = fake_agent.requests[1]
    _, _, start_body = fake_agent.requests[2]
    assert create_body == {"imageName": "img:1", "port": "5000"}
    assert start_body == {
        "heartbeatEndpoint": f"{ORCHESTRATOR_IP}:9006",
        "serverId": result.server_id,
        "port": "5000",
    }


async def test_allocation_without_port_probe(
    db: AsyncSession, gateway, fake_agent: FakeAgentApi, port_range
):
    coordinator = AllocationCoordinator(gateway, ORCHESTRATOR_IP, 9006, probe_agent_ports=False)
    await create_build(db)
    await create_agent(db)

    result = await _request(coordinator, db)

    assert isinstance(result, Allocation)
    assert "/isPortAvailable" not in fake_agent.paths()


# ---------------------------------------------------------------------------
# Validation / capacity failures
# ---------------------------------------------------------------------------


async def test_allocation_build_not_found(
    db: AsyncSession, coordinator: AllocationCoordinator, fake_agent: FakeAgentApi
):
    await create_agent(db)

    result = await _request(coordinator, db, build_id="missing")

    assert isinstance(result, Failure)
    assert result.code == FailureCode.BUILD_NOT_FOUND
    assert result.status_code == 400
    assert fake_agent.requests == []


async def test_allocation_no_agents(db: AsyncSession, coordinator: AllocationCoordinator):
    await create_build(db)

    result = await _request(coordinator, db)

    assert result.code == FailureCode.NO_AGENTS_AVAILABLE
    assert result.category == ErrorCategory.CAPACITY_EXHAUSTED


async def test_allocation_no_ports_when_agent_reports_all_busy(
    db: AsyncSession, coordinator: AllocationCoordinator, fake_agent: FakeAgentApi, port_range
):
    await create_build(db)
    await create_agent(db)
    fake_agent.busy_ports = {"5000", "5001"}

    result = await _request(coordinator, db)

    assert result.code == FailureCode.NO_PORTS_AVAILABLE
    assert await _instances(db) == []


# ---------------------------------------------------------------------------
# Provisioning failures
# ---------------------------------------------------------------------------


async def test_create_failure_persists_nothing(
    db: AsyncSession, coordinator: AllocationCoordinator, fake_agent: FakeAgentApi, port_range
):
    await create_build(db)
    await create_agent(db)
    fake_agent.fail_create = True

    result = await _request(coordinator, db)

    assert result.code == FailureCode.CONTAINER_CREATE_FAILED
    assert result.status_code == 500
    assert await _instances(db) == []
    assert not any(p.startswith("/startContainer") for p in fake_agent.paths())


async def test_start_failure_leaves_standing_by_orphan(
    db: AsyncSession, coordinator: AllocationCoordinator, fake_agent: FakeAgentApi, port_range
):
    await create_build(db)
    await create_agent(db)
    fake_agent.fail_start = True

    result = await _request(coordinator, db)

    assert result.code == FailureCode.CONTAINER_START_FAILED
    assert result.category == ErrorCategory.UPSTREAM_FAILURE
    [orphan] = await _instances(db)
    assert orphan.status == InstanceStatus.STANDING_BY
    assert orphan.server_id == "container-1"

    # The orphan still holds its port
    fake_agent.fail_start = False
    retry = await _request(coordinator, db)
    assert retry.port == "5001"


async def test_internal_error_releases_lock(
    db: AsyncSession, coordinator: AllocationCoordinator, port_range
):
    await create_build(db)
    await create_agent(db)
    await db.commit()

    with patch(
        "backend.app.services.allocator.capacity_store.available_agent",
        new_callable=AsyncMock,
        side_effect=RuntimeError("db exploded"),
    ):
        result = await _request(coordinator, db)

    assert result.code == FailureCode.INTERNAL_ERROR
    assert result.status_code == 500
    assert not coordinator._lock.locked()

    # The next allocation goes through
    assert isinstance(await _request(coordinator, db), Allocation)


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------


async def test_concurrent_allocations_never_oversubscribe(
    db: AsyncSession, coordinator: AllocationCoordinator, fake_agent: FakeAgentApi, port_range
):
    """N concurrent requests against capacity K yield exactly K successes."""
    await create_build(db)
    await create_agent(db)
    fake_agent.delay = 0.01  # force interleaving at every agent call

    results = await asyncio.gather(*(_request(coordinator, db) for _ in range(6)))

    successes = [r for r in results if isinstance(r, Allocation)]
    failures = [r for r in results if isinstance(r, Failure)]
    assert len(successes) == 2
    assert len(failures) == 4
    assert all(f.category == ErrorCategory.CAPACITY_EXHAUSTED for f in failures)
    assert sorted(s.port for s in successes) == ["5000", "5001"]


async def test_ports_unique_per_agent_across_allocations(
    db: AsyncSession, coordinator: AllocationCoordinator, monkeypatch
):
    from backend.app.config import settings

    monkeypatch.setattr(settings, "start_port", 6000)
    monkeypatch.setattr(settings, "end_port", 6009)
    await create_build(db)
    agent = await create_agent(db)
    # A terminated instance does not hold its port
    await create_instance(
        db, agent, server_id="old", port="6000", status=InstanceStatus.TERMINATED
    )

    results = await asyncio.gather(*(_request(coordinator, db) for _ in range(10)))

    assert all(isinstance(r, Allocation) for r in results)
    live = [i for i in await _instances(db) if i.status != InstanceStatus.TERMINATED]
    ports = [i.port for i in live]
    assert len(ports) == len(set(ports)) == 10


async def test_lock_held_across_agent_calls(
    db: AsyncSession, coordinator: AllocationCoordinator, fake_agent: FakeAgentApi, port_range
):
    await create_build(db)
    await create_agent(db)
    observed: list[bool] = []

    async def _spy(request: httpx.Request) -> httpx.Response:
        observed.append(coordinator._lock.locked())
        return await fake_agent.handler(request)

    spy_gateway = AgentGateway(httpx.AsyncClient(transport=httpx.MockTransport(_spy)))
    coordinator.gateway = spy_gateway
    try:
        await _request(coordinator, db)
    finally:
        await spy_gateway.close()

    assert observed and all(observed)


async def test_unreachable_agent_fails_fast(
    db: AsyncSession, coordinator: AllocationCoordinator, fake_agent: FakeAgentApi, port_range
):
    await create_build(db)
    await create_agent(db)
    fake_agent.port_check_unreachable = True

    result = await _request(coordinator, db)

    assert result.code == FailureCode.NO_PORTS_AVAILABLE
    assert fake_agent.paths() == ["/isPortAvailable"]
    assert await _instances(db) == []
    assert not coordinator._lock.locked()
