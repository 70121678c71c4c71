"""Allocation coordinator: the requestMultiplayerServer use case.

One process-wide lock serializes the whole sequence: pick agent, pick port,
create container, persist, start container. The lock spans the agent HTTP
calls: the store is the only record of which ports are taken and agents have
no reservations, so no second request may see a port as free between
selection and the insert that claims it.

A failed start after a successful create leaves a StandingBy row with no
running container behind. Nothing reconciles those rows automatically.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import UTC, datetime

from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.config import settings
from backend.app.errors import Failure, FailureCode
from backend.app.models.game_server_instance import GameServerInstance, InstanceStatus
from backend.app.schemas.game_server import SessionConfig
from backend.app.services import capacity_store
from backend.app.services.agent_gateway import AgentGateway, GatewayFailure

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Allocation:
    server_id: str
    public_ip: str
    port: str
    last_state_transition_time: datetime


class AllocationCoordinator:
    def __init__(
        self,
        gateway: AgentGateway,
        public_ip: str,
        heartbeat_port: int | None = None,
        probe_agent_ports: bool | None = None,
    ) -> None:
        self.gateway = gateway
        self.public_ip = public_ip
        self.heartbeat_port = settings.port if heartbeat_port is None else heartbeat_port
        self.probe_agent_ports = (
            settings.probe_agent_ports if probe_agent_ports is None else probe_agent_ports
        )
        self._lock = asyncio.Lock()

    @property
    def heartbeat_endpoint(self) -> str:
        return f"{self.public_ip}:{self.heartbeat_port}"

    async def request_server(
        self,
        db: AsyncSession,
        build_id: str,
        session_id: str,
        session_cookie: str,
    ) -> Allocation | Failure:
        async with self._lock:
            try:
                return await self._allocate(db, build_id, session_id, session_cookie)
            except Exception:
                logger.exception("Unexpected error allocating a server for build %s", build_id)
                await db.rollback()
                return Failure(FailureCode.INTERNAL_ERROR, "Internal server error")

    async def _allocate(
        self,
        db: AsyncSession,
        build_id: str,
        session_id: str,
        session_cookie: str,
    ) -> Allocation | Failure:
        build = await capacity_store.get_build(db, build_id)
        if build is None:
            return Failure(FailureCode.BUILD_NOT_FOUND, f"Build {build_id} not found")

        agent = await capacity_store.available_agent(db)
        if agent is None:
            logger.warning("No agent has spare capacity for build %s", build_id)
            return Failure(FailureCode.NO_AGENTS_AVAILABLE, "No agents available")

        port = await capacity_store.allocate_port(
            db, agent, self.gateway if self.probe_agent_ports else None
        )
        if port is None:
            logger.warning("Agent %s has no free port in range", agent.id)
            return Failure(FailureCode.NO_PORTS_AVAILABLE, "No ports available")

        now = datetime.now(UTC).isoformat()
        session_config = SessionConfig(
            session_id=session_id,
            session_cookie=session_cookie,
            metadata={"gamePort": port},
        )
        instance = GameServerInstance(
            server_id="",
            agent_id=agent.id,
            build_id=build.build_id,
            port=port,
            session_config=session_config.model_dump(by_alias=True, exclude_none=True),
            status=InstanceStatus.STANDING_BY.value,
            created_at=now,
            updated_at=now,
        )

        created = await self.gateway.create_container(agent, build.image_name, port)
        if isinstance(created, GatewayFailure):
            return Failure(FailureCode.CONTAINER_CREATE_FAILED, "Failed to create container")

        instance.server_id = created.container_id
        db.add(instance)
        # Commit while still holding the lock so the port is visibly taken
        await db.commit()
        logger.info(
            "Created game server instance %s (build=%s agent=%s port=%s)",
            instance.server_id,
            build.build_id,
            agent.id,
            port,
        )

        started = await self.gateway.start_container(
            agent, created.container_id, self.heartbeat_endpoint, instance.server_id, port
        )
        if isinstance(started, GatewayFailure):
            logger.warning(
                "Container %s created but failed to start; instance left StandingBy",
                instance.server_id,
            )
            return Failure(FailureCode.CONTAINER_START_FAILED, "Failed to start container")

        return Allocation(
            server_id=instance.server_id,
            public_ip=started.public_ip,
            port=port,
            last_state_transition_time=datetime.now(UTC),
        )
