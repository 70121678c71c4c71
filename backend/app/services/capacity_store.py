"""Capacity queries: which build, which agent, which port.

"Used" always means held by an instance that is not Terminated. The same
definition drives both the agent load count and the port scan.
"""

import logging

from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.config import settings
from backend.app.models.agent import Agent
from backend.app.models.build import Build
from backend.app.models.game_server_instance import GameServerInstance, InstanceStatus
from backend.app.services.agent_gateway import AgentGateway

logger = logging.getLogger(__name__)


async def get_build(db: AsyncSession, build_id: str) -> Build | None:
    result = await db.execute(select(Build).where(Build.build_id == build_id))
    return result.scalar_one_or_none()


async def available_agent(db: AsyncSession) -> Agent | None:
    """Return the first agent (by id) holding fewer instances than the port range size.

    Plain first-fit; there is no load balancing across agents.
    """
    live_count = func.count(GameServerInstance.id).label("live_count")
    query = (
        select(Agent, live_count)
        .outerjoin(
            GameServerInstance,
            and_(
                GameServerInstance.agent_id == Agent.id,
                GameServerInstance.status != InstanceStatus.TERMINATED,
            ),
        )
        .group_by(Agent.id)
        .order_by(Agent.id)
    )
    result = await db.execute(query)

    for agent, count in result.all():
        if count < settings.max_ports_per_agent:
            return agent
    return None


async def used_ports(db: AsyncSession, agent_id: int) -> set[str]:
    result = await db.execute(
        select(GameServerInstance.port).where(
            GameServerInstance.agent_id == agent_id,
            GameServerInstance.status != InstanceStatus.TERMINATED,
        )
    )
    return set(result.scalars().all())


async def allocate_port(
    db: AsyncSession,
    agent: Agent,
    gateway: AgentGateway | None = None,
) -> str | None:
    """Pick the lowest free port in the configured range on ``agent``.

    With a ``gateway``, each candidate is also probed on the agent itself so a
    port bound outside our bookkeeping is skipped. An unreachable agent ends the
    scan with no port.
    """
    taken = await used_ports(db, agent.id)

    for candidate in range(settings.start_port, settings.end_port + 1):
        port = str(candidate)
        if port in taken:
            continue
        if gateway is None:
            return port

        available = await gateway.is_port_available(agent, port)
        if available is None:
            logger.warning("Agent %s unreachable while probing ports, giving up", agent.id)
            return None
        if not available:
            logger.debug("Port %s reported busy by agent %s, skipping", port, agent.id)
            continue
        return port

    return None
