"""Agent registry CRUD endpoints."""

from datetime import UTC, datetime

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.db import get_db
from backend.app.models.agent import Agent
from backend.app.models.game_server_instance import GameServerInstance
from backend.app.schemas.agent import AgentCreate, AgentResponse, AgentUpdate

router = APIRouter(prefix="/agents", tags=["agents"])


def _normalize_host(host: object) -> str:
    return str(host).rstrip("/")


async def _get_agent_or_404(db: AsyncSession, agent_id: int) -> Agent:
    result = await db.execute(select(Agent).where(Agent.id == agent_id))
    agent = result.scalar_one_or_none()
    if not agent:
        raise HTTPException(status_code=404, detail="Agent not found")
    return agent


async def _ensure_host_free(db: AsyncSession, host: str) -> None:
    result = await db.execute(select(Agent).where(Agent.host == host))
    if result.scalar_one_or_none():
        raise HTTPException(status_code=409, detail=f"Agent {host} already registered")


@router.get("", response_model=list[AgentResponse])
async def list_agents(db: AsyncSession = Depends(get_db)) -> list[Agent]:
    result = await db.execute(select(Agent).order_by(Agent.id))
    return list(result.scalars().all())


@router.post("", response_model=AgentResponse, status_code=201)
async def create_agent(data: AgentCreate, db: AsyncSession = Depends(get_db)) -> Agent:
    host = _normalize_host(data.host)
    await _ensure_host_free(db, host)

    now = datetime.now(UTC).isoformat()
    agent = Agent(host=host, created_at=now, updated_at=now)
    db.add(agent)
    await db.flush()
    return agent


@router.get("/{agent_id}", response_model=AgentResponse)
async def get_agent(agent_id: int, db: AsyncSession = Depends(get_db)) -> Agent:
    return await _get_agent_or_404(db, agent_id)


@router.patch("/{agent_id}", response_model=AgentResponse)
async def update_agent(
    agent_id: int, data: AgentUpdate, db: AsyncSession = Depends(get_db)
) -> Agent:
    agent = await _get_agent_or_404(db, agent_id)
    host = _normalize_host(data.host)
    if host != agent.host:
        await _ensure_host_free(db, host)
    agent.host = host
    agent.updated_at = datetime.now(UTC).isoformat()
    await db.flush()
    return agent


@router.delete("/{agent_id}", status_code=204)
async def delete_agent(agent_id: int, db: AsyncSession = Depends(get_db)) -> None:
    agent = await _get_agent_or_404(db, agent_id)
    in_use = await db.execute(
        select(GameServerInstance.id).where(GameServerInstance.agent_id == agent_id).limit(1)
    )
    if in_use.scalar_one_or_none() is not None:
        raise HTTPException(
            status_code=409, detail=f"Agent {agent_id} is referenced by game server instances"
        )
    await db.delete(agent)
    await db.flush()
