"""PlayFab-compatible allocation and termination endpoints, plus the instance read model."""

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.db import get_db
from backend.app.errors import Failure, failure_response
from backend.app.models.game_server_instance import GameServerInstance, InstanceStatus
from backend.app.schemas.game_server import (
    MultiplayerServerData,
    RequestMultiplayerServerRequest,
    RequestMultiplayerServerResponse,
    ServerPort,
    TerminateResponse,
)
from backend.app.schemas.instance import GameServerInstanceResponse
from backend.app.services.allocator import AllocationCoordinator
from backend.app.services.heartbeat import request_termination

logger = logging.getLogger(__name__)

router = APIRouter(tags=["game-servers"])


def get_coordinator(request: Request) -> AllocationCoordinator:
    return request.app.state.coordinator


@router.post(
    "/requestMultiplayerServer",
    response_model=RequestMultiplayerServerResponse,
    response_model_exclude_none=True,
)
async def request_multiplayer_server(
    data: RequestMultiplayerServerRequest,
    db: AsyncSession = Depends(get_db),
    coordinator: AllocationCoordinator = Depends(get_coordinator),
) -> RequestMultiplayerServerResponse | JSONResponse:
    result = await coordinator.request_server(
        db,
        build_id=data.build_id,
        session_id=str(data.session_id),
        session_cookie=data.session_cookie,
    )
    if isinstance(result, Failure):
        logger.warning(
            "requestMultiplayerServer failed for build %s: %s", data.build_id, result.code
        )
        return failure_response(result)

    return RequestMultiplayerServerResponse(
        code=200,
        data=MultiplayerServerData(
            server_id=result.server_id,
            ipv4_address=result.public_ip,
            ports=[ServerPort(num=int(result.port))],
            last_state_transition_time=result.last_state_transition_time,
        ),
    )


@router.post("/terminateGameServerInstance/{server_id}", response_model=TerminateResponse)
async def terminate_game_server_instance(
    server_id: str, db: AsyncSession = Depends(get_db)
) -> TerminateResponse | JSONResponse:
    failure = await request_termination(db, server_id)
    if failure is not None:
        return failure_response(failure)
    return TerminateResponse(success=True)


@router.get("/gameServerInstances", response_model=list[GameServerInstanceResponse])
async def list_game_server_instances(
    db: AsyncSession = Depends(get_db),
) -> list[GameServerInstance]:
    result = await db.execute(
        select(GameServerInstance)
        .where(GameServerInstance.status != InstanceStatus.TERMINATED)
        .order_by(GameServerInstance.id)
    )
    return list(result.scalars().all())
