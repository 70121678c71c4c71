"""Heartbeat endpoint called by GSDK-based game servers."""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.db import get_db
from backend.app.errors import Failure, failure_response
from backend.app.schemas.game_server import HeartbeatRequest, HeartbeatResponse
from backend.app.services.heartbeat import handle_heartbeat

router = APIRouter(prefix="/v1/sessionHosts", tags=["session-hosts"])


@router.patch("/{server_id}", response_model=HeartbeatResponse, response_model_exclude_none=True)
async def heartbeat(
    server_id: str, data: HeartbeatRequest, db: AsyncSession = Depends(get_db)
) -> HeartbeatResponse | JSONResponse:
    result = await handle_heartbeat(db, server_id, data.current_game_state)
    if isinstance(result, Failure):
        return failure_response(result)
    return result
