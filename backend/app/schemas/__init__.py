from backend.app.schemas.agent import AgentCreate, AgentResponse, AgentUpdate
from backend.app.schemas.build import BuildCreate, BuildResponse, BuildUpdate
from backend.app.schemas.game_server import (
    GameOperation,
    GameState,
    HeartbeatRequest,
    HeartbeatResponse,
    MultiplayerServerData,
    RequestMultiplayerServerRequest,
    RequestMultiplayerServerResponse,
    ServerPort,
    SessionConfig,
    TerminateResponse,
)
from backend.app.schemas.instance import GameServerInstanceResponse

__all__ = [
    "AgentCreate",
    "AgentUpdate",
    "AgentResponse",
    "BuildCreate",
    "BuildUpdate",
    "BuildResponse",
    "GameState",
    "GameOperation",
    "SessionConfig",
    "RequestMultiplayerServerRequest",
    "RequestMultiplayerServerResponse",
    "MultiplayerServerData",
    "ServerPort",
    "HeartbeatRequest",
    "HeartbeatResponse",
    "TerminateResponse",
    "GameServerInstanceResponse",
]
