"""Wire schemas for the PlayFab-compatible allocation and heartbeat endpoints.

Allocation bodies use PascalCase, heartbeat bodies mix PascalCase (request)
and camelCase (response), matching what GSDK-based game servers send.
"""

import uuid
from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel, to_pascal


class GameState(StrEnum):
    INVALID = "Invalid"
    INITIALIZING = "Initializing"
    STANDING_BY = "StandingBy"
    ACTIVE = "Active"
    TERMINATING = "Terminating"
    TERMINATED = "Terminated"
    QUARENTINED = "Quarentined"  # sic, as spelled by GSDK


class GameOperation(StrEnum):
    INVALID = "Invalid"
    CONTINUE = "Continue"
    ACTIVE = "Active"
    TERMINATE = "Terminate"


class _PascalModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_pascal, populate_by_name=True)


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SessionConfig(_CamelModel):
    session_id: str
    session_cookie: str
    initial_players: list[str] | None = None
    metadata: dict[str, str] = {}


# --- requestMultiplayerServer ---


class RequestMultiplayerServerRequest(_PascalModel):
    preferred_regions: list[str]  # accepted, placement ignores regions
    session_id: uuid.UUID
    build_id: str
    session_cookie: str


class ServerPort(_PascalModel):
    num: int
    name: str | None = None
    protocol: str | None = None


class MultiplayerServerData(_PascalModel):
    server_id: str
    ipv4_address: str = Field(alias="IPV4Address")
    ports: list[ServerPort]
    last_state_transition_time: datetime


class RequestMultiplayerServerResponse(BaseModel):
    code: int = 200
    data: MultiplayerServerData


# --- sessionHosts heartbeat ---


class HeartbeatRequest(_PascalModel):
    current_game_state: GameState
    current_game_health: str
    current_players: list[Any]


class HeartbeatResponse(_CamelModel):
    operation: GameOperation = GameOperation.INVALID
    session_config: SessionConfig | None = None


class TerminateResponse(BaseModel):
    success: bool = True
