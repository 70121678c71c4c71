from typing import Any

from pydantic import BaseModel


class GameServerInstanceResponse(BaseModel):
    id: int
    server_id: str
    agent_id: int
    build_id: str
    port: str
    session_config: dict[str, Any]
    status: str
    created_at: str
    updated_at: str
