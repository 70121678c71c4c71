from backend.app.models.agent import Agent
from backend.app.models.build import Build
from backend.app.models.game_server_instance import GameServerInstance, InstanceStatus

__all__ = [
    "Agent",
    "Build",
    "GameServerInstance",
    "InstanceStatus",
]
