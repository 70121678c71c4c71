from enum import StrEnum

from sqlalchemy import JSON, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from backend.app.db import Base


class InstanceStatus(StrEnum):
    """Persisted lifecycle of an instance. Only ever moves forward."""

    STANDING_BY = "StandingBy"
    ACTIVE = "Active"
    TERMINATED = "Terminated"


class GameServerInstance(Base):
    __tablename__ = "game_server_instances"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # The agent hands back its container id; the game server also sees it as
    # its session host id, so it doubles as our server id.
    server_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    agent_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("agents.id", ondelete="RESTRICT"), nullable=False
    )
    build_id: Mapped[str] = mapped_column(
        String, ForeignKey("builds.build_id", ondelete="RESTRICT"), nullable=False
    )
    port: Mapped[str] = mapped_column(String, nullable=False)
    session_config: Mapped[dict] = mapped_column(JSON, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, index=True)
    created_at: Mapped[str] = mapped_column(String, nullable=False)
    updated_at: Mapped[str] = mapped_column(String, nullable=False)
