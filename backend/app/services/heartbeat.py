"""Heartbeat state machine for running game servers.

The game server reports its own state on every heartbeat; that report is not
trusted to match what we have persisted. The answer is computed in two stages:

1. A base operation from the reported state (``BASE_OPERATIONS``).
2. The ordered ``OVERRIDE_RULES``, each of which may replace the operation.
   Order matters: over-age instances are flagged *before* the pending flag is
   consumed, so the ceiling takes effect on the same heartbeat that crosses it.

Finally the heartbeat time is recorded for the reaper, for live instances only.
"""

import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.config import settings
from backend.app.errors import Failure, FailureCode
from backend.app.models.game_server_instance import GameServerInstance, InstanceStatus
from backend.app.schemas.game_server import (
    GameOperation,
    GameState,
    HeartbeatResponse,
    SessionConfig,
)
from backend.app.services.lifecycle import heartbeat_tracker, pending_terminations

logger = logging.getLogger(__name__)

BASE_OPERATIONS: dict[GameState, GameOperation] = {
    GameState.STANDING_BY: GameOperation.ACTIVE,
    GameState.ACTIVE: GameOperation.CONTINUE,
    GameState.TERMINATING: GameOperation.CONTINUE,
}


async def get_instance(db: AsyncSession, server_id: str) -> GameServerInstance | None:
    result = await db.execute(
        select(GameServerInstance)
        .where(GameServerInstance.server_id == server_id)
        .order_by(GameServerInstance.id.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


def _parse_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed


async def _mark_active(db: AsyncSession, instance: GameServerInstance) -> None:
    """Advance StandingBy -> Active. Never touches an Active or Terminated row."""
    if instance.status != InstanceStatus.STANDING_BY:
        return
    now = datetime.now(UTC).isoformat()
    await db.execute(
        update(GameServerInstance)
        .where(
            GameServerInstance.id == instance.id,
            GameServerInstance.status == InstanceStatus.STANDING_BY,
        )
        .values(status=InstanceStatus.ACTIVE.value, updated_at=now)
    )
    await db.commit()
    logger.info("Game server %s is now Active", instance.server_id)


async def _base_response(
    db: AsyncSession, instance: GameServerInstance, reported: GameState
) -> HeartbeatResponse:
    operation = BASE_OPERATIONS.get(reported, GameOperation.INVALID)
    session_config = None

    if reported == GameState.STANDING_BY:
        session_config = SessionConfig.model_validate(instance.session_config)
    elif reported == GameState.ACTIVE:
        await _mark_active(db, instance)

    return HeartbeatResponse(operation=operation, session_config=session_config)


# --- Override rules, applied in list order ---

OverrideRule = Callable[[GameServerInstance, HeartbeatResponse, datetime], None]


def flag_overdue_instance(
    instance: GameServerInstance, response: HeartbeatResponse, now: datetime
) -> None:
    """Flag an instance that has outlived the active ceiling for graceful termination."""
    if instance.status == InstanceStatus.TERMINATED:
        return
    age = now - _parse_timestamp(instance.created_at)
    if age > timedelta(seconds=settings.max_active_seconds):
        if pending_terminations.flag(instance.server_id):
            logger.info(
                "Game server %s exceeded max lifetime (%s), flagging for termination",
                instance.server_id,
                age,
            )


def consume_pending_termination(
    instance: GameServerInstance, response: HeartbeatResponse, now: datetime
) -> None:
    if pending_terminations.consume(instance.server_id):
        logger.info("Telling game server %s to terminate", instance.server_id)
        response.operation = GameOperation.TERMINATE


OVERRIDE_RULES: tuple[OverrideRule, ...] = (
    flag_overdue_instance,
    consume_pending_termination,
)


async def handle_heartbeat(
    db: AsyncSession,
    server_id: str,
    reported_state: GameState,
    *,
    now: datetime | None = None,
) -> HeartbeatResponse | Failure:
    instance = await get_instance(db, server_id)
    if instance is None:
        return Failure(FailureCode.INSTANCE_NOT_FOUND, f"Server {server_id} not found")

    now = now or datetime.now(UTC)
    response = await _base_response(db, instance, reported_state)
    for rule in OVERRIDE_RULES:
        rule(instance, response, now)

    if instance.status == InstanceStatus.TERMINATED:
        # Terminated rows are never swept
        heartbeat_tracker.forget(server_id)
    else:
        heartbeat_tracker.touch(server_id)
    logger.debug(
        "Heartbeat from %s: reported=%s persisted=%s -> %s",
        server_id,
        reported_state,
        instance.status,
        response.operation,
    )
    return response


async def request_termination(db: AsyncSession, server_id: str) -> Failure | None:
    """Flag an instance so its next heartbeat is answered with ``Terminate``."""
    instance = await get_instance(db, server_id)
    if instance is None:
        return Failure(FailureCode.INSTANCE_NOT_FOUND, f"Server {server_id} not found")
    if instance.status == InstanceStatus.TERMINATED:
        return Failure(
            FailureCode.INSTANCE_ALREADY_TERMINATED, f"Server {server_id} is already terminated"
        )

    pending_terminations.flag(server_id)
    logger.info("Termination requested for game server %s", server_id)
    return None
