"""Termination reaper: marks silent game servers Terminated.

An instance that stops heartbeating cannot be told to terminate, so it is
only marked Terminated locally once its heartbeat has been silent longer than
``heartbeat_timeout_seconds``. Graceful termination goes through the pending
set in :mod:`backend.app.services.heartbeat` instead. A reaped instance never
heartbeats again, so its tracker entry and any pending flag are dropped with it.

Instances never seen before are seeded with the time they are first observed,
not their creation time, so a game server that is still booting gets a full
window before its first heartbeat is due.
"""

import asyncio
import logging
import time
from datetime import UTC, datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.config import settings
from backend.app.db import async_session
from backend.app.models.game_server_instance import GameServerInstance, InstanceStatus
from backend.app.services.lifecycle import heartbeat_tracker, pending_terminations

logger = logging.getLogger(__name__)

_reaper_task: asyncio.Task | None = None


async def _terminate(db: AsyncSession, instance_id: int) -> None:
    await db.execute(
        update(GameServerInstance)
        .where(
            GameServerInstance.id == instance_id,
            GameServerInstance.status != InstanceStatus.TERMINATED,
        )
        .values(
            status=InstanceStatus.TERMINATED.value,
            updated_at=datetime.now(UTC).isoformat(),
        )
    )
    await db.commit()


async def sweep(db: AsyncSession, *, now: float | None = None) -> list[str]:
    """Run one reaper pass and return the server ids it terminated.

    A failure fetching the candidates propagates (the tick is lost and the
    next one retries); a failure on one instance is logged and skipped.
    """
    now = time.monotonic() if now is None else now

    result = await db.execute(
        select(GameServerInstance.id, GameServerInstance.server_id)
        .where(GameServerInstance.status != InstanceStatus.TERMINATED)
        .order_by(GameServerInstance.id)
    )
    # Plain rows: a rollback below must not expire what we iterate over
    candidates = list(result.all())

    terminated: list[str] = []
    for instance_id, server_id in candidates:
        try:
            last_seen = heartbeat_tracker.seed(server_id, now)
            if now - last_seen <= settings.heartbeat_timeout_seconds:
                continue

            await _terminate(db, instance_id)
            heartbeat_tracker.forget(server_id)
            pending_terminations.consume(server_id)
            terminated.append(server_id)
            logger.info(
                "Game server %s missed heartbeats for %.1fs, marked Terminated",
                server_id,
                now - last_seen,
            )
        except Exception:
            logger.exception("Reaper failed to process game server %s", server_id)
            await db.rollback()

    return terminated


async def _reaper_loop() -> None:
    """Sweep forever. One sweep at a time: the next sleep starts after it finishes."""
    while True:
        try:
            async with async_session() as db:
                await sweep(db)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Reaper tick failed")
        await asyncio.sleep(settings.reaper_interval_seconds)


def start_reaper_task() -> None:
    global _reaper_task
    if _reaper_task is None or _reaper_task.done():
        _reaper_task = asyncio.create_task(_reaper_loop())
        logger.info(
            "Reaper started (interval=%.1fs, timeout=%.0fs)",
            settings.reaper_interval_seconds,
            settings.heartbeat_timeout_seconds,
        )


async def stop_reaper_task() -> None:
    global _reaper_task
    if _reaper_task is not None:
        _reaper_task.cancel()
        try:
            await _reaper_task
        except asyncio.CancelledError:
            pass
        _reaper_task = None
