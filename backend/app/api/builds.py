"""Build catalog CRUD endpoints."""

from datetime import UTC, datetime

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.db import get_db
from backend.app.models.build import Build
from backend.app.models.game_server_instance import GameServerInstance
from backend.app.schemas.build import BuildCreate, BuildResponse, BuildUpdate

router = APIRouter(prefix="/builds", tags=["builds"])


async def _get_build_or_404(db: AsyncSession, build_id: str) -> Build:
    result = await db.execute(select(Build).where(Build.build_id == build_id))
    build = result.scalar_one_or_none()
    if not build:
        raise HTTPException(status_code=404, detail="Build not found")
    return build


@router.get("", response_model=list[BuildResponse])
async def list_builds(db: AsyncSession = Depends(get_db)) -> list[Build]:
    result = await db.execute(select(Build).order_by(Build.build_id))
    return list(result.scalars().all())


@router.post("", response_model=BuildResponse, status_code=201)
async def create_build(data: BuildCreate, db: AsyncSession = Depends(get_db)) -> Build:
    result = await db.execute(select(Build).where(Build.build_id == data.build_id))
    if result.scalar_one_or_none():
        raise HTTPException(status_code=409, detail=f"Build {data.build_id} already exists")

    now = datetime.now(UTC).isoformat()
    build = Build(
        build_id=data.build_id,
        image_name=data.image_name,
        created_at=now,
        updated_at=now,
    )
    db.add(build)
    await db.flush()
    return build


@router.get("/{build_id}", response_model=BuildResponse)
async def get_build(build_id: str, db: AsyncSession = Depends(get_db)) -> Build:
    return await _get_build_or_404(db, build_id)


@router.patch("/{build_id}", response_model=BuildResponse)
async def update_build(
    build_id: str, data: BuildUpdate, db: AsyncSession = Depends(get_db)
) -> Build:
    build = await _get_build_or_404(db, build_id)
    build.image_name = data.image_name
    build.updated_at = datetime.now(UTC).isoformat()
    await db.flush()
    return build


@router.delete("/{build_id}", status_code=204)
async def delete_build(build_id: str, db: AsyncSession = Depends(get_db)) -> None:
    build = await _get_build_or_404(db, build_id)
    # Instances keep referencing their build forever (rows are never deleted)
    in_use = await db.execute(
        select(GameServerInstance.id).where(GameServerInstance.build_id == build_id).limit(1)
    )
    if in_use.scalar_one_or_none() is not None:
        raise HTTPException(
            status_code=409, detail=f"Build {build_id} is referenced by game server instances"
        )
    await db.delete(build)
    await db.flush()
