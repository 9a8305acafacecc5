from __future__ import annotations

import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.apis.deps import current_active_user
from app.core.config import settings
from app.core.db.base import get_session
from app.core.db.schemas.auth import User
from app.core.db_services import ThematicService
from app.modules.flashcards.models.records import ThematicRead, ThematicWithCount
from .schemas import ThematicCreate, ThematicUpdate


router = APIRouter()

CurrentUser = Annotated[User, Depends(current_active_user)]

PREFIX = f"/{settings.app.version}/thematics"


@router.get(PREFIX, response_model=list[ThematicWithCount], tags=["thematics"])
async def list_thematics(
    user: CurrentUser,
    session: AsyncSession = Depends(get_session),
) -> list[ThematicWithCount]:
    rows = await ThematicService(session).list_with_counts(user.id)
    return [ThematicWithCount.from_row(t, n) for t, n in rows]


@router.get(
    f"{PREFIX}/{{thematic_id}}", response_model=ThematicWithCount, tags=["thematics"]
)
async def get_thematic(
    thematic_id: uuid.UUID,
    user: CurrentUser,
    session: AsyncSession = Depends(get_session),
) -> ThematicWithCount:
    row = await ThematicService(session).get_with_count(thematic_id, user.id)
    if row is None:
        raise HTTPException(status_code=404, detail="Thematic not found")
    return ThematicWithCount.from_row(*row)


@router.post(
    PREFIX,
    response_model=ThematicRead,
    status_code=status.HTTP_201_CREATED,
    tags=["thematics"],
)
async def create_thematic(
    req: ThematicCreate,
    user: CurrentUser,
    session: AsyncSession = Depends(get_session),
) -> ThematicRead:
    thematic = await ThematicService(session).create(
        user.id,
        name=req.name,
        description=req.description,
        color=req.color,
        icon=req.icon,
        pdf_name=req.pdf_name,
    )
    return ThematicRead.model_validate(thematic)


@router.patch(
    f"{PREFIX}/{{thematic_id}}", response_model=ThematicRead, tags=["thematics"]
)
async def update_thematic(
    thematic_id: uuid.UUID,
    req: ThematicUpdate,
    user: CurrentUser,
    session: AsyncSession = Depends(get_session),
) -> ThematicRead:
    thematic = await ThematicService(session).update(
        thematic_id, user.id, req.changes()
    )
    if thematic is None:
        raise HTTPException(status_code=404, detail="Thematic not found")
    return ThematicRead.model_validate(thematic)


@router.delete(
    f"{PREFIX}/{{thematic_id}}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["thematics"],
)
async def delete_thematic(
    thematic_id: uuid.UUID,
    user: CurrentUser,
    session: AsyncSession = Depends(get_session),
) -> Response:
    deleted = await ThematicService(session).delete(thematic_id, user.id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Thematic not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
