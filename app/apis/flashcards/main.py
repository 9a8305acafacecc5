from __future__ import annotations

import uuid
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.apis.deps import current_active_user
from app.core.config import settings
from app.core.db.base import get_session
from app.core.db.schemas.auth import User
from app.core.db_services import FlashcardService, ThematicService
from .schemas import FlashcardRead, SaveFlashcardsInput, SaveFlashcardsResponse


router = APIRouter()

CurrentUser = Annotated[User, Depends(current_active_user)]

PREFIX = f"/{settings.app.version}/flashcards"


@router.post(
    PREFIX,
    response_model=SaveFlashcardsResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["flashcards"],
)
async def save_flashcards(
    req: SaveFlashcardsInput,
    user: CurrentUser,
    session: AsyncSession = Depends(get_session),
) -> SaveFlashcardsResponse:
    """Store pre-built flashcards in one of the caller's thematics."""
    rows = await FlashcardService(session).save_to_thematic(
        user.id, req.thematic_id, req.flashcards
    )
    if rows is None:
        raise HTTPException(status_code=404, detail="Thematic not found")
    return SaveFlashcardsResponse(
        count=len(rows),
        flashcards=[FlashcardRead.model_validate(r) for r in rows],
    )


@router.get(PREFIX, response_model=list[FlashcardRead], tags=["flashcards"])
async def list_flashcards(
    user: CurrentUser,
    thematic_ids: Optional[list[uuid.UUID]] = Query(default=None, alias="thematicId"),
    session: AsyncSession = Depends(get_session),
) -> list[FlashcardRead]:
    """All of the caller's flashcards, or those of the given thematics."""
    rows = await FlashcardService(session).list_for_user(user.id, thematic_ids)
    return [FlashcardRead.model_validate(r) for r in rows]


@router.get(
    f"/{settings.app.version}/thematics/{{thematic_id}}/flashcards",
    response_model=list[FlashcardRead],
    tags=["flashcards"],
)
async def list_thematic_flashcards(
    thematic_id: uuid.UUID,
    user: CurrentUser,
    session: AsyncSession = Depends(get_session),
) -> list[FlashcardRead]:
    if await ThematicService(session).get(thematic_id, user.id) is None:
        raise HTTPException(status_code=404, detail="Thematic not found")
    rows = await FlashcardService(session).list_for_user(user.id, [thematic_id])
    return [FlashcardRead.model_validate(r) for r in rows]


@router.get(
    f"{PREFIX}/{{flashcard_id}}", response_model=FlashcardRead, tags=["flashcards"]
)
async def get_flashcard(
    flashcard_id: uuid.UUID,
    user: CurrentUser,
    session: AsyncSession = Depends(get_session),
) -> FlashcardRead:
    card = await FlashcardService(session).get(flashcard_id, user.id)
    if card is None:
        raise HTTPException(status_code=404, detail="Flashcard not found")
    return FlashcardRead.model_validate(card)


@router.delete(
    f"{PREFIX}/{{flashcard_id}}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["flashcards"],
)
async def delete_flashcard(
    flashcard_id: uuid.UUID,
    user: CurrentUser,
    session: AsyncSession = Depends(get_session),
) -> Response:
    if not await FlashcardService(session).delete(flashcard_id, user.id):
        raise HTTPException(status_code=404, detail="Flashcard not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
