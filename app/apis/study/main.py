from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.apis.deps import current_active_user
from app.core.config import settings
from app.core.db.base import get_session
from app.core.db.schemas.auth import User
from app.core.db_services import StudyService
from app.modules.flashcards.models.records import FlashcardRead
from .schemas import RevisionCardRead, StudyResultCreate, StudyResultResponse


router = APIRouter()

CurrentUser = Annotated[User, Depends(current_active_user)]


@router.post(
    f"/{settings.app.version}/study/results",
    response_model=StudyResultResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["study"],
)
async def record_study_result(
    req: StudyResultCreate,
    user: CurrentUser,
    session: AsyncSession = Depends(get_session),
) -> StudyResultResponse:
    recorded = await StudyService(session).record_result(
        user.id,
        req.flashcard_id,
        is_correct=req.is_correct,
        response_time=req.response_time,
    )
    if recorded is None:
        raise HTTPException(status_code=404, detail="Flashcard not found")
    return StudyResultResponse()


@router.get(
    f"/{settings.app.version}/study/revision",
    response_model=list[RevisionCardRead],
    tags=["study"],
)
async def get_revision_cards(
    user: CurrentUser,
    threshold: int = Query(default=3, ge=1),
    session: AsyncSession = Depends(get_session),
) -> list[RevisionCardRead]:
    """Cards answered wrong at least ``threshold`` times, most missed first."""
    cards = await StudyService(session).revision_cards(user.id, threshold)
    return [
        RevisionCardRead(
            **FlashcardRead.model_validate(c.flashcard).model_dump(),
            error_count=c.error_count,
            total_sessions=c.total_sessions,
            thematic_name=c.thematic_name,
            thematic_icon=c.thematic_icon,
        )
        for c in cards
    ]
