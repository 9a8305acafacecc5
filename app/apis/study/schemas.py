from __future__ import annotations

import uuid
from typing import Optional

from pydantic import Field

from app.modules.flashcards.models.flashcards import CamelModel
from app.modules.flashcards.models.records import FlashcardRead


class StudyResultCreate(CamelModel):
    flashcard_id: uuid.UUID
    is_correct: bool
    # milliseconds
    response_time: Optional[int] = Field(default=None, gt=0)


class StudyResultResponse(CamelModel):
    success: bool = True


class RevisionCardRead(FlashcardRead):
    error_count: int
    total_sessions: int
    thematic_name: str
    thematic_icon: str
