"""Read models for persisted thematics and flashcards."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from pydantic import ConfigDict
from pydantic.alias_generators import to_camel

from app.modules.flashcards.models.flashcards import (
    CamelModel,
    Difficulty,
    FlashcardBack,
    FlashcardFront,
)


class RecordModel(CamelModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )


class ThematicRead(RecordModel):
    id: uuid.UUID
    name: str
    description: Optional[str] = None
    color: str
    icon: str
    pdf_name: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class ThematicWithCount(ThematicRead):
    flashcard_count: int = 0

    @classmethod
    def from_row(cls, thematic: object, flashcard_count: int) -> "ThematicWithCount":
        base = ThematicRead.model_validate(thematic).model_dump()
        return cls(**base, flashcard_count=flashcard_count)


class FlashcardRead(RecordModel):
    id: uuid.UUID
    thematic_id: uuid.UUID
    front: FlashcardFront
    back: FlashcardBack
    category: Optional[str] = None
    difficulty: Difficulty
    order_index: int = 0
    created_at: datetime


__all__ = ["FlashcardRead", "ThematicRead", "ThematicWithCount"]
