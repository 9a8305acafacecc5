from __future__ import annotations

from app.modules.flashcards.models.flashcards import (
    CamelModel,
    FlashcardInput,
    SaveFlashcardsInput,
)
from app.modules.flashcards.models.records import FlashcardRead


class SaveFlashcardsResponse(CamelModel):
    success: bool = True
    count: int
    flashcards: list[FlashcardRead]


__all__ = [
    "FlashcardInput",
    "FlashcardRead",
    "SaveFlashcardsInput",
    "SaveFlashcardsResponse",
]
