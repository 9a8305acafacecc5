"""Pydantic models for flashcard generation and validation.

Two families live here:

- ``*Draft`` models are what the vision model is asked to fill. To keep the
  Google structured output schema simple and compatible, they carry no
  length constraints and most fields are optional, which also lets partial
  objects validate while streaming.
- The strict models (``Flashcard``, ``GenerationResult``...) enforce the
  field bounds and the difficulty distribution. They validate the final
  model output and any flashcards submitted directly by a client.
"""

from __future__ import annotations

import enum
import uuid
from collections import Counter
from typing import Literal, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

MIN_FLASHCARDS = 9
MAX_FLASHCARDS = 100
MIN_PER_DIFFICULTY = 3

IMAGE_MIME_TYPE = "image/jpeg"


class CamelModel(BaseModel):
    """Snake-case attributes, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Difficulty(str, enum.Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class PageImage(CamelModel):
    """One rasterized, optimized PDF page."""

    page_index: int = Field(..., ge=0)
    base64: str
    mime_type: Literal["image/jpeg"] = IMAGE_MIME_TYPE


class FlashcardFront(CamelModel):
    question: str = Field(..., min_length=10, max_length=500)
    image_page_index: Optional[int] = Field(default=None, ge=0)
    image_description: Optional[str] = None


class FlashcardBack(CamelModel):
    answer: str = Field(..., min_length=5, max_length=1000)
    details: Optional[str] = None
    image_page_index: Optional[int] = Field(default=None, ge=0)
    image_description: Optional[str] = None


class Flashcard(CamelModel):
    id: str
    front: FlashcardFront
    back: FlashcardBack
    category: str
    difficulty: Difficulty


class GenerationMetadata(CamelModel):
    subject: str
    total_concepts: int
    recommendations: Optional[str] = None


def difficulty_counts(cards: list[Flashcard]) -> dict[Difficulty, int]:
    counts = Counter(card.difficulty for card in cards)
    return {level: counts.get(level, 0) for level in Difficulty}


def has_valid_distribution(cards: list[Flashcard]) -> bool:
    """At least MIN_FLASHCARDS cards and MIN_PER_DIFFICULTY at every level."""
    if len(cards) < MIN_FLASHCARDS:
        return False
    return all(n >= MIN_PER_DIFFICULTY for n in difficulty_counts(cards).values())


class GenerationResult(CamelModel):
    """Validated output of one generation call."""

    flashcards: list[Flashcard] = Field(
        ..., min_length=MIN_FLASHCARDS, max_length=MAX_FLASHCARDS
    )
    metadata: GenerationMetadata
    page_images: Optional[list[PageImage]] = None

    @field_validator("flashcards")
    @classmethod
    def _check_distribution(cls, cards: list[Flashcard]) -> list[Flashcard]:
        if not has_valid_distribution(cards):
            counts = difficulty_counts(cards)
            summary = ", ".join(f"{k.value}={v}" for k, v in counts.items())
            raise ValueError(
                f"at least {MIN_PER_DIFFICULTY} flashcards per difficulty level "
                f"are required ({summary})"
            )
        return cards

    @model_validator(mode="after")
    def _check_image_references(self) -> "GenerationResult":
        if self.page_images is not None:
            check_image_references(self.flashcards, len(self.page_images))
        return self


def check_image_references(cards: list[Flashcard], page_count: int) -> None:
    """Every imagePageIndex must point into the page sequence."""
    for card in cards:
        for side in (card.front, card.back):
            index = side.image_page_index
            if index is not None and index >= page_count:
                raise ValueError(
                    f"flashcard {card.id!r} references page {index} "
                    f"but only {page_count} page(s) were supplied"
                )


# --- model-facing drafts -------------------------------------------------


class FlashcardFrontDraft(CamelModel):
    question: str = ""
    image_page_index: Optional[int] = None
    image_description: Optional[str] = None


class FlashcardBackDraft(CamelModel):
    answer: str = ""
    details: Optional[str] = None
    image_page_index: Optional[int] = None
    image_description: Optional[str] = None


class FlashcardDraft(CamelModel):
    id: Optional[str] = None
    front: Optional[FlashcardFrontDraft] = None
    back: Optional[FlashcardBackDraft] = None
    category: Optional[str] = None
    difficulty: Optional[Difficulty] = None

    @field_validator("difficulty", mode="before")
    @classmethod
    def _lowercase_difficulty(cls, value):
        if isinstance(value, str):
            return value.strip().lower()
        return value


class GenerationMetadataDraft(CamelModel):
    subject: Optional[str] = None
    total_concepts: Optional[int] = None
    recommendations: Optional[str] = None


class GenerationDraft(CamelModel):
    """Possibly incomplete generation output, as streamed by the model."""

    flashcards: list[FlashcardDraft] = Field(default_factory=list)
    metadata: Optional[GenerationMetadataDraft] = None


def finalize_draft(draft: GenerationDraft, page_count: int) -> GenerationResult:
    """Validate a complete draft into a ``GenerationResult``.

    Raises ``pydantic.ValidationError`` or ``ValueError`` when the output breaks
    the field bounds, the difficulty distribution or the page references.
    """
    payload = draft.model_dump(by_alias=True)
    for position, card in enumerate(payload["flashcards"], start=1):
        if not card.get("id"):
            card["id"] = f"card-{position}"
    result = GenerationResult.model_validate(payload)
    check_image_references(result.flashcards, page_count)
    return result


# --- direct-save input ---------------------------------------------------


class FlashcardInput(CamelModel):
    """A pre-built flashcard submitted by a client."""

    front: FlashcardFront
    back: FlashcardBack
    category: Optional[str] = None
    difficulty: Difficulty = Difficulty.MEDIUM


class SaveFlashcardsInput(CamelModel):
    thematic_id: uuid.UUID
    flashcards: list[FlashcardInput] = Field(..., min_length=1)


__all__ = [
    "CamelModel",
    "Difficulty",
    "PageImage",
    "FlashcardFront",
    "FlashcardBack",
    "Flashcard",
    "GenerationMetadata",
    "GenerationResult",
    "GenerationDraft",
    "FlashcardDraft",
    "FlashcardInput",
    "SaveFlashcardsInput",
    "IMAGE_MIME_TYPE",
    "MIN_FLASHCARDS",
    "MAX_FLASHCARDS",
    "MIN_PER_DIFFICULTY",
    "check_image_references",
    "difficulty_counts",
    "finalize_draft",
    "has_valid_distribution",
]
