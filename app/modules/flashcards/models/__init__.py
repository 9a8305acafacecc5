from .flashcards import (
    Difficulty,
    Flashcard,
    FlashcardBack,
    FlashcardFront,
    FlashcardInput,
    GenerationDraft,
    GenerationMetadata,
    GenerationResult,
    PageImage,
    SaveFlashcardsInput,
)
from .records import FlashcardRead, ThematicRead, ThematicWithCount
from .thematic import DEFAULT_THEMATIC, ThematicExtraction, parse_thematic_response

__all__ = [
    "Difficulty",
    "Flashcard",
    "FlashcardBack",
    "FlashcardFront",
    "FlashcardInput",
    "GenerationDraft",
    "GenerationMetadata",
    "GenerationResult",
    "PageImage",
    "SaveFlashcardsInput",
    "FlashcardRead",
    "ThematicRead",
    "ThematicWithCount",
    "DEFAULT_THEMATIC",
    "ThematicExtraction",
    "parse_thematic_response",
]
